"""
Filter helpers for StemForge.
RBJ biquads (peaking / shelving / pass) and Butterworth band splitting.
All functions are pure and operate on numpy arrays along axis 0.
"""
from __future__ import annotations
import math

import numpy as np
from scipy.signal import butter, lfilter

from .errors import InvalidInputError
from .types import AudioArray

BIQUAD_KINDS = ("peaking", "low_shelf", "high_shelf", "highpass", "lowpass")


def biquad_coefficients(
    kind: str,
    frequency: float,
    sr: int,
    gain_db: float = 0.0,
    Q: float = 0.707
) -> tuple[np.ndarray, np.ndarray]:
    """
    Audio EQ cookbook biquad design.

    Args:
        kind: One of BIQUAD_KINDS
        frequency: Centre / corner frequency in Hz
        sr: Sample rate
        gain_db: Gain in dB (peaking and shelving only)
        Q: Q factor

    Returns:
        (b, a) normalized so that a[0] == 1
    """
    if kind not in BIQUAD_KINDS:
        raise InvalidInputError(f"Unknown filter kind '{kind}', expected one of {BIQUAD_KINDS}")
    if not 0 < frequency < sr / 2:
        raise InvalidInputError(f"Filter frequency {frequency} Hz outside (0, {sr / 2})")
    if Q <= 0:
        raise InvalidInputError(f"Q must be positive, got {Q}")

    A = 10 ** (gain_db / 40)
    omega = 2 * math.pi * frequency / sr
    sn, cs = math.sin(omega), math.cos(omega)
    alpha = sn / (2 * Q)
    sqrt_a = math.sqrt(A)

    if kind == "peaking":
        b = [1 + alpha * A, -2 * cs, 1 - alpha * A]
        a = [1 + alpha / A, -2 * cs, 1 - alpha / A]
    elif kind == "low_shelf":
        b = [A * ((A + 1) - (A - 1) * cs + 2 * sqrt_a * alpha),
             2 * A * ((A - 1) - (A + 1) * cs),
             A * ((A + 1) - (A - 1) * cs - 2 * sqrt_a * alpha)]
        a = [(A + 1) + (A - 1) * cs + 2 * sqrt_a * alpha,
             -2 * ((A - 1) + (A + 1) * cs),
             (A + 1) + (A - 1) * cs - 2 * sqrt_a * alpha]
    elif kind == "high_shelf":
        b = [A * ((A + 1) + (A - 1) * cs + 2 * sqrt_a * alpha),
             -2 * A * ((A - 1) + (A + 1) * cs),
             A * ((A + 1) + (A - 1) * cs - 2 * sqrt_a * alpha)]
        a = [(A + 1) - (A - 1) * cs + 2 * sqrt_a * alpha,
             2 * ((A - 1) - (A + 1) * cs),
             (A + 1) - (A - 1) * cs - 2 * sqrt_a * alpha]
    elif kind == "highpass":
        b = [(1 + cs) / 2, -(1 + cs), (1 + cs) / 2]
        a = [1 + alpha, -2 * cs, 1 - alpha]
    else:  # lowpass
        b = [(1 - cs) / 2, 1 - cs, (1 - cs) / 2]
        a = [1 + alpha, -2 * cs, 1 - alpha]

    b = np.array(b) / a[0]
    a = np.array(a) / a[0]
    return b, a


def apply_biquad(
    data: AudioArray,
    sr: int,
    kind: str,
    frequency: float,
    gain_db: float = 0.0,
    Q: float = 0.707
) -> AudioArray:
    """Filter ``data`` with one biquad band."""
    b, a = biquad_coefficients(kind, frequency, sr, gain_db, Q)
    return lfilter(b, a, data, axis=0).astype(np.float32)


def _normalized(cutoff: float, sr: int) -> float:
    nyquist = 0.5 * sr
    return float(np.clip(cutoff / nyquist, 0.001, 0.999))


def apply_lowpass(data: AudioArray, sr: int, cutoff: float, order: int = 2) -> AudioArray:
    b, a = butter(order, _normalized(cutoff, sr), btype='low', analog=False)
    return lfilter(b, a, data, axis=0).astype(np.float32)


def apply_highpass(data: AudioArray, sr: int, cutoff: float, order: int = 2) -> AudioArray:
    b, a = butter(order, _normalized(cutoff, sr), btype='high', analog=False)
    return lfilter(b, a, data, axis=0).astype(np.float32)


def apply_bandpass(
    data: AudioArray,
    sr: int,
    low_cutoff: float,
    high_cutoff: float,
    order: int = 2
) -> AudioArray:
    low = _normalized(low_cutoff, sr)
    high = float(np.clip(high_cutoff / (0.5 * sr), low + 0.001, 0.999))
    b, a = butter(order, [low, high], btype='band', analog=False)
    return lfilter(b, a, data, axis=0).astype(np.float32)


def split_bands(data: AudioArray, sr: int, cutoff: float, order: int = 2) -> tuple[AudioArray, AudioArray]:
    """
    Two-way split into (low, high) where ``low + high == data``.

    The high band is the residual of the low-pass, so the split is
    perfectly complementary.
    """
    low = apply_lowpass(data, sr, cutoff, order)
    return low, (np.asarray(data, dtype=np.float32) - low).astype(np.float32)
