"""
Windowing and transform kernel for StemForge.

Window generation, an iterative radix-2 Cooley-Tukey FFT/IFFT and STFT
overlap-add. Transforms operate on the last axis, so a (frames, N) batch is
processed in one call.
"""
from __future__ import annotations
import threading
from functools import lru_cache
from typing import Callable, Optional

import numpy as np

from .config import ANALYSIS_CONFIG
from .errors import InvalidInputError, OperationCancelled


WINDOW_KINDS = ("hann", "hanning", "hamming", "blackman", "kaiser", "rectangular")


def modified_bessel_i0(
    x: float,
    max_terms: int = ANALYSIS_CONFIG.bessel_max_terms,
    tolerance: float = ANALYSIS_CONFIG.bessel_tolerance
) -> float:
    """
    Zeroth-order modified Bessel function of the first kind, by power series.

    Args:
        x: Argument
        max_terms: Series is truncated after this many terms
        tolerance: Stop once a term falls below this value

    Returns:
        I0(x)
    """
    total = 1.0
    term = 1.0
    for i in range(1, max_terms):
        term *= (x / (2 * i)) ** 2
        total += term
        if term < tolerance:
            break
    return total


def generate_window(kind: str, size: int, beta: float = ANALYSIS_CONFIG.kaiser_beta) -> np.ndarray:
    """
    Generate a symmetric window function.

    Args:
        kind: 'hann' (or 'hanning'), 'hamming', 'blackman', 'kaiser' or 'rectangular'
        size: Window length in samples
        beta: Kaiser shape parameter (ignored for other kinds)

    Returns:
        Window of length ``size``
    """
    kind = kind.lower()
    if kind not in WINDOW_KINDS:
        raise InvalidInputError(f"Unknown window kind '{kind}', expected one of {WINDOW_KINDS}")
    if size < 0:
        raise InvalidInputError(f"Window size must be non-negative, got {size}")
    if size <= 1:
        return np.ones(size, dtype=np.float64)

    n = np.arange(size, dtype=np.float64)
    phase = 2 * np.pi * n / (size - 1)

    if kind in ("hann", "hanning"):
        return 0.5 * (1 - np.cos(phase))
    if kind == "hamming":
        return 0.54 - 0.46 * np.cos(phase)
    if kind == "blackman":
        return 0.42 - 0.5 * np.cos(phase) + 0.08 * np.cos(2 * phase)
    if kind == "kaiser":
        i0_beta = modified_bessel_i0(beta)
        x = 2 * n / (size - 1) - 1
        arg = beta * np.sqrt(np.clip(1 - x * x, 0.0, None))
        return np.array([modified_bessel_i0(a) for a in arg]) / i0_beta
    return np.ones(size, dtype=np.float64)


def apply_window(samples: np.ndarray, window: np.ndarray) -> np.ndarray:
    """Element-wise product, truncated to the shorter of the two."""
    length = min(len(samples), len(window))
    return np.asarray(samples[:length], dtype=np.float64) * window[:length]


def is_power_of_two(n: int) -> bool:
    return n >= 2 and (n & (n - 1)) == 0


def _bit_reversal_permutation(size: int) -> np.ndarray:
    bits = size.bit_length() - 1
    indices = np.arange(size)
    reversed_indices = np.zeros(size, dtype=np.int64)
    for b in range(bits):
        reversed_indices |= ((indices >> b) & 1) << (bits - 1 - b)
    return reversed_indices


class FFTKernel:
    """
    Radix-2 FFT of a fixed power-of-two size.

    The size is validated here so that callers cannot reach the transform
    with an unsupported length.
    """

    def __init__(self, size: int):
        if not is_power_of_two(size):
            raise InvalidInputError(f"FFT size must be a power of two >= 2, got {size}")
        self.size = size
        self._permutation = _bit_reversal_permutation(size)
        self._twiddles = []
        length = 2
        while length <= size:
            half = length // 2
            self._twiddles.append(np.exp(-2j * np.pi * np.arange(half) / length))
            length *= 2

    def transform(self, values: np.ndarray) -> np.ndarray:
        """Complex forward DFT along the last axis."""
        values = np.asarray(values)
        if values.shape[-1] != self.size:
            raise InvalidInputError(
                f"Kernel of size {self.size} received {values.shape[-1]} samples"
            )
        lead = values.shape[:-1]
        # Bit-reversal permutation, then butterflies stage by stage
        x = np.array(values[..., self._permutation], dtype=np.complex128)
        length = 2
        for twiddle in self._twiddles:
            half = length // 2
            blocks = x.reshape(lead + (self.size // length, length))
            upper = blocks[..., :half].copy()
            lower = blocks[..., half:] * twiddle
            blocks[..., :half] = upper + lower
            blocks[..., half:] = upper - lower
            length *= 2
        return x

    def fft(self, real: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Forward transform of a real signal.

        Args:
            real: Samples, last axis of length ``size``

        Returns:
            (magnitudes, phases), each with size/2 bins on the last axis
        """
        spectrum = self.transform(real)[..., : self.size // 2]
        return np.abs(spectrum), np.angle(spectrum)

    def ifft(self, magnitudes: np.ndarray, phases: np.ndarray) -> np.ndarray:
        """
        Inverse transform of a half spectrum back to ``size`` real samples.

        Bins 1..N/2-1 are mirrored with conjugated phase; the Nyquist bin is zero.
        """
        half = self.size // 2
        magnitudes = np.asarray(magnitudes, dtype=np.float64)
        phases = np.asarray(phases, dtype=np.float64)
        if magnitudes.shape[-1] != half or phases.shape[-1] != half:
            raise InvalidInputError(f"Kernel of size {self.size} needs {half} bins")

        full = np.zeros(magnitudes.shape[:-1] + (self.size,), dtype=np.complex128)
        full[..., :half] = magnitudes * np.exp(1j * phases)
        full[..., half + 1:] = np.conj(full[..., 1:half][..., ::-1])

        # Inverse via conjugate -> forward -> conjugate
        result = np.conj(self.transform(np.conj(full)))
        return result.real / self.size


@lru_cache(maxsize=16)
def get_kernel(size: int) -> FFTKernel:
    """Shared kernel per transform size (kernels hold no mutable state)."""
    return FFTKernel(size)


def fft(real: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Magnitude and phase half spectrum of ``real`` (length must be a power of two)."""
    return get_kernel(np.shape(real)[-1]).fft(real)


def ifft(magnitudes: np.ndarray, phases: np.ndarray) -> np.ndarray:
    """Real signal of length 2 * len(magnitudes) from a half spectrum."""
    return get_kernel(2 * np.shape(magnitudes)[-1]).ifft(magnitudes, phases)


def frame_starts(length: int, frame_size: int, hop_size: int) -> tuple[np.ndarray, int, int]:
    """
    Frame offsets covering ``length`` samples with full overlap at both edges.

    Returns:
        (starts, front_padding, padded_length)
    """
    front = frame_size - hop_size
    # Last frame starts at or after the last sample, so the tail overlaps like the head
    count = int(np.ceil((front + length) / hop_size))
    padded_length = (count - 1) * hop_size + frame_size
    return np.arange(count) * hop_size, front, padded_length


def overlap_add(
    data: np.ndarray,
    spectral_fn: Callable[[np.ndarray, np.ndarray], np.ndarray],
    frame_size: int,
    hop_size: int,
    progress: Optional[Callable[[int, int, str], None]] = None,
    cancel_event: Optional[threading.Event] = None,
    stage: str = "overlap-add",
    frames_per_block: int = 32
) -> np.ndarray:
    """
    STFT -> ``spectral_fn(magnitudes, phases)`` -> ISTFT.

    Hann analysis and synthesis windows; the output is normalized by the
    summed squared window. Buffers shorter than one frame are returned as a
    float32 copy. Cancellation is checked between blocks of frames.

    Args:
        data: Samples shaped (samples,) or (samples, channels)
        spectral_fn: Maps magnitudes shaped (frames, channels, frame_size // 2)
            and the matching phases to new magnitudes
        frame_size: Frame length (power of two)
        hop_size: Hop between frames
        progress: Called as (block, total_blocks, stage) after each block
        cancel_event: Set to abort; raises OperationCancelled
        stage: Stage name for progress and errors
        frames_per_block: Frames transformed per batch

    Returns:
        float32 array with the same shape as ``data``
    """
    kernel = get_kernel(frame_size)
    if hop_size <= 0 or hop_size > frame_size:
        raise InvalidInputError(f"Hop size {hop_size} invalid for frame size {frame_size}")

    source = np.asarray(data, dtype=np.float64)
    squeeze = source.ndim == 1
    if squeeze:
        source = source[:, np.newaxis]
    length = source.shape[0]
    if length < frame_size:
        return np.array(data, dtype=np.float32, copy=True)

    starts, front, padded_length = frame_starts(length, frame_size, hop_size)
    padded = np.zeros((padded_length, source.shape[1]))
    padded[front:front + length] = source

    window = generate_window("hann", frame_size)
    output = np.zeros_like(padded)
    weights = np.zeros(padded_length)
    offsets = np.arange(frame_size)

    blocks = [starts[i:i + frames_per_block] for i in range(0, len(starts), frames_per_block)]
    for block_index, block in enumerate(blocks):
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled(stage)

        # (frames, channels, frame_size)
        frames = padded[block[:, np.newaxis] + offsets].transpose(0, 2, 1)
        magnitudes, phases = kernel.fft(frames * window)
        resynthesized = kernel.ifft(spectral_fn(magnitudes, phases), phases) * window

        for start, frame in zip(block, resynthesized):
            output[start:start + frame_size] += frame.T
            weights[start:start + frame_size] += window ** 2

        if progress is not None:
            progress(block_index + 1, len(blocks), stage)

    weights[weights < 1e-6] = 1.0
    result = (output / weights[:, np.newaxis])[front:front + length].astype(np.float32)
    return result[:, 0] if squeeze else result
