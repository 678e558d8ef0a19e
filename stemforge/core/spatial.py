"""
Stereo analysis for StemForge.
Correlation, phase coherence, mid/side width and image placement of a left/right pair.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .config import ANALYSIS_CONFIG
from .errors import InvalidInputError
from .transform import generate_window, get_kernel

logger = logging.getLogger("StemForge")


@dataclass(frozen=True)
class SpatialAudioMetrics:
    cross_correlation: float
    phase_coherence: float
    stereo_width: float
    lateral_energy_fraction: float
    stereo_image_center: tuple[float, Optional[float]]  # (x, y); no elevation data
    surround_energy: float
    immersiveness: float
    mono_compatibility: float
    left_level_db: float
    right_level_db: float


def _rms(samples: np.ndarray) -> float:
    if len(samples) == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))


def _level_db(value: float, floor_db: float = ANALYSIS_CONFIG.silence_floor_db) -> float:
    if value <= 0:
        return floor_db
    return max(floor_db, 20 * float(np.log10(value)))


def _check_pair(left: np.ndarray, right: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    left = np.asarray(left, dtype=np.float64)
    right = np.asarray(right, dtype=np.float64)
    if left.ndim != 1 or right.ndim != 1:
        raise InvalidInputError("Spatial analysis expects two mono channels")
    if len(left) == 0 or len(right) == 0:
        raise InvalidInputError("Spatial analysis needs non-empty channels")
    if len(left) != len(right):
        raise InvalidInputError(
            f"Channel lengths differ: left={len(left)} right={len(right)}"
        )
    return left, right


def cross_correlation(left: np.ndarray, right: np.ndarray) -> float:
    """Pearson correlation in [-1, 1]; 0 when either channel has no variance."""
    left, right = _check_pair(left, right)
    left_dev = left - left.mean()
    right_dev = right - right.mean()
    denominator = np.sqrt(np.sum(left_dev ** 2) * np.sum(right_dev ** 2))
    if denominator <= 0:
        return 0.0
    return float(np.clip(np.sum(left_dev * right_dev) / denominator, -1.0, 1.0))


def phase_coherence(
    left: np.ndarray,
    right: np.ndarray,
    fft_size: int = ANALYSIS_CONFIG.fft_size
) -> float:
    """
    Mean of ``1 - |dphi| / pi`` over the bins of the first analysis window.

    The phase difference is folded into [0, pi]. Raises InvalidInputError
    when the channels are shorter than ``fft_size``.
    """
    left, right = _check_pair(left, right)
    kernel = get_kernel(fft_size)
    if len(left) < fft_size:
        raise InvalidInputError(
            f"Channels of {len(left)} samples are shorter than the {fft_size}-point FFT"
        )
    frames = np.stack((left[:fft_size], right[:fft_size]))
    _, phases = kernel.fft(frames * generate_window("hann", fft_size))

    diff = np.mod(np.abs(phases[0] - phases[1]), 2 * np.pi)
    diff = np.where(diff > np.pi, 2 * np.pi - diff, diff)
    return float(np.mean(1 - diff / np.pi))


def stereo_width(left: np.ndarray, right: np.ndarray) -> float:
    """RMS(side) / RMS(mid)."""
    left, right = _check_pair(left, right)
    mid_rms = _rms((left + right) / 2)
    side_rms = _rms((left - right) / 2)
    return side_rms / mid_rms if mid_rms > 0 else 0.0


def lateral_energy_fraction(left: np.ndarray, right: np.ndarray) -> float:
    left, right = _check_pair(left, right)
    mid_energy = float(np.sum(((left + right) / 2) ** 2))
    side_energy = float(np.sum(((left - right) / 2) ** 2))
    total = mid_energy + side_energy
    return side_energy / total if total > 0 else 0.0


def stereo_image_center(left: np.ndarray, right: np.ndarray) -> tuple[float, Optional[float]]:
    """(x, None) with x = (RMS(R) - RMS(L)) / (RMS(R) + RMS(L)), -1 is hard left."""
    left, right = _check_pair(left, right)
    left_rms, right_rms = _rms(left), _rms(right)
    total = left_rms + right_rms
    if total <= 0:
        return 0.0, None
    return float(np.clip((right_rms - left_rms) / total, -1.0, 1.0)), None


def surround_energy(correlation: float) -> float:
    return max(0.0, 1.0 - abs(correlation))


def immersiveness(width: float, coherence: float, surround: float) -> float:
    return 0.4 * width + 0.3 * (1 - coherence) + 0.3 * surround


def mono_compatibility(left: np.ndarray, right: np.ndarray) -> float:
    """RMS of the mono fold-down relative to the stereo RMS (1 for silence)."""
    left, right = _check_pair(left, right)
    stereo_rms = np.sqrt((_rms(left) ** 2 + _rms(right) ** 2) / 2)
    if stereo_rms <= 0:
        return 1.0
    return float(_rms((left + right) / 2) / stereo_rms)


def analyze_spatial(
    left: np.ndarray,
    right: np.ndarray,
    fft_size: int = ANALYSIS_CONFIG.fft_size
) -> SpatialAudioMetrics:
    """
    Full stereo analysis of one left/right pair.

    Args:
        left: Left channel samples
        right: Right channel samples, same length as ``left``
        fft_size: Transform size used for phase coherence

    Returns:
        SpatialAudioMetrics
    """
    left, right = _check_pair(left, right)

    correlation = cross_correlation(left, right)
    coherence = phase_coherence(left, right, fft_size)
    width = stereo_width(left, right)
    surround = surround_energy(correlation)

    metrics = SpatialAudioMetrics(
        cross_correlation=correlation,
        phase_coherence=coherence,
        stereo_width=width,
        lateral_energy_fraction=lateral_energy_fraction(left, right),
        stereo_image_center=stereo_image_center(left, right),
        surround_energy=surround,
        immersiveness=immersiveness(width, coherence, surround),
        mono_compatibility=mono_compatibility(left, right),
        left_level_db=_level_db(_rms(left)),
        right_level_db=_level_db(_rms(right)),
    )
    logger.debug("Spatial analysis: correlation=%.3f width=%.3f", correlation, width)
    return metrics
