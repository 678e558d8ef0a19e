"""
Dynamics and loudness analysis for StemForge.

Loudness values follow the shape of the BS.1770 formula but skip K-weighting
and multi-block gating: they are an approximation, not a certified LUFS meter.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass

import numpy as np

from .config import ANALYSIS_CONFIG
from .errors import InvalidInputError

logger = logging.getLogger("StemForge")

FLOOR_DB = ANALYSIS_CONFIG.silence_floor_db


@dataclass(frozen=True)
class DynamicsAnalysis:
    peak_db: float
    rms_db: float
    crest_factor_db: float
    true_peak_db: float
    momentary_loudness: float
    short_term_loudness: float
    integrated_loudness: float
    dynamic_range_db: float
    loudness_range: float
    pli_gating: bool  # integrated loudness above the absolute gate


def _as_frames(samples: np.ndarray) -> np.ndarray:
    data = np.asarray(samples, dtype=np.float64)
    if data.ndim == 1:
        data = data[:, np.newaxis]
    if data.ndim != 2:
        raise InvalidInputError(f"Expected (samples,) or (samples, channels), got {data.shape}")
    if data.shape[0] == 0:
        raise InvalidInputError("Dynamics analysis needs at least one sample")
    return data


def amplitude_to_db(value: float, floor_db: float = FLOOR_DB) -> float:
    if value <= 0:
        return floor_db
    return max(floor_db, 20 * float(np.log10(value)))


def loudness_from_mean_square(mean_square: float, floor_db: float = FLOOR_DB) -> float:
    """``-0.691 + 10 * log10(mean_square)``, floored."""
    if mean_square <= 0:
        return floor_db
    return max(floor_db, -0.691 + 10 * float(np.log10(mean_square)))


def _mean_square(data: np.ndarray) -> float:
    # Channel powers are summed as in BS.1770
    return float(np.sum(np.mean(data ** 2, axis=0)))


def peak_level(samples: np.ndarray) -> float:
    return amplitude_to_db(float(np.max(np.abs(_as_frames(samples)))))


def rms_level(samples: np.ndarray) -> float:
    data = _as_frames(samples)
    return amplitude_to_db(float(np.sqrt(np.mean(data ** 2))))


def true_peak(samples: np.ndarray, oversampling: int = ANALYSIS_CONFIG.true_peak_oversampling) -> float:
    """Linear peak after ``oversampling``-times linear interpolation, per channel."""
    data = _as_frames(samples)
    length = data.shape[0]
    if length == 1:
        return float(np.max(np.abs(data)))
    positions = np.arange((length - 1) * oversampling + 1) / oversampling
    original = np.arange(length)
    return max(
        float(np.max(np.abs(np.interp(positions, original, data[:, ch]))))
        for ch in range(data.shape[1])
    )


def window_loudness(samples: np.ndarray, sample_rate: int, seconds: float) -> float:
    """Loudness of the trailing ``seconds`` of audio (the whole buffer if shorter)."""
    data = _as_frames(samples)
    window = max(1, int(seconds * sample_rate))
    return loudness_from_mean_square(_mean_square(data[-window:]))


def integrated_loudness(samples: np.ndarray) -> float:
    return loudness_from_mean_square(_mean_square(_as_frames(samples)))


def dynamic_range(samples: np.ndarray) -> float:
    """dB ratio between the 99th and 1st percentile of absolute sample levels."""
    levels = np.abs(_as_frames(samples)).ravel()
    high, low = np.percentile(levels, [99, 1])
    if high <= 0 or low <= 0:
        return 0.0
    return 20 * float(np.log10(high / low))


def loudness_range(
    samples: np.ndarray,
    sample_rate: int,
    block_seconds: float = ANALYSIS_CONFIG.lra_block_s,
    gate: float = ANALYSIS_CONFIG.lra_gate_lufs
) -> float:
    """
    Spread (95th - 10th percentile) of gated block loudness values.

    Args:
        samples: Audio samples
        sample_rate: Sample rate in Hz
        block_seconds: Block length
        gate: Blocks at or below this loudness are discarded

    Returns:
        Loudness range in LU; 0 with fewer than two blocks passing the gate
    """
    data = _as_frames(samples)
    block = max(1, int(block_seconds * sample_rate))
    values = [
        loudness_from_mean_square(_mean_square(data[start:start + block]))
        for start in range(0, data.shape[0] - block + 1, block)
    ]
    gated = [v for v in values if v > gate]
    if len(gated) < 2:
        return 0.0
    high, low = np.percentile(gated, [95, 10])
    return float(high - low)


def analyze_dynamics(samples: np.ndarray, sample_rate: int) -> DynamicsAnalysis:
    if sample_rate <= 0:
        raise InvalidInputError(f"Sample rate must be positive, got {sample_rate}")
    data = _as_frames(samples)

    peak_db = peak_level(data)
    rms_db = rms_level(data)
    crest = peak_db - rms_db if rms_db > FLOOR_DB else 0.0
    integrated = integrated_loudness(data)

    result = DynamicsAnalysis(
        peak_db=peak_db,
        rms_db=rms_db,
        crest_factor_db=crest,
        true_peak_db=amplitude_to_db(true_peak(data)),
        momentary_loudness=window_loudness(data, sample_rate, ANALYSIS_CONFIG.momentary_window_s),
        short_term_loudness=window_loudness(data, sample_rate, ANALYSIS_CONFIG.short_term_window_s),
        integrated_loudness=integrated,
        dynamic_range_db=dynamic_range(data),
        loudness_range=loudness_range(data, sample_rate),
        pli_gating=integrated > ANALYSIS_CONFIG.lra_gate_lufs,
    )
    logger.debug("Dynamics analysis: peak=%.1f dB rms=%.1f dB integrated=%.1f",
                 peak_db, rms_db, integrated)
    return result
