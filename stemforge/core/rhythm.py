"""
Rhythm analysis for StemForge.

Onsets are picked from the half-wave rectified spectral flux of short Hann
frames. Tempo comes from the inter-onset intervals, and each drum band gets
its own flux energy so kick, snare and hi-hat activity can be told apart.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass

import numpy as np

from .config import ANALYSIS_CONFIG, AnalysisConfig
from .errors import InvalidInputError
from .spectral import spectral_flux
from .transform import generate_window, get_kernel
from .types import FrequencyBand

logger = logging.getLogger("StemForge")


@dataclass(frozen=True, eq=False)
class RhythmAnalysis:
    onset_times: list[float]       # seconds, frame centres
    onset_strength: np.ndarray     # rectified flux per frame
    tempo_bpm: float               # 0 with fewer than two onsets
    beat_period: float             # seconds per beat, 0 without a tempo
    regularity: float              # 1 for evenly spaced onsets, 0 for none
    onset_density: float           # onsets per second
    band_patterns: list[FrequencyBand]


def _frame_magnitudes(mono: np.ndarray, frame_size: int, hop_size: int) -> np.ndarray:
    starts = np.arange(0, len(mono) - frame_size + 1, hop_size)
    frames = mono[starts[:, np.newaxis] + np.arange(frame_size)]
    magnitudes, _ = get_kernel(frame_size).fft(frames * generate_window("hann", frame_size))
    return magnitudes


def _flux_curve(magnitudes: np.ndarray) -> np.ndarray:
    curve = np.zeros(len(magnitudes))
    for i in range(1, len(magnitudes)):
        curve[i] = spectral_flux(magnitudes[i], magnitudes[i - 1], rectify=True)
    return curve


def detect_onsets(
    strength: np.ndarray,
    sample_rate: int,
    frame_size: int = ANALYSIS_CONFIG.onset_frame_size,
    hop_size: int = ANALYSIS_CONFIG.onset_hop_size,
    threshold: float = ANALYSIS_CONFIG.onset_threshold,
    level: float = 0.0,
    min_gap_s: float = ANALYSIS_CONFIG.onset_min_gap_s
) -> list[float]:
    """
    Onset times in seconds from an onset strength curve.

    A frame is an onset when it is a local maximum above
    ``threshold * max(strongest flux, level)``. ``level`` is the mean frame
    magnitude, so steady tones with small frame-to-frame wobble yield nothing.
    Onsets closer than ``min_gap_s`` keep only the stronger one.
    """
    strength = np.asarray(strength, dtype=np.float64)
    if len(strength) < 3:
        return []
    floor = threshold * max(float(np.max(strength)), level)
    middle = strength[1:-1]
    peaks = np.flatnonzero((middle > strength[:-2]) & (middle >= strength[2:]) & (middle > floor)) + 1

    min_gap = max(1, int(round(min_gap_s * sample_rate / hop_size)))
    picked: list[int] = []
    for index in peaks:
        if picked and index - picked[-1] < min_gap:
            if strength[index] > strength[picked[-1]]:
                picked[-1] = index
            continue
        picked.append(int(index))
    return [(index * hop_size + frame_size / 2) / sample_rate for index in picked]


def estimate_tempo(onset_times: list[float], tolerance: float = ANALYSIS_CONFIG.tempo_tolerance) -> float:
    """
    Tempo in BPM from inter-onset intervals, 0 with fewer than two onsets.
    Intervals further than ``tolerance`` from the median are dropped before averaging.
    """
    if len(onset_times) < 2:
        return 0.0
    intervals = np.diff(np.asarray(onset_times, dtype=np.float64))
    median = float(np.median(intervals))
    if median <= 0:
        return 0.0
    kept = intervals[np.abs(intervals - median) <= tolerance * median]
    return 60.0 / float(np.mean(kept))


def onset_regularity(onset_times: list[float]) -> float:
    """``1 - std / mean`` of the inter-onset intervals clipped to [0, 1]; needs three onsets."""
    if len(onset_times) < 3:
        return 0.0
    intervals = np.diff(np.asarray(onset_times, dtype=np.float64))
    mean = float(np.mean(intervals))
    if mean <= 0:
        return 0.0
    return float(np.clip(1.0 - np.std(intervals) / mean, 0.0, 1.0))


def band_patterns(
    magnitudes: np.ndarray,
    sample_rate: int,
    frame_size: int,
    bands: tuple[tuple[float, float], ...] = ANALYSIS_CONFIG.rhythm_bands
) -> list[FrequencyBand]:
    """Mean rectified flux inside each band; bands above Nyquist get zero energy."""
    frequencies = np.arange(magnitudes.shape[-1]) * sample_rate / frame_size
    patterns = []
    for low, high in bands:
        selected = (frequencies >= low) & (frequencies <= high)
        energy = 0.0
        if np.any(selected) and len(magnitudes) > 1:
            energy = float(np.mean(_flux_curve(magnitudes[:, selected])[1:]))
        patterns.append(FrequencyBand(low, high, energy))
    return patterns


def analyze_rhythm(
    mono: np.ndarray,
    sample_rate: int,
    config: AnalysisConfig = ANALYSIS_CONFIG
) -> RhythmAnalysis:
    """
    Onsets, tempo, regularity and drum-band activity of a mono signal.

    Args:
        mono: Mono samples, at least one onset frame long
        sample_rate: Sample rate in Hz
        config: Frame, threshold and band settings

    Returns:
        RhythmAnalysis
    """
    if sample_rate <= 0:
        raise InvalidInputError(f"Sample rate must be positive, got {sample_rate}")
    mono = np.asarray(mono, dtype=np.float64)
    if mono.ndim != 1:
        raise InvalidInputError(f"Expected mono samples, got shape {mono.shape}")
    frame_size, hop_size = config.onset_frame_size, config.onset_hop_size
    if len(mono) < frame_size:
        raise InvalidInputError(
            f"Buffer of {len(mono)} samples is shorter than the {frame_size}-sample onset frame"
        )

    magnitudes = _frame_magnitudes(mono, frame_size, hop_size)
    strength = _flux_curve(magnitudes)
    level = float(np.mean(np.sqrt(np.mean(magnitudes ** 2, axis=1))))
    onsets = detect_onsets(strength, sample_rate, frame_size, hop_size,
                           config.onset_threshold, level, config.onset_min_gap_s)
    tempo = estimate_tempo(onsets, config.tempo_tolerance)

    result = RhythmAnalysis(
        onset_times=onsets,
        onset_strength=strength,
        tempo_bpm=tempo,
        beat_period=60.0 / tempo if tempo > 0 else 0.0,
        regularity=onset_regularity(onsets),
        onset_density=len(onsets) * sample_rate / len(mono),
        band_patterns=band_patterns(magnitudes, sample_rate, frame_size, config.rhythm_bands),
    )
    logger.debug("Rhythm analysis: %d onsets, tempo=%.1f BPM, regularity=%.2f",
                 len(onsets), tempo, result.regularity)
    return result
