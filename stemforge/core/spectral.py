"""
Spectral analysis for StemForge.
Centroid, bandwidth, rolloff, flux, peak picking and harmonicity over a Spectrum.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .config import ANALYSIS_CONFIG
from .errors import InvalidInputError
from .transform import generate_window, get_kernel
from .types import Spectrum, SpectralPeak

logger = logging.getLogger("StemForge")


@dataclass(frozen=True, eq=False)
class SpectralAnalysisResult:
    """Spectral descriptors of one analysis window."""
    magnitude_spectrum: np.ndarray
    phase_spectrum: np.ndarray
    frequency_bins: np.ndarray
    peak_frequencies: list[SpectralPeak]
    spectral_centroid: float
    spectral_bandwidth: float
    spectral_rolloff: float
    spectral_flux: float
    harmonicity: float
    spectral_flatness: float
    spectral_crest: float


def compute_spectrum(
    samples: np.ndarray,
    sample_rate: int,
    fft_size: int = ANALYSIS_CONFIG.fft_size,
    window: str = ANALYSIS_CONFIG.window
) -> Spectrum:
    """
    Window the first ``fft_size`` samples and transform them.

    Args:
        samples: Mono samples, at least ``fft_size`` long
        sample_rate: Sample rate in Hz
        fft_size: Transform size (power of two)
        window: Window kind

    Returns:
        Spectrum of the first analysis window
    """
    kernel = get_kernel(fft_size)
    samples = np.asarray(samples, dtype=np.float64)
    if samples.ndim != 1:
        raise InvalidInputError(f"Expected mono samples, got shape {samples.shape}")
    if len(samples) < fft_size:
        raise InvalidInputError(
            f"Buffer of {len(samples)} samples is shorter than the {fft_size}-point FFT"
        )
    frame = samples[:fft_size] * generate_window(window, fft_size)
    magnitude, phase = kernel.fft(frame)
    return Spectrum(magnitude, phase, sample_rate, fft_size)


def spectral_centroid(magnitudes: np.ndarray, frequencies: np.ndarray) -> float:
    total = float(np.sum(magnitudes))
    if total <= 0:
        return 0.0
    return float(np.sum(frequencies * magnitudes) / total)


def spectral_bandwidth(magnitudes: np.ndarray, frequencies: np.ndarray) -> float:
    total = float(np.sum(magnitudes))
    if total <= 0:
        return 0.0
    centroid = spectral_centroid(magnitudes, frequencies)
    return float(np.sqrt(np.sum((frequencies - centroid) ** 2 * magnitudes) / total))


def spectral_rolloff(
    magnitudes: np.ndarray,
    frequencies: np.ndarray,
    fraction: float = ANALYSIS_CONFIG.rolloff_fraction,
    nyquist: Optional[float] = None
) -> float:
    """
    Frequency below which ``fraction`` of the squared-magnitude energy lies.
    Falls back to the Nyquist frequency if the target is never reached.
    """
    cumulative = np.cumsum(np.asarray(magnitudes, dtype=np.float64) ** 2)
    if len(cumulative) == 0:
        return 0.0
    target = cumulative[-1] * fraction
    index = int(np.searchsorted(cumulative, target, side="left"))
    if index < len(frequencies):
        return float(frequencies[index])
    if nyquist is not None:
        return float(nyquist)
    return float(frequencies[-1])


def spectral_flux(
    current: np.ndarray,
    previous: Optional[np.ndarray],
    rectify: bool = False
) -> float:
    """
    Root-mean-square difference between consecutive magnitude spectra.
    With ``rectify`` only rising bins count, which is what onset detection wants.
    """
    if previous is None:
        return 0.0
    length = min(len(current), len(previous))
    if length == 0:
        return 0.0
    diff = current[:length] - previous[:length]
    if rectify:
        diff = np.maximum(diff, 0.0)
    return float(np.sqrt(np.mean(diff * diff)))


def find_spectral_peaks(
    magnitudes: np.ndarray,
    frequencies: np.ndarray,
    phases: Optional[np.ndarray] = None,
    threshold: float = ANALYSIS_CONFIG.peak_threshold,
    limit: int = ANALYSIS_CONFIG.max_peaks
) -> list[SpectralPeak]:
    """
    Local maxima above ``threshold * max(magnitudes)``, strongest first.

    Args:
        magnitudes: Magnitude spectrum
        frequencies: Bin frequencies in Hz
        phases: Optional phase spectrum used to fill in each peak's phase
        threshold: Fraction of the global maximum a peak must exceed
        limit: Maximum number of peaks returned

    Returns:
        Peaks sorted by magnitude descending
    """
    if len(magnitudes) < 3:
        return []
    floor = float(np.max(magnitudes)) * threshold
    centre = magnitudes[1:-1]
    is_peak = (centre > magnitudes[:-2]) & (centre > magnitudes[2:]) & (centre > floor)
    indices = np.nonzero(is_peak)[0] + 1
    order = indices[np.argsort(-magnitudes[indices], kind="stable")][:limit]
    return [
        SpectralPeak(
            frequency=float(frequencies[i]),
            magnitude=float(magnitudes[i]),
            phase=float(phases[i]) if phases is not None else 0.0,
        )
        for i in order
    ]


def harmonicity(
    magnitudes: np.ndarray,
    frequencies: np.ndarray,
    threshold: float = ANALYSIS_CONFIG.harmonicity_peak_threshold,
    tolerance: float = ANALYSIS_CONFIG.harmonicity_tolerance
) -> float:
    """
    Fraction of peak pairs whose frequency ratio is close to an integer >= 2.
    0 means noise-like, 1 means every pair of peaks is harmonically related.
    """
    peaks = find_spectral_peaks(magnitudes, frequencies, threshold=threshold)
    if len(peaks) < 2:
        return 0.0

    harmonic_pairs = 0
    total_pairs = 0
    for i, first in enumerate(peaks):
        for second in peaks[i + 1:]:
            low, high = sorted((first.frequency, second.frequency))
            total_pairs += 1
            if low <= 0:
                continue
            ratio = high / low
            nearest = round(ratio)
            if nearest >= 2 and abs(ratio - nearest) < tolerance:
                harmonic_pairs += 1

    return harmonic_pairs / total_pairs if total_pairs else 0.0


def spectral_flatness(magnitudes: np.ndarray) -> float:
    """Geometric over arithmetic mean of the non-zero bins above DC."""
    positive = magnitudes[1:][magnitudes[1:] > 0]
    if len(positive) == 0:
        return 0.0
    arithmetic = float(np.mean(positive))
    if arithmetic <= 0:
        return 0.0
    geometric = float(np.exp(np.mean(np.log(positive))))
    return geometric / arithmetic


def spectral_crest(magnitudes: np.ndarray) -> float:
    if len(magnitudes) == 0:
        return 0.0
    mean = float(np.mean(magnitudes))
    return float(np.max(magnitudes)) / mean if mean > 0 else 0.0


def zero_crossing_rate(samples: np.ndarray) -> float:
    """Sign changes per sample."""
    if len(samples) < 2:
        return 0.0
    signs = np.asarray(samples) >= 0
    return float(np.count_nonzero(signs[1:] != signs[:-1])) / len(samples)


class SpectralAnalyzer:
    """
    Spectral analysis for ONE stream.

    Keeps the previous magnitude spectrum so consecutive calls report flux;
    use a separate instance per stream.
    """

    def __init__(
        self,
        sample_rate: int = ANALYSIS_CONFIG.default_samplerate,
        fft_size: int = ANALYSIS_CONFIG.fft_size,
        window: str = ANALYSIS_CONFIG.window
    ):
        get_kernel(fft_size)  # validates the size up front
        self.sample_rate = sample_rate
        self.fft_size = fft_size
        self.window = window
        self.previous_magnitude: Optional[np.ndarray] = None

    def reset(self) -> None:
        self.previous_magnitude = None

    def analyze(self, samples: np.ndarray) -> SpectralAnalysisResult:
        spectrum = compute_spectrum(samples, self.sample_rate, self.fft_size, self.window)
        return self.analyze_spectrum(spectrum)

    def analyze_spectrum(self, spectrum: Spectrum) -> SpectralAnalysisResult:
        magnitudes = spectrum.magnitude
        frequencies = spectrum.frequencies

        flux = spectral_flux(magnitudes, self.previous_magnitude)
        self.previous_magnitude = magnitudes.copy()

        result = SpectralAnalysisResult(
            magnitude_spectrum=magnitudes,
            phase_spectrum=spectrum.phase,
            frequency_bins=frequencies,
            peak_frequencies=find_spectral_peaks(magnitudes, frequencies, spectrum.phase),
            spectral_centroid=spectral_centroid(magnitudes, frequencies),
            spectral_bandwidth=spectral_bandwidth(magnitudes, frequencies),
            spectral_rolloff=spectral_rolloff(
                magnitudes, frequencies, nyquist=spectrum.sample_rate / 2
            ),
            spectral_flux=flux,
            harmonicity=harmonicity(magnitudes, frequencies),
            spectral_flatness=spectral_flatness(magnitudes),
            spectral_crest=spectral_crest(magnitudes),
        )
        logger.debug(
            "Spectral analysis: centroid=%.1f Hz rolloff=%.1f Hz flux=%.4f",
            result.spectral_centroid, result.spectral_rolloff, result.spectral_flux,
        )
        return result
