"""
Psychoacoustic analysis for StemForge.
Bark/Mel filter banks, critical bands, masking thresholds and loudness models.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from functools import lru_cache

import numpy as np

from .config import ANALYSIS_CONFIG
from .spectral import compute_spectrum
from .transform import get_kernel
from .types import FrequencyBand, Spectrum

logger = logging.getLogger("StemForge")


# 24 critical bands (Hz), 0 - 15.5 kHz
CRITICAL_BAND_EDGES: tuple[tuple[float, float], ...] = (
    (0, 100), (100, 200), (200, 300), (300, 400), (400, 510), (510, 630),
    (630, 770), (770, 920), (920, 1080), (1080, 1270), (1270, 1480), (1480, 1720),
    (1720, 2000), (2000, 2320), (2320, 2700), (2700, 3150), (3150, 3700), (3700, 4400),
    (4400, 5300), (5300, 6400), (6400, 7700), (7700, 9500), (9500, 12000), (12000, 15500),
)


@dataclass(frozen=True, eq=False)
class PsychoacousticAnalysis:
    bark_scale: np.ndarray
    mel_scale: np.ndarray
    critical_bands: list[FrequencyBand]
    masking_thresholds: np.ndarray
    tonality_coefficient: float
    roughness: float
    sharpness: float
    loudness_phons: float
    loudness_sones: float


def frequency_to_bark(freq):
    return 13 * np.arctan(0.00076 * freq) + 3.5 * np.arctan((np.asarray(freq) / 7500) ** 2)


def frequency_to_mel(freq):
    return 2595 * np.log10(1 + np.asarray(freq) / 700)


def mel_to_frequency(mel):
    return 700 * (10 ** (np.asarray(mel) / 2595) - 1)


def _bin_frequencies(sample_rate: int, fft_size: int) -> np.ndarray:
    return np.arange(fft_size // 2) * sample_rate / fft_size


@lru_cache(maxsize=8)
def bark_filter_bank(sample_rate: int, fft_size: int, bands: int = ANALYSIS_CONFIG.bark_bands) -> np.ndarray:
    """Triangular filters one Bark wide, centred on Bark 1..bands. Shape (bands, fft_size // 2)."""
    barks = frequency_to_bark(_bin_frequencies(sample_rate, fft_size))
    centres = np.arange(1, bands + 1)[:, np.newaxis]
    bank = np.clip(1 - np.abs(barks[np.newaxis, :] - centres), 0.0, None)
    bank.flags.writeable = False
    return bank


@lru_cache(maxsize=8)
def mel_filter_bank(sample_rate: int, fft_size: int, bands: int = ANALYSIS_CONFIG.mel_bands) -> np.ndarray:
    """Triangular filters evenly spaced on the Mel scale up to Nyquist. Shape (bands, fft_size // 2)."""
    freqs = _bin_frequencies(sample_rate, fft_size)
    max_mel = frequency_to_mel(sample_rate / 2)
    edges = mel_to_frequency(np.linspace(0.0, max_mel, bands + 2))

    bank = np.zeros((bands, len(freqs)))
    for i in range(bands):
        low, centre, high = edges[i], edges[i + 1], edges[i + 2]
        rising = (freqs >= low) & (freqs <= centre)
        falling = (freqs > centre) & (freqs <= high)
        bank[i, rising] = (freqs[rising] - low) / (centre - low)
        bank[i, falling] = (high - freqs[falling]) / (high - centre)
    bank.flags.writeable = False
    return bank


def critical_band_energies(spectrum: Spectrum) -> list[FrequencyBand]:
    """Root of summed squared magnitude within each of the 24 fixed critical bands."""
    magnitudes = spectrum.magnitude
    bands = []
    for low, high in CRITICAL_BAND_EDGES:
        low_bin = int(np.floor(low * spectrum.fft_size / spectrum.sample_rate))
        high_bin = int(np.floor(high * spectrum.fft_size / spectrum.sample_rate))
        segment = magnitudes[low_bin:high_bin + 1]
        bands.append(FrequencyBand(low, high, float(np.sqrt(np.sum(segment ** 2)))))
    return bands


def absolute_threshold_db(freq, min_hz: float = ANALYSIS_CONFIG.min_threshold_hz):
    """Terhardt threshold in quiet (dB SPL); frequencies below ``min_hz`` are clamped."""
    khz = np.maximum(np.asarray(freq, dtype=np.float64), min_hz) / 1000
    return 3.64 * khz ** -0.8 - 6.5 * np.exp(-0.6 * (khz - 3.3) ** 2) + 0.001 * khz ** 4


def masking_thresholds(spectrum: Spectrum) -> np.ndarray:
    """Per-bin threshold: the louder of the hearing threshold and 1% of the bin magnitude."""
    absolute = 10 ** (absolute_threshold_db(spectrum.frequencies) / 20)
    return np.maximum(absolute, spectrum.magnitude * 0.01)


def tonality(magnitudes: np.ndarray) -> float:
    """1 - spectral flatness over the non-zero bins above DC."""
    positive = magnitudes[1:][magnitudes[1:] > 0]
    if len(positive) == 0:
        return 0.0
    arithmetic = float(np.mean(positive))
    geometric = float(np.exp(np.mean(np.log(positive))))
    flatness = geometric / arithmetic if arithmetic > 0 else 0.0
    return 1.0 - flatness


def roughness(bark_spectrum: np.ndarray) -> float:
    if len(bark_spectrum) == 0:
        return 0.0
    diffs = np.abs(np.diff(bark_spectrum))
    weights = np.exp(-0.25 * np.arange(len(diffs)))
    return float(np.sum(diffs * weights) / len(bark_spectrum))


def sharpness(bark_spectrum: np.ndarray) -> float:
    total = float(np.sum(bark_spectrum))
    if total <= 0:
        return 0.0
    weights = (np.arange(len(bark_spectrum)) / len(bark_spectrum)) ** 4
    return float(np.sum(bark_spectrum * weights) / total)


def loudness_phons(
    bands: list[FrequencyBand],
    reference_db: float = ANALYSIS_CONFIG.reference_spl_db,
    min_hz: float = ANALYSIS_CONFIG.min_threshold_hz
) -> float:
    """
    Mean per-band loudness level with a simplified equal-loudness correction.

    Args:
        bands: Critical-band energies
        reference_db: SPL assigned to unit energy
        min_hz: Lower clamp for band centre frequencies

    Returns:
        Loudness level in phons (>= 0)
    """
    if not bands:
        return 0.0
    total = 0.0
    for band in bands:
        centre = np.sqrt(max(band.low_hz, min_hz) * band.high_hz)
        phons = 20 * np.log10(band.energy + 1e-10) + reference_db
        if centre < 1000:
            phons += 10 * np.log10(1000 / centre)
        elif centre > 1000:
            phons -= 5 * np.log10(centre / 1000)
        total += max(0.0, phons)
    return float(total / len(bands))


def phons_to_sones(phons: float) -> float:
    """Stevens' power law, branching at 40 phons."""
    if phons > 40:
        return float(2 ** ((phons - 40) / 10))
    return float(0.25 * (phons / 40) ** 2.5)


def apply_psychoacoustic_masking(
    samples: np.ndarray,
    thresholds_db: np.ndarray,
    sample_rate: int,
    fft_size: int = ANALYSIS_CONFIG.fft_size
) -> np.ndarray:
    """
    Attenuate bins whose level falls under a masking threshold to 10%.

    Args:
        samples: Mono samples, at least ``fft_size`` long
        thresholds_db: Per-bin threshold in dB (length fft_size // 2)
        sample_rate: Sample rate in Hz
        fft_size: Transform size

    Returns:
        Resynthesized frame of ``fft_size`` samples
    """
    spectrum = compute_spectrum(samples, sample_rate, fft_size)
    magnitudes = np.array(spectrum.magnitude)
    levels_db = 20 * np.log10(magnitudes + 1e-10)
    magnitudes[levels_db < np.asarray(thresholds_db)] *= 0.1
    return get_kernel(fft_size).ifft(magnitudes, spectrum.phase)


class PsychoacousticAnalyzer:
    """Stateless apart from the shared, cached filter banks."""

    def __init__(
        self,
        sample_rate: int = ANALYSIS_CONFIG.default_samplerate,
        fft_size: int = ANALYSIS_CONFIG.fft_size
    ):
        get_kernel(fft_size)
        self.sample_rate = sample_rate
        self.fft_size = fft_size
        self.bark_filters = bark_filter_bank(sample_rate, fft_size)
        self.mel_filters = mel_filter_bank(sample_rate, fft_size)

    def analyze(self, samples: np.ndarray) -> PsychoacousticAnalysis:
        return self.analyze_spectrum(compute_spectrum(samples, self.sample_rate, self.fft_size))

    def analyze_spectrum(self, spectrum: Spectrum) -> PsychoacousticAnalysis:
        magnitudes = spectrum.magnitude
        bark = self.bark_filters @ magnitudes
        mel = self.mel_filters @ magnitudes
        bands = critical_band_energies(spectrum)
        phons = loudness_phons(bands)

        result = PsychoacousticAnalysis(
            bark_scale=bark,
            mel_scale=mel,
            critical_bands=bands,
            masking_thresholds=masking_thresholds(spectrum),
            tonality_coefficient=tonality(magnitudes),
            roughness=roughness(bark),
            sharpness=sharpness(bark),
            loudness_phons=phons,
            loudness_sones=phons_to_sones(phons),
        )
        logger.debug("Psychoacoustic analysis: %.1f phons, tonality=%.3f",
                     phons, result.tonality_coefficient)
        return result
