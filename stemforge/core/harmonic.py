"""
Harmonic analysis for StemForge.
Fundamental estimation by harmonic product spectrum and per-harmonic measurements.
"""
from __future__ import annotations
import logging
import math
from dataclasses import dataclass

import numpy as np

from .config import ANALYSIS_CONFIG
from .spectral import compute_spectrum, spectral_crest
from .transform import get_kernel
from .types import Harmonic, Spectrum

logger = logging.getLogger("StemForge")


@dataclass(frozen=True)
class HarmonicAnalysis:
    fundamental_frequency: float
    harmonics: list[Harmonic]
    total_harmonic_distortion: float
    harmonic_to_noise_ratio: float
    inharmonicity: float
    odd_even_ratio: float
    spectral_crest: float


def harmonic_product_spectrum(magnitudes: np.ndarray, factors: int = ANALYSIS_CONFIG.hps_factors) -> np.ndarray:
    """
    Product of the spectrum with copies of itself decimated by 2..``factors``.

    The result only covers bins where every decimated copy is defined, so it
    is ``len(magnitudes) // factors`` long (inside the lower half).
    """
    magnitudes = np.asarray(magnitudes, dtype=np.float64)
    length = len(magnitudes) // factors
    peak = float(np.max(magnitudes)) if len(magnitudes) else 0.0
    if length == 0 or peak <= 0:
        return np.zeros(length)
    normalized = magnitudes / peak
    product = normalized[:length].copy()
    for factor in range(2, factors + 1):
        product *= normalized[::factor][:length]
    return product


def estimate_fundamental(spectrum: Spectrum, factors: int = ANALYSIS_CONFIG.hps_factors) -> float:
    """Frequency of the strongest HPS bin above DC, or 0 for a silent spectrum."""
    product = harmonic_product_spectrum(spectrum.magnitude, factors)
    if len(product) < 2 or float(np.max(product[1:])) <= 0:
        return 0.0
    index = 1 + int(np.argmax(product[1:]))
    return index * spectrum.bin_width


def extract_harmonics(
    spectrum: Spectrum,
    fundamental: float,
    max_harmonics: int = ANALYSIS_CONFIG.max_harmonics,
    tolerance: float = ANALYSIS_CONFIG.harmonic_tolerance
) -> list[Harmonic]:
    """
    Locate harmonics 1..``max_harmonics`` of ``fundamental``.

    Each harmonic is the strongest bin within ``tolerance`` (relative) of
    ``fundamental * n``. Harmonics at or above Nyquist are not searched.
    """
    if fundamental <= 0:
        return []
    magnitudes = spectrum.magnitude
    bins = len(magnitudes)
    width = spectrum.bin_width
    nyquist = spectrum.sample_rate / 2

    harmonics = []
    for number in range(1, max_harmonics + 1):
        target = fundamental * number
        if target >= nyquist:
            break
        low = max(0, int(math.floor(target * (1 - tolerance) / width)))
        high = min(bins - 1, int(math.ceil(target * (1 + tolerance) / width)))
        if high < low:
            break
        index = low + int(np.argmax(magnitudes[low:high + 1]))
        harmonics.append(Harmonic(
            number=number,
            frequency=index * width,
            magnitude=float(magnitudes[index]),
            phase=float(spectrum.phase[index]),
        ))
    return harmonics


def total_harmonic_distortion(harmonics: list[Harmonic]) -> float:
    """sqrt(sum of overtone power / fundamental power)."""
    if not harmonics or harmonics[0].magnitude <= 0:
        return 0.0
    overtone_power = sum(h.magnitude ** 2 for h in harmonics[1:])
    return math.sqrt(overtone_power / harmonics[0].magnitude ** 2)


def harmonic_to_noise_ratio(harmonics: list[Harmonic], magnitudes: np.ndarray) -> float:
    harmonic_power = sum(h.magnitude ** 2 for h in harmonics)
    noise_power = float(np.sum(np.asarray(magnitudes) ** 2)) - harmonic_power
    if harmonic_power <= 0 or noise_power <= 0:
        return 0.0
    return 10 * math.log10(harmonic_power / noise_power)


def inharmonicity(harmonics: list[Harmonic], fundamental: float) -> float:
    """Mean relative deviation of each harmonic from its ideal multiple."""
    if not harmonics or fundamental <= 0:
        return 0.0
    deviations = [
        abs(h.frequency - h.number * fundamental) / (h.number * fundamental)
        for h in harmonics
    ]
    return float(np.mean(deviations))


def odd_even_ratio(harmonics: list[Harmonic]) -> float:
    """
    Odd overtone power over even overtone power (the fundamental is excluded).

    Returns ``math.inf`` when there is odd power but no even power, 0 when
    there is neither.
    """
    odd = sum(h.magnitude ** 2 for h in harmonics if h.number > 1 and h.number % 2 == 1)
    even = sum(h.magnitude ** 2 for h in harmonics if h.number % 2 == 0)
    if even <= 0:
        return math.inf if odd > 0 else 0.0
    return odd / even


class HarmonicAnalyzer:
    def __init__(
        self,
        sample_rate: int = ANALYSIS_CONFIG.default_samplerate,
        fft_size: int = ANALYSIS_CONFIG.fft_size
    ):
        get_kernel(fft_size)
        self.sample_rate = sample_rate
        self.fft_size = fft_size

    def analyze(self, samples: np.ndarray) -> HarmonicAnalysis:
        return self.analyze_spectrum(compute_spectrum(samples, self.sample_rate, self.fft_size))

    def analyze_spectrum(self, spectrum: Spectrum) -> HarmonicAnalysis:
        fundamental = estimate_fundamental(spectrum)
        harmonics = extract_harmonics(spectrum, fundamental)

        result = HarmonicAnalysis(
            fundamental_frequency=fundamental,
            harmonics=harmonics,
            total_harmonic_distortion=total_harmonic_distortion(harmonics),
            harmonic_to_noise_ratio=harmonic_to_noise_ratio(harmonics, spectrum.magnitude),
            inharmonicity=inharmonicity(harmonics, fundamental),
            odd_even_ratio=odd_even_ratio(harmonics),
            spectral_crest=spectral_crest(spectrum.magnitude),
        )
        logger.debug("Harmonic analysis: f0=%.1f Hz, %d harmonics", fundamental, len(harmonics))
        return result
