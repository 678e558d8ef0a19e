"""
Pytest configuration and fixtures for StemForge tests.
"""
import pytest
import numpy as np

from stemforge.core.config import ANALYSIS_CONFIG
from stemforge.core.types import PcmBuffer

SR = ANALYSIS_CONFIG.default_samplerate


def sine(freq: float, seconds: float = 1.0, amplitude: float = 1.0, sr: int = SR) -> np.ndarray:
    t = np.arange(int(seconds * sr)) / sr
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


@pytest.fixture
def sr() -> int:
    return SR


@pytest.fixture
def sample_mono_audio() -> np.ndarray:
    """1 second of a 1 kHz sine."""
    return sine(1000.0)


@pytest.fixture
def sample_stereo_audio() -> np.ndarray:
    """1 second of stereo audio: 440 Hz left, 880 Hz right."""
    return np.column_stack((sine(440.0, amplitude=0.5), sine(880.0, amplitude=0.5)))


@pytest.fixture
def two_tone_audio() -> np.ndarray:
    """1 second of 100 Hz + 5 kHz."""
    return (sine(100.0, amplitude=0.4) + sine(5000.0, amplitude=0.4)).astype(np.float32)


@pytest.fixture
def harmonic_series() -> np.ndarray:
    """220 Hz fundamental with harmonics at 440, 660 and 880 Hz."""
    signal = sum(sine(220.0 * n, amplitude=0.5 / n) for n in range(1, 5))
    return np.asarray(signal, dtype=np.float32)


@pytest.fixture
def silence() -> np.ndarray:
    return np.zeros(SR, dtype=np.float32)


@pytest.fixture
def stereo_buffer(sample_stereo_audio) -> PcmBuffer:
    return PcmBuffer(sample_stereo_audio, SR)


@pytest.fixture
def two_tone_buffer(two_tone_audio) -> PcmBuffer:
    return PcmBuffer(two_tone_audio, SR)
