"""
Tests for biquad and Butterworth filter helpers.
"""
import pytest
import numpy as np

from stemforge.core.errors import InvalidInputError
from stemforge.core.filters import (
    apply_biquad, apply_highpass, apply_lowpass, biquad_coefficients, split_bands,
)

from conftest import sine


def steady_rms(samples: np.ndarray) -> float:
    tail = samples[len(samples) // 2:]
    return float(np.sqrt(np.mean(tail.astype(np.float64) ** 2)))


class TestBiquad:

    def test_zero_gain_peaking_is_identity(self, sample_mono_audio, sr):
        result = apply_biquad(sample_mono_audio, sr, "peaking", 1000.0, 0.0)
        assert np.allclose(result, sample_mono_audio, atol=1e-5)

    def test_peaking_boost_at_centre(self, sample_mono_audio, sr):
        result = apply_biquad(sample_mono_audio, sr, "peaking", 1000.0, 6.0)
        ratio = steady_rms(result) / steady_rms(sample_mono_audio)
        assert np.isclose(ratio, 10 ** (6 / 20), rtol=0.02)

    def test_low_shelf_boosts_lows(self, sr):
        tone = sine(50.0)
        result = apply_biquad(tone, sr, "low_shelf", 200.0, 6.0)
        assert steady_rms(result) / steady_rms(tone) > 1.5

    def test_high_shelf_cuts_highs(self, sr):
        tone = sine(15000.0)
        result = apply_biquad(tone, sr, "high_shelf", 5000.0, -6.0)
        assert steady_rms(result) / steady_rms(tone) < 0.7

    def test_lowpass(self, sr):
        low = apply_biquad(sine(100.0), sr, "lowpass", 1000.0)
        high = apply_biquad(sine(10000.0), sr, "lowpass", 1000.0)
        assert steady_rms(high) < 0.1 * steady_rms(low)

    def test_stereo_filtered_per_channel(self, sample_stereo_audio, sr):
        result = apply_biquad(sample_stereo_audio, sr, "highpass", 100.0)
        assert result.shape == sample_stereo_audio.shape
        assert result.dtype == np.float32

    def test_coefficients_normalized(self, sr):
        _, a = biquad_coefficients("peaking", 1000.0, sr, 3.0)
        assert a[0] == 1.0


class TestBiquadValidation:

    def test_unknown_kind(self, sr):
        with pytest.raises(InvalidInputError):
            biquad_coefficients("notch", 1000.0, sr)

    def test_frequency_above_nyquist(self, sr):
        with pytest.raises(InvalidInputError):
            biquad_coefficients("peaking", 30000.0, sr)

    def test_non_positive_q(self, sr):
        with pytest.raises(InvalidInputError):
            biquad_coefficients("peaking", 1000.0, sr, Q=0.0)


class TestButterworth:

    def test_lowpass_attenuates_highs(self, sr):
        tone = sine(5000.0)
        assert steady_rms(apply_lowpass(tone, sr, 500.0)) < 0.1 * steady_rms(tone)

    def test_highpass_attenuates_lows(self, sr):
        tone = sine(50.0)
        assert steady_rms(apply_highpass(tone, sr, 2000.0)) < 0.1 * steady_rms(tone)

    def test_split_bands_sum_to_input(self, two_tone_audio, sr):
        low, high = split_bands(two_tone_audio, sr, 1000.0)
        assert np.allclose(low + high, two_tone_audio, atol=1e-6)
        assert steady_rms(low) > steady_rms(high) * 0.5
