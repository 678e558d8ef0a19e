"""
Tests for spectral analysis.
"""
import pytest
import numpy as np

from stemforge.core.errors import InvalidInputError
from stemforge.core.spectral import (
    SpectralAnalyzer, compute_spectrum, find_spectral_peaks, harmonicity,
    spectral_bandwidth, spectral_centroid, spectral_crest, spectral_flatness,
    spectral_flux, spectral_rolloff, zero_crossing_rate,
)

BIN_WIDTH = 44100 / 4096


class TestComputeSpectrum:

    def test_shape(self, sample_mono_audio, sr):
        spectrum = compute_spectrum(sample_mono_audio, sr)
        assert spectrum.magnitude.shape == (2048,)
        assert spectrum.fft_size == 4096

    def test_short_input_rejected(self, sr):
        with pytest.raises(InvalidInputError):
            compute_spectrum(np.zeros(1000), sr)

    def test_multichannel_rejected(self, sample_stereo_audio, sr):
        with pytest.raises(InvalidInputError):
            compute_spectrum(sample_stereo_audio, sr)

    def test_non_power_of_two_rejected(self, sample_mono_audio, sr):
        with pytest.raises(InvalidInputError):
            compute_spectrum(sample_mono_audio, sr, fft_size=3000)


class TestDescriptors:
    """Tests for the individual descriptor functions."""

    def test_pure_tone_centroid(self, sample_mono_audio, sr):
        spectrum = compute_spectrum(sample_mono_audio, sr)
        centroid = spectral_centroid(spectrum.magnitude, spectrum.frequencies)
        assert abs(centroid - 1000.0) < BIN_WIDTH

    def test_pure_tone_rolloff(self, sample_mono_audio, sr):
        spectrum = compute_spectrum(sample_mono_audio, sr)
        rolloff = spectral_rolloff(spectrum.magnitude, spectrum.frequencies)
        assert abs(rolloff - 1000.0) < 3 * BIN_WIDTH

    def test_rolloff_falls_back_to_nyquist(self):
        freqs = np.arange(8, dtype=float)
        assert spectral_rolloff(np.ones(8), freqs, fraction=1.5, nyquist=22050.0) == 22050.0

    def test_silence_descriptors_are_zero(self, silence, sr):
        spectrum = compute_spectrum(silence, sr)
        assert spectral_centroid(spectrum.magnitude, spectrum.frequencies) == 0.0
        assert spectral_bandwidth(spectrum.magnitude, spectrum.frequencies) == 0.0
        assert spectral_flatness(spectrum.magnitude) == 0.0
        assert spectral_crest(spectrum.magnitude) == 0.0

    def test_bandwidth_wider_for_two_tones(self, sample_mono_audio, two_tone_audio, sr):
        tone = compute_spectrum(sample_mono_audio, sr)
        pair = compute_spectrum(two_tone_audio, sr)
        assert (spectral_bandwidth(pair.magnitude, pair.frequencies)
                > spectral_bandwidth(tone.magnitude, tone.frequencies))

    def test_flux(self):
        assert spectral_flux(np.ones(4), None) == 0.0
        assert spectral_flux(np.ones(4), np.ones(4)) == 0.0
        assert np.isclose(spectral_flux(np.full(4, 2.0), np.ones(4)), 1.0)

    def test_rectified_flux_ignores_falling_bins(self):
        current, previous = np.array([1.0, 0.0]), np.array([0.0, 1.0])
        assert np.isclose(spectral_flux(current, previous), 1.0)
        assert np.isclose(spectral_flux(current, previous, rectify=True), np.sqrt(0.5))
        assert spectral_flux(previous * 0, previous, rectify=True) == 0.0

    def test_flatness_of_flat_spectrum(self):
        assert np.isclose(spectral_flatness(np.ones(64)), 1.0)

    def test_noise_flatter_than_tone(self, sample_mono_audio, sr):
        rng = np.random.default_rng(3)
        noise = compute_spectrum(rng.standard_normal(sr), sr)
        tone = compute_spectrum(sample_mono_audio, sr)
        assert spectral_flatness(noise.magnitude) > spectral_flatness(tone.magnitude)

    def test_crest(self):
        assert np.isclose(spectral_crest(np.ones(16)), 1.0)
        assert np.isclose(spectral_crest(np.array([0.0, 0.0, 0.0, 4.0])), 4.0)

    def test_zero_crossing_rate(self, sample_mono_audio):
        # Two crossings per cycle
        assert abs(zero_crossing_rate(sample_mono_audio) - 2000 / 44100) < 0.002
        assert zero_crossing_rate(np.ones(100)) == 0.0


class TestPeaks:

    def test_two_tone_peaks(self, two_tone_audio, sr):
        spectrum = compute_spectrum(two_tone_audio, sr)
        peaks = find_spectral_peaks(spectrum.magnitude, spectrum.frequencies, spectrum.phase)
        assert len(peaks) >= 2
        found = sorted(p.frequency for p in peaks[:2])
        assert abs(found[0] - 100.0) < BIN_WIDTH
        assert abs(found[1] - 5000.0) < BIN_WIDTH

    def test_sorted_and_limited(self):
        magnitudes = np.zeros(32)
        magnitudes[[4, 10, 20]] = [0.5, 1.0, 0.8]
        peaks = find_spectral_peaks(magnitudes, np.arange(32.0), limit=2)
        assert [p.frequency for p in peaks] == [10.0, 20.0]

    def test_threshold(self):
        magnitudes = np.zeros(32)
        magnitudes[[4, 10]] = [0.05, 1.0]
        peaks = find_spectral_peaks(magnitudes, np.arange(32.0), threshold=0.1)
        assert len(peaks) == 1

    def test_harmonicity_of_exact_series(self):
        magnitudes = np.zeros(64)
        magnitudes[[10, 20, 30]] = 1.0
        # Pairs 20/10 and 30/10 are integer ratios, 30/20 is not
        assert np.isclose(harmonicity(magnitudes, np.arange(64.0)), 2 / 3)

    def test_harmonicity_single_peak(self):
        magnitudes = np.zeros(64)
        magnitudes[10] = 1.0
        assert harmonicity(magnitudes, np.arange(64.0)) == 0.0


class TestSpectralAnalyzer:

    def test_analyze(self, sample_mono_audio, sr):
        analyzer = SpectralAnalyzer(sr)
        result = analyzer.analyze(sample_mono_audio)
        assert result.magnitude_spectrum.shape == (2048,)
        assert abs(result.spectral_centroid - 1000.0) < BIN_WIDTH
        assert abs(result.peak_frequencies[0].frequency - 1000.0) < BIN_WIDTH
        assert result.spectral_flux == 0.0

    def test_flux_tracks_previous_call(self, sample_mono_audio, two_tone_audio, sr):
        analyzer = SpectralAnalyzer(sr)
        analyzer.analyze(sample_mono_audio)
        assert analyzer.analyze(two_tone_audio).spectral_flux > 0.0
        analyzer.reset()
        assert analyzer.analyze(two_tone_audio).spectral_flux == 0.0

    def test_invalid_fft_size(self, sr):
        with pytest.raises(InvalidInputError):
            SpectralAnalyzer(sr, fft_size=1000)
