"""
Tests for onset, tempo and drum-band rhythm analysis.
"""
import pytest
import numpy as np

from stemforge.core.errors import InvalidInputError
from stemforge.core.rhythm import (
    analyze_rhythm, detect_onsets, estimate_tempo, onset_regularity,
)

from conftest import SR, sine

CLICK_TIMES = [0.25 + 0.5 * k for k in range(8)]


def click_train(seconds: float = 4.0, times=CLICK_TIMES) -> np.ndarray:
    """Single-sample clicks at ``times``: 120 BPM for the default grid."""
    signal = np.zeros(int(seconds * SR), dtype=np.float32)
    for t in times:
        signal[int(round(t * SR))] = 1.0
    return signal


def burst_train(freq: float, seconds: float = 3.0) -> np.ndarray:
    """100 ms Hann-shaped tone bursts every half second."""
    signal = np.zeros(int(seconds * SR), dtype=np.float32)
    burst = sine(freq, seconds=0.1) * np.hanning(int(0.1 * SR)).astype(np.float32)
    for k in range(int(seconds * 2)):
        start = int((0.25 + 0.5 * k) * SR)
        end = min(len(signal), start + len(burst))
        signal[start:end] += burst[:end - start]
    return signal


class TestClickTrain:
    """120 BPM clicks starting a quarter second in."""

    def test_onsets_found(self, sr):
        analysis = analyze_rhythm(click_train(), sr)
        assert len(analysis.onset_times) == len(CLICK_TIMES)
        for found, expected in zip(analysis.onset_times, CLICK_TIMES):
            assert abs(found - expected) < 0.015

    def test_tempo(self, sr):
        analysis = analyze_rhythm(click_train(), sr)
        assert abs(analysis.tempo_bpm - 120.0) < 2.4
        assert np.isclose(analysis.beat_period, 60.0 / analysis.tempo_bpm)

    def test_regular_pulse(self, sr):
        analysis = analyze_rhythm(click_train(), sr)
        assert analysis.regularity > 0.9
        assert np.isclose(analysis.onset_density, 2.0)

    def test_strength_curve(self, sr):
        signal = click_train()
        analysis = analyze_rhythm(signal, sr)
        assert len(analysis.onset_strength) == 1 + (len(signal) - 1024) // 512
        assert analysis.onset_strength[0] == 0.0
        assert np.all(analysis.onset_strength >= 0.0)


class TestSilenceAndTones:

    def test_silence(self, silence, sr):
        analysis = analyze_rhythm(silence, sr)
        assert analysis.onset_times == []
        assert analysis.tempo_bpm == 0.0
        assert analysis.beat_period == 0.0
        assert analysis.regularity == 0.0
        assert all(band.energy == 0.0 for band in analysis.band_patterns)

    def test_steady_tone_has_no_onsets(self, sample_mono_audio, sr):
        assert analyze_rhythm(sample_mono_audio, sr).onset_times == []


class TestBandPatterns:

    def test_bands_follow_config(self, silence, sr):
        bands = analyze_rhythm(silence, sr).band_patterns
        assert [(b.low_hz, b.high_hz) for b in bands] == [
            (60.0, 120.0), (150.0, 300.0), (8000.0, 16000.0),
        ]

    @pytest.mark.parametrize("freq, active, quiet", [(80.0, 0, 2), (12000.0, 2, 0)])
    def test_active_band_dominates(self, sr, freq, active, quiet):
        bands = analyze_rhythm(burst_train(freq), sr).band_patterns
        assert bands[active].energy > 10 * bands[quiet].energy
        assert bands[active].energy > 0.0


class TestTempo:

    def test_too_few_onsets(self):
        assert estimate_tempo([]) == 0.0
        assert estimate_tempo([1.0]) == 0.0

    def test_even_grid(self):
        assert np.isclose(estimate_tempo([0.0, 0.5, 1.0, 1.5]), 120.0)

    def test_outlier_interval_ignored(self):
        assert np.isclose(estimate_tempo([0.0, 0.5, 1.0, 1.5, 2.0, 2.1]), 120.0)

    def test_regularity(self):
        assert onset_regularity([0.0, 0.5]) == 0.0
        assert np.isclose(onset_regularity([0.0, 0.5, 1.0, 1.5]), 1.0)
        assert onset_regularity([0.0, 0.1, 1.0, 1.1]) < 0.5


class TestOnsetPicking:

    def test_close_onsets_keep_stronger(self, sr):
        strength = np.zeros(20)
        strength[5] = 1.0
        strength[7] = 2.0
        strength[15] = 1.5
        onsets = detect_onsets(strength, sr, frame_size=1024, hop_size=512)
        assert np.allclose(onsets, [(7 * 512 + 512) / sr, (15 * 512 + 512) / sr])

    def test_flat_curve_has_no_onsets(self, sr):
        assert detect_onsets(np.zeros(50), sr) == []
        assert detect_onsets(np.ones(2), sr) == []


class TestValidation:

    def test_short_input_rejected(self, sr):
        with pytest.raises(InvalidInputError):
            analyze_rhythm(np.zeros(1000), sr)

    def test_multichannel_rejected(self, sample_stereo_audio, sr):
        with pytest.raises(InvalidInputError):
            analyze_rhythm(sample_stereo_audio, sr)

    def test_bad_sample_rate(self, sample_mono_audio):
        with pytest.raises(InvalidInputError):
            analyze_rhythm(sample_mono_audio, 0)
