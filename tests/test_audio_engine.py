"""
Tests for the AudioEngine facade.
"""
import threading

import pytest
import numpy as np

from stemforge.core.audio_engine import AudioEngine
from stemforge.core.config import COARSE_STEMS, SeparationMode, StemType
from stemforge.core.enhancement import EnhancementSettings
from stemforge.core.errors import InvalidInputError, OperationCancelled
from stemforge.core.types import PcmBuffer


@pytest.fixture
def engine(sr) -> AudioEngine:
    return AudioEngine(sr)


class TestAnalyze:

    def test_stereo_bundle(self, engine, stereo_buffer):
        bundle = engine.analyze(stereo_buffer)
        assert bundle.spatial is not None
        assert abs(bundle.spatial.cross_correlation) < 0.05
        assert bundle.spectral.magnitude_spectrum.shape == (2048,)
        assert len(bundle.psychoacoustic.critical_bands) == 24
        assert bundle.dynamics.peak_db < 0

    def test_rhythm_in_bundle(self, engine, stereo_buffer):
        rhythm = engine.analyze(stereo_buffer).rhythm
        assert rhythm.onset_times == []
        assert rhythm.tempo_bpm == 0.0
        assert len(rhythm.band_patterns) == 3

    def test_click_train_tempo(self, engine, sr):
        clicks = np.zeros(4 * sr, dtype=np.float32)
        clicks[[int(round((0.25 + 0.5 * k) * sr)) for k in range(8)]] = 1.0
        rhythm = engine.analyze(PcmBuffer(clicks, sr)).rhythm
        assert abs(rhythm.tempo_bpm - 120.0) < 2.4

    def test_mono_has_no_spatial(self, engine, sample_mono_audio, sr):
        bundle = engine.analyze(PcmBuffer(sample_mono_audio, sr))
        assert bundle.spatial is None
        assert abs(bundle.spectral.spectral_centroid - 1000.0) < sr / 4096

    def test_flux_across_calls(self, engine, stereo_buffer, two_tone_buffer):
        engine.analyze(stereo_buffer)
        assert engine.analyze(two_tone_buffer).spectral.spectral_flux > 0

    def test_short_buffer_rejected(self, engine, sr):
        with pytest.raises(InvalidInputError):
            engine.analyze(PcmBuffer(np.zeros(1000), sr))

    def test_sample_rate_mismatch(self, engine, sample_mono_audio):
        with pytest.raises(InvalidInputError):
            engine.analyze(PcmBuffer(sample_mono_audio, 48000))


class TestSeparate:

    def test_coarse_with_enhancement(self, engine, two_tone_buffer):
        result = engine.separate(two_tone_buffer)
        assert [s.type for s in result.stems] == list(COARSE_STEMS)
        assert result.method == "dsp"
        assert result.metadata["enhanced"] is True
        for stem in result.stems:
            assert stem.buffer.length == two_tone_buffer.length

    def test_enhancement_override(self, engine, two_tone_buffer):
        plain = engine.separate(two_tone_buffer, stem_types=[StemType.VOICE], enhance=False)
        overridden = engine.separate(
            two_tone_buffer, stem_types=[StemType.VOICE],
            enhancement={StemType.VOICE: EnhancementSettings()},
        )
        assert np.allclose(plain.stems[0].buffer.data, overridden.stems[0].buffer.data)

    def test_progress_ends_with_done(self, engine, two_tone_buffer):
        events = []
        engine.separate(two_tone_buffer, mode=SeparationMode.STEMS,
                        progress=lambda c, t, s: events.append((c, t, s)))
        assert events[-1] == (1, 1, "done")
        assert any(status.startswith("enhancement:") for _, _, status in events)

    def test_cancel(self, engine, two_tone_buffer):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelled):
            engine.separate(two_tone_buffer, cancel_event=cancel)

    def test_sample_rate_mismatch(self, engine, two_tone_audio):
        with pytest.raises(InvalidInputError):
            engine.separate(PcmBuffer(two_tone_audio, 22050))
