"""
Frequency-range source separation for StemForge.

Per-stem spectral masks applied by windowed overlap-add, plus the
model-backend / DSP fallback entry point.
"""
from __future__ import annotations
import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .config import (
    ANALYSIS_CONFIG, COARSE_STEMS, FINE_STEMS, SEPARATION_CONFIG, STEM_PROFILES,
    SeparationConfig, SeparationMode, SeparationQuality, SeparationState, StemType,
)
from .errors import (
    EngineError, InvalidInputError, ModelUnavailableError,
    OperationCancelled, ProcessingFailure,
)
from .harmonic import estimate_fundamental
from .rhythm import RhythmAnalysis, analyze_rhythm
from .transform import generate_window, get_kernel, overlap_add
from .types import (
    Mask, ModelBackend, PcmBuffer, ProgressCallback, SeparationResult, Spectrum, Stem, VoiceHint,
)

logger = logging.getLogger("StemForge")


# =============================================================================
# SETTINGS & PRESETS
# =============================================================================

@dataclass(frozen=True)
class SeparationSettings:
    """User-facing separation options."""
    quality: SeparationQuality = SeparationQuality.BALANCED
    enable_vocal_isolation: bool = True
    enable_drum_separation: bool = True
    enable_bass_isolation: bool = True
    enable_instrument_separation: bool = True
    voice_sensitivity: float = SEPARATION_CONFIG.default_voice_sensitivity
    noise_sensitivity: float = SEPARATION_CONFIG.default_noise_sensitivity

    def __post_init__(self) -> None:
        if not isinstance(self.quality, SeparationQuality):
            raise InvalidInputError(f"Unknown separation quality: {self.quality!r}")
        for name in ("voice_sensitivity", "noise_sensitivity"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise InvalidInputError(f"{name} must be within [0, 1], got {value}")

    def frame_size(self, config: SeparationConfig = SEPARATION_CONFIG) -> int:
        """STFT frame size for this quality under ``config``."""
        return config.quality_frame_sizes[self.quality]

    def hop_size(self, config: SeparationConfig = SEPARATION_CONFIG) -> int:
        return self.frame_size(config) // 4

    def fine_stems(self) -> tuple[StemType, ...]:
        """Fine stems switched on by the enable_* flags (all four if none are)."""
        flags = {
            StemType.VOCALS: self.enable_vocal_isolation,
            StemType.DRUMS: self.enable_drum_separation,
            StemType.BASS: self.enable_bass_isolation,
            StemType.OTHER: self.enable_instrument_separation,
        }
        selected = tuple(t for t in FINE_STEMS if flags[t])
        return selected or FINE_STEMS


@dataclass(frozen=True)
class SeparationPreset:
    name: str
    description: str
    settings: SeparationSettings


PRESETS: dict[str, SeparationPreset] = {
    "karaoke": SeparationPreset(
        "Karaoke Mode",
        "Remove vocals, keep the music",
        SeparationSettings(
            quality=SeparationQuality.BALANCED,
            enable_drum_separation=False,
            enable_bass_isolation=False,
            enable_instrument_separation=False,
        ),
    ),
    "podcast_cleanup": SeparationPreset(
        "Podcast Cleanup",
        "Isolate voices, remove background noise",
        SeparationSettings(
            quality=SeparationQuality.HIGH_QUALITY,
            enable_drum_separation=False,
            enable_bass_isolation=False,
            enable_instrument_separation=False,
            voice_sensitivity=0.7,
            noise_sensitivity=0.3,
        ),
    ),
    "full_separation": SeparationPreset(
        "Full Band Separation",
        "Separate all instruments and vocals",
        SeparationSettings(quality=SeparationQuality.HIGH_QUALITY),
    ),
    "quick_preview": SeparationPreset(
        "Quick Preview",
        "Fast separation for testing",
        SeparationSettings(
            quality=SeparationQuality.FAST,
            enable_bass_isolation=False,
            enable_instrument_separation=False,
        ),
    ),
}

_RECOMMENDED = {
    "music": "full_separation",
    "speech": "podcast_cleanup",
    "mixed": "karaoke",
}


def recommended_settings(audio_type: str) -> SeparationSettings:
    """Preset settings for 'music', 'speech' or 'mixed'; anything else gets the quick preview."""
    return PRESETS[_RECOMMENDED.get(audio_type, "quick_preview")].settings


def default_stem_types(mode: SeparationMode, settings: SeparationSettings) -> tuple[StemType, ...]:
    if mode is SeparationMode.COARSE:
        return COARSE_STEMS
    return settings.fine_stems()


# =============================================================================
# MASKS
# =============================================================================

def bin_frequencies(sample_rate: int, frame_size: int) -> np.ndarray:
    return np.arange(frame_size // 2) * sample_rate / frame_size


def _in_band(frequencies: np.ndarray, band: tuple[float, float]) -> np.ndarray:
    low, high = band
    return (frequencies >= low) & (frequencies <= high)


def band_gate_mask(
    frequencies: np.ndarray,
    band: tuple[float, float],
    sensitivity: float,
    out_of_band_scale: float = SEPARATION_CONFIG.out_of_band_scale
) -> Mask:
    """
    Static band gate: ``sensitivity`` in band, ``scale * (1 - sensitivity)`` outside.
    Out-of-band content is attenuated but never fully zeroed.
    """
    mask = np.full(len(frequencies), out_of_band_scale * (1.0 - sensitivity))
    mask[_in_band(frequencies, band)] = sensitivity
    return mask


def coarse_band(stem_type: StemType, config: SeparationConfig = SEPARATION_CONFIG) -> tuple[float, float]:
    bands = {
        StemType.VOICE: config.voice_band,
        StemType.MUSIC: config.music_band,
        StemType.AMBIENT: config.ambient_band,
        StemType.NOISE: config.noise_band,
    }
    if stem_type not in bands:
        raise InvalidInputError(f"{stem_type.value} is not a coarse stream")
    return bands[stem_type]


def coarse_mask(
    stem_type: StemType,
    frequencies: np.ndarray,
    settings: SeparationSettings,
    config: SeparationConfig = SEPARATION_CONFIG
) -> Mask:
    sensitivity = {
        StemType.VOICE: settings.voice_sensitivity,
        StemType.MUSIC: config.music_sensitivity,
        StemType.AMBIENT: config.ambient_sensitivity,
        StemType.NOISE: settings.noise_sensitivity,
    }[stem_type]
    return band_gate_mask(frequencies, coarse_band(stem_type, config), sensitivity,
                          config.out_of_band_scale)


def vocals_mask(
    frequencies: np.ndarray,
    fundamental: Optional[float] = None,
    config: SeparationConfig = SEPARATION_CONFIG
) -> Mask:
    """
    Vocal range at 0.7, the 1-3 kHz presence region at 1.0, 0.1 elsewhere.
    Harmonics of a fundamental inside the vocal f0 range are raised to 1.0.
    """
    mask = np.full(len(frequencies), config.vocal_floor)
    mask[_in_band(frequencies, config.vocal_range)] = config.vocal_in_range_gain
    mask[_in_band(frequencies, config.vocal_emphasis)] = 1.0

    low_f0, high_f0 = config.vocal_f0_range
    if fundamental is not None and low_f0 <= fundamental <= high_f0 and len(frequencies) > 1:
        width = frequencies[1] - frequencies[0]
        upper = config.vocal_range[1]
        number = 1
        while fundamental * number <= upper:
            centre = int(round(fundamental * number / width))
            mask[max(0, centre - 1):min(len(mask), centre + 2)] = 1.0
            number += 1
    return mask


def drums_mask(frequencies: np.ndarray, config: SeparationConfig = SEPARATION_CONFIG) -> Mask:
    """Kick, snare and hi-hat regions at 1.0, 0.2 elsewhere."""
    mask = np.full(len(frequencies), config.drum_floor)
    for band in config.drum_bands:
        mask[_in_band(frequencies, band)] = 1.0
    return mask


def bass_mask(frequencies: np.ndarray, config: SeparationConfig = SEPARATION_CONFIG) -> Mask:
    mask = np.full(len(frequencies), config.bass_floor)
    mask[_in_band(frequencies, config.bass_band)] = 1.0
    return mask


def other_mask(
    frequencies: np.ndarray,
    fundamental: Optional[float] = None,
    config: SeparationConfig = SEPARATION_CONFIG
) -> Mask:
    """Complement of the vocals, drums and bass masks, clipped to [0.1, 1]."""
    claimed = np.maximum.reduce([
        vocals_mask(frequencies, fundamental, config),
        drums_mask(frequencies, config),
        bass_mask(frequencies, config),
    ])
    return np.clip(1.0 - claimed, config.other_floor, 1.0)


def build_mask(
    stem_type: StemType,
    frequencies: np.ndarray,
    settings: SeparationSettings,
    fundamental: Optional[float] = None,
    config: SeparationConfig = SEPARATION_CONFIG
) -> Mask:
    """Fresh mask array for ``stem_type``; values lie in [0, 1]."""
    if stem_type in COARSE_STEMS:
        mask = coarse_mask(stem_type, frequencies, settings, config)
    elif stem_type is StemType.VOCALS:
        mask = vocals_mask(frequencies, fundamental, config)
    elif stem_type is StemType.DRUMS:
        mask = drums_mask(frequencies, config)
    elif stem_type is StemType.BASS:
        mask = bass_mask(frequencies, config)
    else:
        mask = other_mask(frequencies, fundamental, config)
    return np.clip(mask, 0.0, 1.0)


# =============================================================================
# OVERLAP-ADD
# =============================================================================

def apply_spectral_mask(
    data: np.ndarray,
    mask: Mask,
    frame_size: int = SEPARATION_CONFIG.frame_size,
    hop_size: int = SEPARATION_CONFIG.hop_size,
    progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
    stage: str = "separation",
    frames_per_block: int = SEPARATION_CONFIG.frames_per_block
) -> np.ndarray:
    """
    Multiply every STFT frame of ``data`` by ``mask`` and resynthesize.

    Buffers shorter than one frame come back unchanged (as a float32 copy).
    Raises OperationCancelled if ``cancel_event`` is set between blocks.
    """
    mask = np.asarray(mask, dtype=np.float64)
    if len(mask) != frame_size // 2:
        raise InvalidInputError(f"Mask has {len(mask)} bins, expected {frame_size // 2}")
    return overlap_add(
        data, lambda magnitudes, phases: magnitudes * mask, frame_size, hop_size,
        progress=progress, cancel_event=cancel_event, stage=stage,
        frames_per_block=frames_per_block,
    )


def mean_magnitude(samples: np.ndarray, frame_size: int, max_frames: int = 64) -> Optional[np.ndarray]:
    """Average Hann-windowed magnitude spectrum over evenly spaced frames."""
    samples = np.asarray(samples, dtype=np.float64)
    if len(samples) < frame_size:
        return None
    count = min(max_frames, 1 + (len(samples) - frame_size) // (frame_size // 2))
    starts = np.linspace(0, len(samples) - frame_size, count).astype(int)
    frames = samples[starts[:, np.newaxis] + np.arange(frame_size)]
    magnitudes, _ = get_kernel(frame_size).fft(frames * generate_window("hann", frame_size))
    return magnitudes.mean(axis=0)


def dominant_frequency(
    magnitudes: Optional[np.ndarray],
    frequencies: np.ndarray,
    weights: np.ndarray
) -> Optional[float]:
    if magnitudes is None:
        return None
    weighted = magnitudes * weights
    if float(np.max(weighted)) <= 0:
        return None
    return float(frequencies[int(np.argmax(weighted))])


def voice_hint_coverage(hints: Sequence[VoiceHint], duration: float) -> float:
    """Confidence-weighted fraction of ``duration`` covered by hints, in [0, 1]."""
    if not hints or duration <= 0:
        return 0.0
    covered = 0.0
    for hint in hints:
        start = max(0.0, hint.start_s)
        end = min(duration, hint.end_s)
        if end > start:
            covered += (end - start) * float(np.clip(hint.confidence, 0.0, 1.0))
    return float(np.clip(covered / duration, 0.0, 1.0))


# =============================================================================
# SEPARATOR
# =============================================================================

class SeparationPass:
    """
    One stem's trip through IDLE -> ANALYZING -> MASKING -> SYNTHESIZING -> DONE.
    Each pass owns its state, its mask and the rhythm measured on its output.
    """

    def __init__(
        self,
        stem_type: StemType,
        settings: SeparationSettings,
        config: SeparationConfig = SEPARATION_CONFIG
    ):
        self.stem_type = stem_type
        self.settings = settings
        self.config = config
        self.state = SeparationState.IDLE
        self.mask: Optional[Mask] = None
        self.rhythm: Optional[RhythmAnalysis] = None

    def _set_state(self, state: SeparationState) -> None:
        logger.debug("%s pass: %s -> %s", self.stem_type.value, self.state.name, state.name)
        self.state = state

    def run(
        self,
        buffer: PcmBuffer,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        voice_coverage: float = 0.0
    ) -> Stem:
        if self.state is not SeparationState.IDLE:
            raise EngineError(f"{self.stem_type.value} pass already ran")

        stage = f"separation:{self.stem_type.value}"
        frame_size = self.settings.frame_size(self.config)
        frequencies = bin_frequencies(buffer.sample_rate, frame_size)

        self._set_state(SeparationState.ANALYZING)
        mono = buffer.mono()
        average = mean_magnitude(mono, frame_size)
        fundamental = None
        if average is not None and self.stem_type in (StemType.VOCALS, StemType.OTHER):
            fundamental = estimate_fundamental(
                Spectrum(average, np.zeros_like(average), buffer.sample_rate, frame_size)
            )

        self._set_state(SeparationState.MASKING)
        self.mask = build_mask(self.stem_type, frequencies, self.settings, fundamental, self.config)

        self._set_state(SeparationState.SYNTHESIZING)
        separated = apply_spectral_mask(
            buffer.data, self.mask, frame_size, self.settings.hop_size(self.config),
            progress=progress, cancel_event=cancel_event, stage=stage,
            frames_per_block=self.config.frames_per_block,
        )

        if self.stem_type in COARSE_STEMS:
            weights = _in_band(frequencies, coarse_band(self.stem_type, self.config)).astype(float)
        else:
            weights = self.mask

        profile = STEM_PROFILES[self.stem_type]
        confidence = profile.confidence
        if self.stem_type in (StemType.VOICE, StemType.VOCALS):
            confidence = min(1.0, confidence + self.config.voice_hint_bias * voice_coverage)

        rhythmic_content = profile.rhythmic_content
        if buffer.length >= ANALYSIS_CONFIG.onset_frame_size:
            self.rhythm = analyze_rhythm(np.mean(separated, axis=1), buffer.sample_rate)
            rhythmic_content = self.rhythm.regularity

        stem = Stem(
            id=f"{self.stem_type.value}-{uuid.uuid4().hex[:8]}",
            type=self.stem_type,
            buffer=buffer.with_data(separated),
            original_mix_fraction=profile.original_mix_fraction,
            confidence=confidence,
            spectral_profile=self.mask,
            harmonic_content=profile.harmonic_content,
            rhythmic_content=rhythmic_content,
            dominant_frequency=dominant_frequency(average, frequencies, weights),
        )
        self._set_state(SeparationState.DONE)
        logger.debug("%s stem ready (rhythmic content %.2f)", stem.name, rhythmic_content)
        return stem


class FrequencySeparator:
    """DSP separator: one independent SeparationPass per requested stem."""

    def __init__(
        self,
        settings: Optional[SeparationSettings] = None,
        config: SeparationConfig = SEPARATION_CONFIG
    ):
        self.settings = settings or SeparationSettings()
        self.config = config

    def separate(
        self,
        buffer: PcmBuffer,
        mode: SeparationMode = SeparationMode.COARSE,
        stem_types: Optional[Sequence[StemType]] = None,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        voice_hints: Optional[Sequence[VoiceHint]] = None,
        max_workers: Optional[int] = None
    ) -> list[Stem]:
        """
        Separate ``buffer`` into stems.

        Args:
            buffer: Source audio
            mode: Coarse 4-stream or fine stem mode (picks the default stem list)
            stem_types: Explicit stems to produce, overrides ``mode``
            progress: Per-block progress callback; must be thread-safe when max_workers > 1
            cancel_event: Cooperative cancellation flag
            voice_hints: Optional speech intervals that bias voice confidence
            max_workers: Run stems on a thread pool of this size

        Returns:
            Stems in the requested order
        """
        types = tuple(stem_types) if stem_types else default_stem_types(mode, self.settings)
        coverage = voice_hint_coverage(voice_hints or (), buffer.duration)
        frame_size = self.settings.frame_size(self.config)
        logger.info("Separating %d stem(s) (%s, frame=%d): %s",
                    len(types), mode.name.lower(), frame_size,
                    ", ".join(t.value for t in types))
        if buffer.length < frame_size:
            logger.warning("Buffer shorter than one %d-sample frame, stems pass through unchanged",
                           frame_size)

        def run(stem_type: StemType) -> Stem:
            separation_pass = SeparationPass(stem_type, self.settings, self.config)
            try:
                return separation_pass.run(buffer, progress, cancel_event, coverage)
            except (OperationCancelled, ProcessingFailure):
                raise
            except Exception as e:
                logger.error("Separation of %s failed: %s", stem_type.value, e, exc_info=True)
                raise ProcessingFailure(f"separation:{stem_type.value}", str(e)) from e

        if max_workers is not None and max_workers > 1 and len(types) > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                stems = list(pool.map(run, types))
        else:
            stems = [run(t) for t in types]

        logger.info("Separation completed with %d stems", len(stems))
        return stems


def separate_auto(
    buffer: PcmBuffer,
    backend: Optional[ModelBackend] = None,
    settings: Optional[SeparationSettings] = None,
    mode: SeparationMode = SeparationMode.COARSE,
    stem_types: Optional[Sequence[StemType]] = None,
    progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
    voice_hints: Optional[Sequence[VoiceHint]] = None,
    max_workers: Optional[int] = None,
    config: SeparationConfig = SEPARATION_CONFIG
) -> SeparationResult:
    """
    Try the model backend first, then fall back to the DSP separator.

    The DSP path has no further fallback: its failures raise ProcessingFailure.
    """
    settings = settings or SeparationSettings()
    types = tuple(stem_types) if stem_types else default_stem_types(mode, settings)
    started = time.perf_counter()
    metadata: dict = {"mode": mode.name.lower(), "frame_size": settings.frame_size(config)}

    if backend is not None:
        backend_name = getattr(backend, "name", type(backend).__name__)
        metadata["backend"] = backend_name
        try:
            logger.info("Trying %s model separation...", backend_name)
            stems = list(backend.separate(buffer, types))
            bad = [s.type.value for s in stems if s.buffer.length != buffer.length]
            if bad:
                raise ProcessingFailure("model", f"stem length mismatch for {', '.join(bad)}")
            return SeparationResult(
                stems=stems,
                method="model",
                processing_time=time.perf_counter() - started,
                sample_rate=buffer.sample_rate,
                channels=buffer.channels,
                duration=buffer.duration,
                metadata=metadata,
            )
        except OperationCancelled:
            raise
        except ModelUnavailableError as e:
            logger.warning("%s unavailable, falling back to DSP: %s", backend_name, e)
            metadata["fallback_reason"] = str(e)
        except Exception as e:
            logger.warning("%s separation failed, falling back to DSP: %s",
                           backend_name, e, exc_info=True)
            metadata["fallback_reason"] = str(e)

    separator = FrequencySeparator(settings, config)
    stems = separator.separate(buffer, mode, types, progress, cancel_event, voice_hints, max_workers)
    return SeparationResult(
        stems=stems,
        method="dsp",
        processing_time=time.perf_counter() - started,
        sample_rate=buffer.sample_rate,
        channels=buffer.channels,
        duration=buffer.duration,
        metadata=metadata,
    )
