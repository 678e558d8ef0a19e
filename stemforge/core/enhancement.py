"""
Stem enhancement chain for StemForge.
Noise reduction, EQ, compression, limiting, stereo and harmonic shaping.
All stage functions are pure and operate on numpy arrays shaped (samples, channels).
"""
from __future__ import annotations
import dataclasses
import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from .config import ENHANCEMENT_CONFIG, EnhancementConfig, StemType
from .errors import InvalidInputError, OperationCancelled, ProcessingFailure
from .filters import BIQUAD_KINDS, apply_bandpass, apply_biquad, apply_highpass, split_bands
from .transform import generate_window, get_kernel, overlap_add
from .types import AudioArray, PcmBuffer, Stem

logger = logging.getLogger("StemForge")


# =============================================================================
# SETTINGS
# =============================================================================

def _check_range(name: str, value: float, low: float, high: float) -> None:
    if not low <= value <= high:
        raise InvalidInputError(f"{name} must be within [{low}, {high}], got {value}")


@dataclass(frozen=True)
class NoiseReductionSettings:
    enabled: bool = False
    strength: float = 0.3

    def __post_init__(self) -> None:
        _check_range("strength", self.strength, 0.0, 1.0)


@dataclass(frozen=True)
class EqBand:
    frequency: float
    gain_db: float = 0.0
    q: float = 0.707
    kind: str = "peaking"

    def __post_init__(self) -> None:
        if self.kind not in BIQUAD_KINDS:
            raise InvalidInputError(f"Unknown EQ band kind '{self.kind}'")
        if self.frequency <= 0:
            raise InvalidInputError(f"EQ frequency must be positive, got {self.frequency}")
        if self.q <= 0:
            raise InvalidInputError(f"EQ Q must be positive, got {self.q}")


@dataclass(frozen=True)
class EqualizerSettings:
    enabled: bool = False
    bands: tuple[EqBand, ...] = ()


@dataclass(frozen=True)
class CompressorSettings:
    enabled: bool = False
    threshold_db: float = ENHANCEMENT_CONFIG.compressor_threshold_db
    ratio: float = ENHANCEMENT_CONFIG.compressor_ratio
    attack_ms: float = ENHANCEMENT_CONFIG.compressor_attack_ms
    release_ms: float = ENHANCEMENT_CONFIG.compressor_release_ms
    makeup_db: float = 0.0

    def __post_init__(self) -> None:
        if self.ratio < 1.0:
            raise InvalidInputError(f"Compressor ratio must be >= 1, got {self.ratio}")
        if self.attack_ms <= 0 or self.release_ms <= 0:
            raise InvalidInputError("Compressor attack and release must be positive")


@dataclass(frozen=True)
class LimiterSettings:
    enabled: bool = False
    ceiling_db: float = ENHANCEMENT_CONFIG.limiter_ceiling_db
    release_ms: float = ENHANCEMENT_CONFIG.limiter_release_ms
    lookahead_ms: float = ENHANCEMENT_CONFIG.limiter_lookahead_ms

    def __post_init__(self) -> None:
        if self.ceiling_db > 0:
            raise InvalidInputError(f"Limiter ceiling must be <= 0 dBFS, got {self.ceiling_db}")
        if self.release_ms <= 0 or self.lookahead_ms < 0:
            raise InvalidInputError("Limiter release must be positive and lookahead non-negative")


@dataclass(frozen=True)
class StereoSettings:
    enabled: bool = False
    width: float = 1.0  # 1 is natural, 0 is mono
    bass_mono: bool = False
    bass_mono_cutoff: float = ENHANCEMENT_CONFIG.bass_mono_cutoff

    def __post_init__(self) -> None:
        _check_range("width", self.width, 0.0, 2.0)


@dataclass(frozen=True)
class HarmonicSettings:
    enabled: bool = False
    warmth: float = 0.3
    presence: float = 0.2
    air: float = 0.1

    def __post_init__(self) -> None:
        for name in ("warmth", "presence", "air"):
            _check_range(name, getattr(self, name), 0.0, 1.0)


@dataclass(frozen=True)
class EnhancementSettings:
    """Every recognised enhancement option, grouped per stage."""
    noise_reduction: NoiseReductionSettings = field(default_factory=NoiseReductionSettings)
    equalizer: EqualizerSettings = field(default_factory=EqualizerSettings)
    compressor: CompressorSettings = field(default_factory=CompressorSettings)
    limiter: LimiterSettings = field(default_factory=LimiterSettings)
    stereo: StereoSettings = field(default_factory=StereoSettings)
    harmonic: HarmonicSettings = field(default_factory=HarmonicSettings)

    @property
    def any_enabled(self) -> bool:
        return any(stage.enabled for stage in (
            self.noise_reduction, self.equalizer, self.compressor,
            self.limiter, self.stereo, self.harmonic,
        ))


def settings_for_stem(stem_type: StemType) -> EnhancementSettings:
    """Stem-type presets; stems without one get every stage disabled."""
    if stem_type in (StemType.VOCALS, StemType.VOICE):
        return EnhancementSettings(
            noise_reduction=NoiseReductionSettings(enabled=True, strength=0.4),
            equalizer=EqualizerSettings(enabled=True, bands=(
                EqBand(100, -3.0, 0.7, "low_shelf"),
                EqBand(3000, 2.0, 1.0),     # presence
                EqBand(10000, 1.0, 0.7, "high_shelf"),  # air
            )),
            compressor=CompressorSettings(enabled=True, threshold_db=-18, ratio=3,
                                          attack_ms=3, release_ms=80),
            limiter=LimiterSettings(enabled=True, ceiling_db=-0.3, release_ms=30),
        )
    if stem_type is StemType.DRUMS:
        return EnhancementSettings(
            equalizer=EqualizerSettings(enabled=True, bands=(
                EqBand(60, 2.0, 1.0),     # kick
                EqBand(200, 1.0, 0.5),    # snare body
                EqBand(5000, 2.0, 0.7),   # snare crack
                EqBand(12000, 1.0, 0.5),  # hi-hat
            )),
            compressor=CompressorSettings(enabled=True, threshold_db=-15, ratio=6,
                                          attack_ms=1, release_ms=50),
            limiter=LimiterSettings(enabled=True, ceiling_db=-0.1, release_ms=10),
        )
    return EnhancementSettings()


# =============================================================================
# STAGES
# =============================================================================

def estimate_noise_profile(
    mono: np.ndarray,
    sr: int,
    frame_size: int = ENHANCEMENT_CONFIG.frame_size,
    seconds: float = ENHANCEMENT_CONFIG.noise_profile_seconds
) -> np.ndarray:
    """
    Average Hann-windowed magnitude spectrum of the opening ``seconds``.
    Falls back to the first frame when the opening is shorter than one frame.
    """
    mono = np.asarray(mono, dtype=np.float64)
    if len(mono) < frame_size:
        raise InvalidInputError(f"Noise profile needs at least {frame_size} samples")
    segment = mono[:max(frame_size, int(seconds * sr))]
    count = len(segment) // frame_size
    frames = segment[:count * frame_size].reshape(count, frame_size)
    magnitudes, _ = get_kernel(frame_size).fft(frames * generate_window("hann", frame_size))
    return magnitudes.mean(axis=0)


def reduce_noise(
    data: AudioArray,
    sr: int,
    settings: NoiseReductionSettings,
    config: EnhancementConfig = ENHANCEMENT_CONFIG
) -> AudioArray:
    """Spectral subtraction: ``max(mag - strength * noise, floor * mag)`` per bin."""
    profile = estimate_noise_profile(np.mean(data, axis=1), sr, config.frame_size,
                                     config.noise_profile_seconds)
    noise = settings.strength * profile
    floor = config.noise_floor_fraction

    def subtract(magnitudes: np.ndarray, phases: np.ndarray) -> np.ndarray:
        return np.maximum(magnitudes - noise, floor * magnitudes)

    return overlap_add(data, subtract, config.frame_size, config.hop_size,
                       stage="noise_reduction")


def apply_equalizer(data: AudioArray, sr: int, settings: EqualizerSettings) -> AudioArray:
    out = data
    for band in settings.bands:
        if band.frequency >= sr / 2:
            logger.warning("Skipping EQ band at %.0f Hz (Nyquist is %.0f Hz)", band.frequency, sr / 2)
            continue
        out = apply_biquad(out, sr, band.kind, band.frequency, band.gain_db, band.q)
    return out.astype(np.float32)


def apply_compressor(data: AudioArray, sr: int, settings: CompressorSettings) -> AudioArray:
    """
    Envelope follower with separate attack and release, linked across channels.
    Above the threshold the gain is ``(T + (env - T) / ratio) / env``.
    """
    threshold = 10 ** (settings.threshold_db / 20)

    # Time constants
    attack_samples = max(1, int(sr * settings.attack_ms / 1000))
    release_samples = max(1, int(sr * settings.release_ms / 1000))
    attack_coeff = 1 - math.exp(-1.0 / attack_samples)
    release_coeff = 1 - math.exp(-1.0 / release_samples)

    env_input = np.max(np.abs(data), axis=1)

    # Envelope follower
    envelope = np.zeros_like(env_input, dtype=np.float64)
    env_prev = 0.0
    for i in range(len(env_input)):
        if env_input[i] > env_prev:
            env_prev += attack_coeff * (env_input[i] - env_prev)
        else:
            env_prev += release_coeff * (env_input[i] - env_prev)
        envelope[i] = env_prev

    gain = np.ones_like(envelope)
    above = envelope > threshold
    if settings.ratio > 1.0 and np.any(above):
        gain[above] = (threshold + (envelope[above] - threshold) / settings.ratio) / envelope[above]

    gain *= 10 ** (settings.makeup_db / 20)
    return (data * gain[:, np.newaxis]).astype(np.float32)


def apply_limiter(data: AudioArray, sr: int, settings: LimiterSettings) -> AudioArray:
    """
    Brick-wall limiter. The gain at each sample is the minimum required over
    the lookahead window (instant attack), recovering exponentially.
    """
    ceiling = 10 ** (settings.ceiling_db / 20)
    peaks = np.max(np.abs(data), axis=1).astype(np.float64)
    required = np.ones_like(peaks)
    loud = peaks > ceiling
    required[loud] = ceiling / peaks[loud]

    lookahead = int(sr * settings.lookahead_ms / 1000)
    if lookahead > 0:
        padded = np.concatenate([required, np.ones(lookahead)])
        required = np.lib.stride_tricks.sliding_window_view(padded, lookahead + 1).min(axis=1)

    release = math.exp(-1.0 / max(1.0, sr * settings.release_ms / 1000))
    gain = np.empty_like(required)
    current = 1.0
    for i in range(len(required)):
        target = required[i]
        if target < current:
            current = target
        else:
            current = target + (current - target) * release
        gain[i] = current

    out = data * gain[:, np.newaxis]
    return np.clip(out, -ceiling, ceiling).astype(np.float32)


def apply_stereo(
    data: AudioArray,
    sr: int,
    settings: StereoSettings,
    config: EnhancementConfig = ENHANCEMENT_CONFIG
) -> AudioArray:
    """
    Mid/side width scaling; mono input is returned unchanged.
    With ``bass_mono`` the side signal is high-passed at the cutoff, so the
    lows end up in the mid channel only.
    """
    if data.shape[1] != 2:
        return data
    mid = (data[:, 0] + data[:, 1]) / 2
    side = (data[:, 0] - data[:, 1]) / 2 * settings.width
    if settings.bass_mono:
        side = apply_highpass(side, sr, settings.bass_mono_cutoff, config.bass_mono_order)
    return np.column_stack((mid + side, mid - side)).astype(np.float32)


def _even_exciter(band: np.ndarray, sr: int, cutoff: float) -> np.ndarray:
    # full-wave rectification keeps only even harmonics; the high-pass removes its DC
    return apply_highpass(np.abs(band), sr, cutoff)


def apply_harmonic(
    data: AudioArray,
    sr: int,
    settings: HarmonicSettings,
    config: EnhancementConfig = ENHANCEMENT_CONFIG
) -> AudioArray:
    """
    Warmth: tanh saturation of the low band.
    Presence: even-harmonic exciter on the presence band.
    Air: high shelf plus exciter above the air cutoff.
    """
    low, high = split_bands(data, sr, config.warmth_cutoff)
    out = high + (1 - settings.warmth) * low + settings.warmth * np.tanh(low)

    presence_low, presence_high = config.presence_band
    if settings.presence > 0 and presence_low < sr / 2:
        band = apply_bandpass(data, sr, presence_low, presence_high)
        out = out + settings.presence * _even_exciter(band, sr, presence_low)

    if settings.air > 0 and config.air_cutoff < sr / 2:
        top = apply_highpass(data, sr, config.air_cutoff)
        out = apply_biquad(out, sr, "high_shelf", config.air_cutoff, gain_db=6.0 * settings.air)
        out = out + settings.air * _even_exciter(top, sr, config.air_cutoff)

    return np.asarray(out, dtype=np.float32)


# =============================================================================
# PIPELINE
# =============================================================================

class EnhancementPipeline:
    """
    Runs the enabled stages in order over one buffer:
    noise reduction, EQ, compressor, limiter, stereo, harmonic.

    Stereo and harmonic shaping follow the limiter, so when either is enabled
    the output can peak above the limiter ceiling. Only the limiter's own
    output is bounded.
    """

    def __init__(self, config: EnhancementConfig = ENHANCEMENT_CONFIG):
        self.config = config

    def _stages(self, settings: EnhancementSettings) -> list[tuple[str, object, Callable]]:
        return [
            ("noise_reduction", settings.noise_reduction,
             lambda d, sr, s: reduce_noise(d, sr, s, self.config)),
            ("equalizer", settings.equalizer, apply_equalizer),
            ("compressor", settings.compressor, apply_compressor),
            ("limiter", settings.limiter, apply_limiter),
            ("stereo", settings.stereo,
             lambda d, sr, s: apply_stereo(d, sr, s, self.config)),
            ("harmonic", settings.harmonic,
             lambda d, sr, s: apply_harmonic(d, sr, s, self.config)),
        ]

    def process(self, buffer: PcmBuffer, settings: Optional[EnhancementSettings] = None) -> PcmBuffer:
        """
        Apply every enabled stage to ``buffer``.

        Args:
            buffer: Input audio
            settings: Stage settings (all stages disabled when None)

        Returns:
            A new PcmBuffer; equal to the input when no stage is enabled or the
            buffer is shorter than one frame
        """
        settings = settings or EnhancementSettings()
        if not settings.any_enabled:
            return buffer.with_data(buffer.data)
        if buffer.length < self.config.frame_size:
            logger.warning("Buffer of %d samples is shorter than one frame, skipping enhancement",
                           buffer.length)
            return buffer.with_data(buffer.data)

        data = np.array(buffer.data, dtype=np.float32)
        for name, stage_settings, stage in self._stages(settings):
            if not stage_settings.enabled:
                continue
            logger.debug("Enhancement stage: %s", name)
            try:
                data = stage(data, buffer.sample_rate, stage_settings)
            except OperationCancelled:
                raise
            except Exception as e:
                logger.error("Enhancement stage %s failed: %s", name, e, exc_info=True)
                raise ProcessingFailure(name, str(e)) from e
        return buffer.with_data(data)


def enhance_stem(
    stem: Stem,
    settings: Optional[EnhancementSettings] = None,
    pipeline: Optional[EnhancementPipeline] = None
) -> Stem:
    """Return a copy of ``stem`` with an enhanced buffer (the stem's preset when no settings)."""
    pipeline = pipeline or EnhancementPipeline()
    settings = settings or settings_for_stem(stem.type)
    logger.debug("Enhancing %s stem %s", stem.name, stem.id)
    return dataclasses.replace(stem, buffer=pipeline.process(stem.buffer, settings))
