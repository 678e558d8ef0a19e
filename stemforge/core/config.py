"""
Centralized configuration for StemForge.
All magic numbers and default settings in one place.
"""
from dataclasses import dataclass, field
from enum import Enum, auto
from types import MappingProxyType
from typing import Mapping


class StemType(Enum):
    """Stem kinds produced by the separator."""
    # Coarse 4-stream mode
    VOICE = "voice"
    MUSIC = "music"
    AMBIENT = "ambient"
    NOISE = "noise"
    # Fine stem mode
    VOCALS = "vocals"
    DRUMS = "drums"
    BASS = "bass"
    OTHER = "other"


class SeparationMode(Enum):
    """Which family of masks to build."""
    COARSE = auto()
    STEMS = auto()


COARSE_STEMS = (StemType.VOICE, StemType.MUSIC, StemType.AMBIENT, StemType.NOISE)
FINE_STEMS = (StemType.VOCALS, StemType.DRUMS, StemType.BASS, StemType.OTHER)


class SeparationState(Enum):
    """Lifecycle of one stem pass."""
    IDLE = auto()
    ANALYZING = auto()
    MASKING = auto()
    SYNTHESIZING = auto()
    DONE = auto()


class SeparationQuality(Enum):
    """Processing speed / resolution trade-off."""
    FAST = "fast"
    BALANCED = "balanced"
    HIGH_QUALITY = "high_quality"


@dataclass(frozen=True, slots=True)
class AnalysisConfig:
    """Analysis defaults."""
    default_samplerate: int = 44100
    fft_size: int = 4096
    window: str = "hann"
    kaiser_beta: float = 8.6
    bessel_max_terms: int = 50
    bessel_tolerance: float = 1e-10

    # Spectral
    rolloff_fraction: float = 0.85
    peak_threshold: float = 0.1
    max_peaks: int = 20
    harmonicity_peak_threshold: float = 0.05
    harmonicity_tolerance: float = 0.05

    # Psychoacoustic
    bark_bands: int = 24
    mel_bands: int = 26
    reference_spl_db: float = 94.0
    min_threshold_hz: float = 20.0  # Terhardt formula diverges at 0 Hz

    # Dynamics
    silence_floor_db: float = -120.0
    true_peak_oversampling: int = 4
    momentary_window_s: float = 0.4
    short_term_window_s: float = 3.0
    lra_block_s: float = 3.0
    lra_gate_lufs: float = -70.0

    # Harmonic
    hps_factors: int = 5
    max_harmonics: int = 20
    harmonic_tolerance: float = 0.05

    # Rhythm
    onset_frame_size: int = 1024
    onset_hop_size: int = 512
    onset_threshold: float = 0.1  # fraction of the strongest flux or the mean frame level
    onset_min_gap_s: float = 0.05
    tempo_tolerance: float = 0.25  # intervals this far from the median are ignored
    rhythm_bands: tuple[tuple[float, float], ...] = (
        (60.0, 120.0),     # kick
        (150.0, 300.0),    # snare
        (8000.0, 16000.0), # hi-hat
    )


@dataclass(frozen=True, slots=True)
class SeparationConfig:
    """Frequency-range separator settings."""
    frame_size: int = 2048
    hop_size: int = 512  # 75% overlap
    frames_per_block: int = 32  # cancel/progress granularity

    # Coarse 4-stream bands (Hz)
    voice_band: tuple[float, float] = (85.0, 1100.0)
    music_band: tuple[float, float] = (20.0, 8000.0)
    ambient_band: tuple[float, float] = (20.0, 200.0)
    noise_band: tuple[float, float] = (8000.0, 20000.0)
    music_sensitivity: float = 0.8
    ambient_sensitivity: float = 0.6
    default_voice_sensitivity: float = 0.5
    default_noise_sensitivity: float = 0.5
    out_of_band_scale: float = 0.1

    # Fine stem masks
    vocal_range: tuple[float, float] = (80.0, 8000.0)
    vocal_emphasis: tuple[float, float] = (1000.0, 3000.0)
    vocal_in_range_gain: float = 0.7
    vocal_floor: float = 0.1
    vocal_f0_range: tuple[float, float] = (80.0, 1100.0)
    drum_bands: tuple[tuple[float, float], ...] = (
        (60.0, 120.0),     # kick
        (150.0, 300.0),    # snare
        (8000.0, 16000.0), # hi-hat
    )
    drum_floor: float = 0.2
    bass_band: tuple[float, float] = (20.0, 250.0)
    bass_floor: float = 0.1
    other_floor: float = 0.1

    # Voice hints bias confidence by up to this amount
    voice_hint_bias: float = 0.1

    quality_frame_sizes: Mapping[SeparationQuality, int] = field(default_factory=lambda: MappingProxyType({
        SeparationQuality.FAST: 1024,
        SeparationQuality.BALANCED: 2048,
        SeparationQuality.HIGH_QUALITY: 4096,
    }))


@dataclass(frozen=True, slots=True)
class EnhancementConfig:
    """Default enhancement parameters."""
    frame_size: int = 2048
    hop_size: int = 512
    noise_profile_seconds: float = 0.5
    noise_floor_fraction: float = 0.1

    # Compression
    compressor_threshold_db: float = -20.0
    compressor_ratio: float = 4.0
    compressor_attack_ms: float = 5.0
    compressor_release_ms: float = 100.0

    # Limiting
    limiter_ceiling_db: float = -0.1
    limiter_release_ms: float = 50.0
    limiter_lookahead_ms: float = 5.0

    # Stereo
    bass_mono_cutoff: float = 150.0
    bass_mono_order: int = 4

    # Harmonic shaping bands (Hz)
    warmth_cutoff: float = 300.0
    presence_band: tuple[float, float] = (2000.0, 6000.0)
    air_cutoff: float = 10000.0


@dataclass(frozen=True, slots=True)
class StemProfile:
    """
    Heuristic per-stem constants. These are fixed by stem type, not learned
    or measured, and carry no statistical calibration.
    """
    original_mix_fraction: float
    confidence: float
    harmonic_content: float
    rhythmic_content: float


STEM_PROFILES: dict[StemType, StemProfile] = {
    StemType.VOICE: StemProfile(0.5, 0.75, 0.7, 0.2),
    StemType.MUSIC: StemProfile(0.8, 0.8, 0.6, 0.6),
    StemType.AMBIENT: StemProfile(0.3, 0.6, 0.2, 0.3),
    StemType.NOISE: StemProfile(0.1, 0.5, 0.05, 0.1),
    StemType.VOCALS: StemProfile(0.7, 0.85, 0.8, 0.2),
    StemType.DRUMS: StemProfile(0.6, 0.9, 0.1, 0.95),
    StemType.BASS: StemProfile(0.5, 0.8, 0.6, 0.7),
    StemType.OTHER: StemProfile(0.4, 0.7, 0.5, 0.5),
}


# Global config instances (immutable singletons)
ANALYSIS_CONFIG = AnalysisConfig()
SEPARATION_CONFIG = SeparationConfig()
ENHANCEMENT_CONFIG = EnhancementConfig()
