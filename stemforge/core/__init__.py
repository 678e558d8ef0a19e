"""
StemForge Core Module

This module contains the analysis and separation engine:
- AudioEngine: Main orchestrator for analysis, separation and enhancement
- transform: Window functions and the radix-2 FFT kernel
- spectral / psychoacoustic / spatial / dynamics / harmonic / rhythm: Analysis suite
- separation: Frequency-range stem separation with model-backend fallback
- enhancement: Per-stem enhancement pipeline
"""
from .audio_engine import AudioEngine, AnalysisBundle
from .config import (
    ANALYSIS_CONFIG,
    SEPARATION_CONFIG,
    ENHANCEMENT_CONFIG,
    STEM_PROFILES,
    SeparationMode,
    SeparationQuality,
    SeparationState,
    StemType,
)
from .errors import (
    EngineError,
    InvalidInputError,
    ModelUnavailableError,
    OperationCancelled,
    ProcessingFailure,
)
from .types import PcmBuffer, Spectrum, Stem, SeparationResult, VoiceHint
from .separation import FrequencySeparator, SeparationSettings, separate_auto
from .enhancement import EnhancementPipeline, EnhancementSettings
from . import transform
from . import spectral
from . import psychoacoustic
from . import spatial
from . import dynamics
from . import harmonic
from . import rhythm
from . import filters
from . import separation
from . import enhancement

__all__ = [
    # Main classes
    'AudioEngine',
    'AnalysisBundle',
    'FrequencySeparator',
    'EnhancementPipeline',
    # Data model
    'PcmBuffer',
    'Spectrum',
    'Stem',
    'SeparationResult',
    'VoiceHint',
    'SeparationSettings',
    'EnhancementSettings',
    'separate_auto',
    # Config
    'ANALYSIS_CONFIG',
    'SEPARATION_CONFIG',
    'ENHANCEMENT_CONFIG',
    'STEM_PROFILES',
    'SeparationMode',
    'SeparationQuality',
    'SeparationState',
    'StemType',
    # Errors
    'EngineError',
    'InvalidInputError',
    'ModelUnavailableError',
    'OperationCancelled',
    'ProcessingFailure',
    # Submodules
    'transform',
    'spectral',
    'psychoacoustic',
    'spatial',
    'dynamics',
    'harmonic',
    'rhythm',
    'filters',
    'separation',
    'enhancement',
]
