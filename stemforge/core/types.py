"""
Type definitions for the StemForge core module.
Provides type aliases, the data model value objects and backend protocols.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Sequence

import numpy as np
from numpy.typing import NDArray

from .config import StemType
from .errors import InvalidInputError

# Audio data types
AudioArray = NDArray[np.float32]  # Shape: (samples,) or (samples, channels)
MonoArray = NDArray[np.float32]   # Shape: (samples,)
Mask = NDArray[np.float64]        # Shape: (fft_size // 2,), values in [0, 1]

# Callback types
ProgressCallback = Callable[[int, int, str], None]  # (current, total, status)


def _frozen(array: np.ndarray) -> np.ndarray:
    array.flags.writeable = False
    return array


@dataclass(frozen=True, eq=False)
class PcmBuffer:
    """
    Multi-channel float PCM audio, shaped (samples, channels).
    The sample array is copied on construction and stored read-only.
    """
    data: AudioArray
    sample_rate: int

    def __post_init__(self) -> None:
        if self.sample_rate <= 0:
            raise InvalidInputError(f"Sample rate must be positive, got {self.sample_rate}")
        data = np.array(self.data, dtype=np.float32, copy=True)
        if data.ndim == 1:
            data = data[:, np.newaxis]
        if data.ndim != 2:
            raise InvalidInputError(f"PCM data must be 1-D or 2-D, got shape {data.shape}")
        object.__setattr__(self, "data", _frozen(data))

    @classmethod
    def from_channels(cls, channels: Sequence[np.ndarray], sample_rate: int) -> "PcmBuffer":
        """Build a buffer from a list of equal-length per-channel arrays."""
        if not channels:
            raise InvalidInputError("At least one channel is required")
        lengths = {len(ch) for ch in channels}
        if len(lengths) != 1:
            raise InvalidInputError(f"Channel lengths differ: {sorted(lengths)}")
        return cls(np.column_stack(channels), sample_rate)

    @property
    def channels(self) -> int:
        return self.data.shape[1]

    @property
    def length(self) -> int:
        return self.data.shape[0]

    @property
    def duration(self) -> float:
        return self.length / self.sample_rate

    def channel(self, index: int) -> MonoArray:
        return self.data[:, index]

    def mono(self) -> MonoArray:
        """Channel average as a new float32 array."""
        return np.mean(self.data, axis=1).astype(np.float32)

    def with_data(self, data: np.ndarray) -> "PcmBuffer":
        """New buffer with the same sample rate."""
        return PcmBuffer(data, self.sample_rate)


@dataclass(frozen=True, eq=False)
class Spectrum:
    """Half spectrum of an N-point transform: N/2 magnitude and phase bins."""
    magnitude: np.ndarray
    phase: np.ndarray
    sample_rate: int
    fft_size: int

    def __post_init__(self) -> None:
        magnitude = np.array(self.magnitude, dtype=np.float64, copy=True)
        phase = np.array(self.phase, dtype=np.float64, copy=True)
        half = self.fft_size // 2
        if len(magnitude) != half or len(phase) != half:
            raise InvalidInputError(
                f"Spectrum of a {self.fft_size}-point transform needs {half} bins, "
                f"got {len(magnitude)} magnitudes / {len(phase)} phases"
            )
        if np.any(magnitude < 0):
            raise InvalidInputError("Spectrum magnitudes must be non-negative")
        object.__setattr__(self, "magnitude", _frozen(magnitude))
        object.__setattr__(self, "phase", _frozen(phase))

    @property
    def bin_width(self) -> float:
        return self.sample_rate / self.fft_size

    @property
    def frequencies(self) -> np.ndarray:
        return np.arange(self.fft_size // 2) * self.bin_width

    def bin_of(self, frequency: float) -> int:
        return int(round(frequency / self.bin_width))


@dataclass(frozen=True, slots=True)
class FrequencyBand:
    low_hz: float
    high_hz: float
    energy: float


@dataclass(frozen=True, slots=True)
class SpectralPeak:
    frequency: float
    magnitude: float
    phase: float


@dataclass(frozen=True, slots=True)
class Harmonic:
    number: int
    frequency: float
    magnitude: float
    phase: float


@dataclass(frozen=True, slots=True)
class VoiceHint:
    """Speech/singing interval reported by an external voice detector."""
    start_s: float
    end_s: float
    confidence: float = 1.0


@dataclass(frozen=True, eq=False)
class Stem:
    """An isolated component of a mix. Replaced, never mutated, downstream."""
    id: str
    type: StemType
    buffer: PcmBuffer
    original_mix_fraction: float
    confidence: float
    spectral_profile: Mask
    harmonic_content: float
    rhythmic_content: float
    dominant_frequency: Optional[float] = None

    @property
    def name(self) -> str:
        return self.type.value.capitalize()


@dataclass(frozen=True)
class SeparationResult:
    """Stems produced by one separation request."""
    stems: list[Stem]
    method: str  # "model" or "dsp"
    processing_time: float
    sample_rate: int
    channels: int
    duration: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def get(self, stem_type: StemType) -> Optional[Stem]:
        for stem in self.stems:
            if stem.type is stem_type:
                return stem
        return None


class ModelBackend(Protocol):
    """External ML separation service. Raise ModelUnavailableError to request the DSP path."""
    name: str

    def separate(self, buffer: PcmBuffer, stem_types: Sequence[StemType]) -> list[Stem]: ...
