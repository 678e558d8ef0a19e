"""
Engine facade for StemForge.
Runs the analysis suite, separation and enhancement over one PCM stream.
"""
from __future__ import annotations
import dataclasses
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Sequence

from .config import ANALYSIS_CONFIG, ENHANCEMENT_CONFIG, EnhancementConfig, SeparationMode, StemType
from .dynamics import DynamicsAnalysis, analyze_dynamics
from .enhancement import EnhancementPipeline, EnhancementSettings, enhance_stem
from .errors import InvalidInputError, OperationCancelled
from .harmonic import HarmonicAnalysis, HarmonicAnalyzer
from .psychoacoustic import PsychoacousticAnalysis, PsychoacousticAnalyzer
from .rhythm import RhythmAnalysis, analyze_rhythm
from .separation import SeparationSettings, separate_auto
from .spatial import SpatialAudioMetrics, analyze_spatial
from .spectral import SpectralAnalysisResult, SpectralAnalyzer, compute_spectrum
from .transform import get_kernel
from .types import ModelBackend, PcmBuffer, ProgressCallback, SeparationResult, VoiceHint
from ..utils.logger import logger


@dataclass(frozen=True)
class AnalysisBundle:
    """All analyses of one buffer. ``spatial`` is None for mono input."""
    spectral: SpectralAnalysisResult
    psychoacoustic: PsychoacousticAnalysis
    spatial: Optional[SpatialAudioMetrics]
    dynamics: DynamicsAnalysis
    harmonic: HarmonicAnalysis
    rhythm: RhythmAnalysis


class AudioEngine:
    """
    Core engine for analysis, separation and enhancement of one stream.

    The engine owns a SpectralAnalyzer whose previous spectrum drives flux,
    so use one engine per stream.
    """

    def __init__(
        self,
        sample_rate: int = ANALYSIS_CONFIG.default_samplerate,
        fft_size: int = ANALYSIS_CONFIG.fft_size,
        enhancement_config: EnhancementConfig = ENHANCEMENT_CONFIG
    ):
        get_kernel(fft_size)
        self.sample_rate = sample_rate
        self.fft_size = fft_size
        self.spectral_analyzer = SpectralAnalyzer(sample_rate, fft_size)
        self.psychoacoustic_analyzer = PsychoacousticAnalyzer(sample_rate, fft_size)
        self.harmonic_analyzer = HarmonicAnalyzer(sample_rate, fft_size)
        self.pipeline = EnhancementPipeline(enhancement_config)
        logger.info("AudioEngine initialized (%d Hz, %d-point FFT)", sample_rate, fft_size)

    def _check_buffer(self, buffer: PcmBuffer) -> None:
        if buffer.sample_rate != self.sample_rate:
            raise InvalidInputError(
                f"Buffer sample rate {buffer.sample_rate} Hz does not match engine rate {self.sample_rate} Hz"
            )

    # --- Analysis ---

    def analyze(self, buffer: PcmBuffer, max_workers: Optional[int] = None) -> AnalysisBundle:
        """
        Run the spectral, psychoacoustic, spatial, dynamics, harmonic and rhythm analyses.

        The three spectrum-based analyses share one transform of the first
        window; every analysis runs as an independent task on a thread pool.

        Args:
            buffer: Audio to analyze, at least one FFT window long
            max_workers: Thread pool size (None lets the executor decide)

        Returns:
            AnalysisBundle
        """
        self._check_buffer(buffer)
        mono = buffer.mono()
        spectrum = compute_spectrum(mono, self.sample_rate, self.fft_size)
        logger.info("Analyzing %.2f s of %d-channel audio", buffer.duration, buffer.channels)

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            spectral = pool.submit(self.spectral_analyzer.analyze_spectrum, spectrum)
            psychoacoustic = pool.submit(self.psychoacoustic_analyzer.analyze_spectrum, spectrum)
            harmonic = pool.submit(self.harmonic_analyzer.analyze_spectrum, spectrum)
            dynamics = pool.submit(analyze_dynamics, buffer.data, buffer.sample_rate)
            rhythm = pool.submit(analyze_rhythm, mono, buffer.sample_rate)
            spatial = None
            if buffer.channels >= 2:
                spatial = pool.submit(analyze_spatial, buffer.channel(0), buffer.channel(1),
                                      self.fft_size)

            bundle = AnalysisBundle(
                spectral=spectral.result(),
                psychoacoustic=psychoacoustic.result(),
                spatial=spatial.result() if spatial is not None else None,
                dynamics=dynamics.result(),
                harmonic=harmonic.result(),
                rhythm=rhythm.result(),
            )

        logger.info("Analysis complete: centroid=%.1f Hz, f0=%.1f Hz, integrated=%.1f, tempo=%.1f BPM",
                    bundle.spectral.spectral_centroid,
                    bundle.harmonic.fundamental_frequency,
                    bundle.dynamics.integrated_loudness,
                    bundle.rhythm.tempo_bpm)
        return bundle

    # --- Separation ---

    def separate(
        self,
        buffer: PcmBuffer,
        settings: Optional[SeparationSettings] = None,
        mode: SeparationMode = SeparationMode.COARSE,
        stem_types: Optional[Sequence[StemType]] = None,
        enhance: bool = True,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        backend: Optional[ModelBackend] = None,
        voice_hints: Optional[Sequence[VoiceHint]] = None,
        enhancement: Optional[dict[StemType, EnhancementSettings]] = None,
        max_workers: Optional[int] = None
    ) -> SeparationResult:
        """
        Separate ``buffer`` into stems and optionally enhance each one.

        Args:
            buffer: Source audio
            settings: Separation settings (defaults when None)
            mode: Coarse 4-stream or fine stem mode
            stem_types: Explicit stem list, overrides ``mode``
            enhance: Run the enhancement pipeline over every stem
            progress: Receives (current, total, status) events
            cancel_event: Cooperative cancellation flag
            backend: Optional model backend tried before the DSP separator
            voice_hints: Optional speech intervals biasing voice confidence
            enhancement: Per-stem enhancement overrides; other stems use their preset
            max_workers: Separate stems on a thread pool of this size

        Returns:
            SeparationResult with one stem per requested type
        """
        self._check_buffer(buffer)
        started = time.perf_counter()

        result = separate_auto(
            buffer, backend=backend, settings=settings, mode=mode, stem_types=stem_types,
            progress=progress, cancel_event=cancel_event, voice_hints=voice_hints,
            max_workers=max_workers,
        )
        stems = result.stems

        if enhance:
            overrides = enhancement or {}
            enhanced = []
            for index, stem in enumerate(stems):
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelled(f"enhancement:{stem.type.value}")
                enhanced.append(enhance_stem(stem, overrides.get(stem.type), self.pipeline))
                if progress is not None:
                    progress(index + 1, len(stems), f"enhancement:{stem.type.value}")
            stems = enhanced

        if progress is not None:
            progress(1, 1, "done")

        elapsed = time.perf_counter() - started
        logger.info("Separation finished via %s in %.2f s (%d stems)",
                    result.method, elapsed, len(stems))
        return dataclasses.replace(
            result,
            stems=stems,
            processing_time=elapsed,
            metadata={**result.metadata, "enhanced": enhance},
        )
