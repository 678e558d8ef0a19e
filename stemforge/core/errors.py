"""
Error taxonomy for the StemForge engine.

Degenerate numeric input (silence, constant signals) is NOT an error: every
normalized metric returns 0 and every level returns the configured dB floor.
"""
from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine errors."""


class InvalidInputError(EngineError, ValueError):
    """Input rejected before any computation (bad size, mismatched channels, bad settings)."""


class ProcessingFailure(EngineError):
    """A separation or enhancement stage failed; ``stage`` names it."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.message = message


class OperationCancelled(EngineError):
    """A long-running stage observed its cancel flag between frames."""

    def __init__(self, stage: str):
        super().__init__(f"{stage}: cancelled")
        self.stage = stage


class ModelUnavailableError(EngineError):
    """The external model backend cannot serve the request; use the DSP path."""
