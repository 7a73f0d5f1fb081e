"""
memoscribe.exceptions - Custom exception classes.

All Memoscribe-specific exceptions inherit from MemoscribeError.
Normalizer and recognizer errors are terminal for a transcription attempt;
the aligner and telemetry collector never raise.
"""


class MemoscribeError(Exception):
    """Base exception for all Memoscribe errors."""

    pass


class ConfigError(MemoscribeError):
    """Configuration loading or validation error."""

    pass


class NormalizationError(MemoscribeError):
    """Audio could not be brought into the recognizer's sample format."""

    pass


class DecodeError(NormalizationError):
    """Audio file could not be opened or decoded."""

    pass


class AllocationError(NormalizationError):
    """Sample buffer of the required capacity could not be obtained."""

    pass


class ConversionError(NormalizationError):
    """Resampler or format converter reported an error."""

    pass


class RecognitionError(MemoscribeError):
    """Speech recognition engine error."""

    pass


class EngineUnavailableError(RecognitionError):
    """Engine is not initialized and initialization failed."""

    pass


class TranscriptionError(RecognitionError):
    """Recognition itself failed."""

    pass


class DependencyError(MemoscribeError):
    """Required dependency missing or misconfigured."""

    def __init__(self, dependency: str, message: str, install_hint: str | None = None):
        self.dependency = dependency
        self.message = message
        self.install_hint = install_hint
        super().__init__(f"{dependency}: {message}")
