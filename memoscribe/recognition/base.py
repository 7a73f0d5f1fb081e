"""
memoscribe.recognition.base - Recognition engine interface.

Every engine accepts a normalized sample buffer and returns a finalized
TranscriptionResult. Engines differ in what else they can supply, which
they declare through EngineCapabilities. Model loading and engine setup
happen once, lazily, through an EngineHandle shared by all pipeline runs.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

from memoscribe.exceptions import EngineUnavailableError, TranscriptionError
from memoscribe.logging import logger
from memoscribe.models import AudioFormat, AudioSample, TranscriptionResult


@dataclass(frozen=True, slots=True)
class EngineCapabilities:
    """What an engine returns beyond plain text."""

    token_timings: bool = False
    reports_processing_time: bool = False


class RecognitionEngine(ABC):
    """Base class for speech recognition engines."""

    name = "engine"
    capabilities = EngineCapabilities()

    def __init__(self, preferred_format: AudioFormat | None = None) -> None:
        self.preferred_format = preferred_format or AudioFormat()
        self.model_load_seconds = 0.0
        self.init_seconds = 0.0
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Load the model and prepare the engine. No-op after the first success.

        Raises:
            EngineUnavailableError: If loading or setup fails. The engine stays
                uninitialized so a later call can try again.
        """
        if self._initialized:
            return

        try:
            started = time.perf_counter()
            self.load_model()
            loaded = time.perf_counter()
            self.initialize_engine()
            ready = time.perf_counter()
        except EngineUnavailableError:
            raise
        except Exception as e:
            raise EngineUnavailableError(f"{self.name} engine failed to initialize: {e}") from e

        self.model_load_seconds = max(0.0, loaded - started)
        self.init_seconds = max(0.0, ready - loaded)
        self._initialized = True
        logger.debug(
            "%s ready (model load %.3fs, init %.3fs)",
            self.name,
            self.model_load_seconds,
            self.init_seconds,
        )

    def transcribe(self, samples: AudioSample) -> TranscriptionResult:
        """Run one recognition request and wait for the finalized result.

        Raises:
            EngineUnavailableError: If the engine has not been initialized
            TranscriptionError: If recognition fails
        """
        if not self._initialized:
            raise EngineUnavailableError(f"{self.name} engine is not initialized")

        if samples.format != self.preferred_format:
            raise TranscriptionError(
                f"{self.name} expects {self.preferred_format}, got {samples.format}"
            )

        try:
            return self.recognize(samples)
        except TranscriptionError:
            raise
        except Exception as e:
            raise TranscriptionError(f"{self.name} recognition failed: {e}") from e

    @abstractmethod
    def load_model(self) -> None:
        """Load model weights or acquire the underlying recognizer."""

    def initialize_engine(self) -> None:
        """Engine setup that runs after the model is loaded."""

    @abstractmethod
    def recognize(self, samples: AudioSample) -> TranscriptionResult:
        """Recognize speech in a buffer already in ``preferred_format``."""


class EngineHandle:
    """Shared handle to one engine, initialized at most once.

    The first caller to need the engine initializes it while holding the
    lock; concurrent callers wait and reuse it. A failed initialization is
    not remembered, so the next call retries.
    """

    def __init__(self, engine: RecognitionEngine) -> None:
        self.engine = engine
        self._lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self.engine.initialized

    def initialize(self) -> RecognitionEngine:
        if not self.engine.initialized:
            with self._lock:
                if not self.engine.initialized:
                    self.engine.initialize()
        return self.engine

    def transcribe(self, samples: AudioSample) -> TranscriptionResult:
        return self.initialize().transcribe(samples)
