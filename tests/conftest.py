"""
Test configuration and shared fixtures.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
import soundfile as sf

from memoscribe.models import AudioFormat, AudioSample, TokenTiming, TranscriptionResult
from memoscribe.recognition.base import EngineCapabilities, RecognitionEngine


class FakeEngine(RecognitionEngine):
    """Scripted engine that records how often it is loaded and called."""

    name = "fake"
    capabilities = EngineCapabilities(token_timings=True, reports_processing_time=True)

    def __init__(
        self,
        text: str = "hello world.",
        timings: tuple[TokenTiming, ...] | None = (
            TokenTiming("he", 0.1),
            TokenTiming("llo", 0.3),
            TokenTiming("world", 0.9),
        ),
        processing_seconds: float = 0.5,
        load_failures: int = 0,
        recognize_error: Exception | None = None,
        preferred_format: AudioFormat | None = None,
    ) -> None:
        super().__init__(preferred_format)
        self.text = text
        self.timings = timings
        self.processing_seconds = processing_seconds
        self.load_failures = load_failures
        self.recognize_error = recognize_error
        self.load_calls = 0
        self.recognize_calls = 0

    def load_model(self) -> None:
        self.load_calls += 1
        if self.load_failures > 0:
            self.load_failures -= 1
            raise RuntimeError("model weights missing")

    def recognize(self, samples: AudioSample) -> TranscriptionResult:
        self.recognize_calls += 1
        if self.recognize_error is not None:
            raise self.recognize_error
        return TranscriptionResult(
            text=self.text,
            token_timings=self.timings,
            duration_seconds=samples.duration_seconds,
            processing_seconds=self.processing_seconds,
        )


@pytest.fixture
def make_engine():
    """Return the FakeEngine class for tests that need custom scripting."""
    return FakeEngine


@pytest.fixture
def write_wav(tmp_path: Path):
    """Return a helper that writes samples to a WAV file in tmp_path."""

    def _write(
        name: str,
        data: np.ndarray,
        sample_rate: int = 16000,
        subtype: str = "FLOAT",
    ) -> Path:
        path = tmp_path / name
        sf.write(str(path), data, sample_rate, subtype=subtype)
        return path

    return _write


@pytest.fixture
def tone() -> np.ndarray:
    """One second of a 440 Hz tone at 16 kHz, float32 mono."""
    t = np.arange(16000, dtype=np.float32) / 16000
    return (0.5 * np.sin(2 * np.pi * 440 * t)).astype(np.float32)


@pytest.fixture
def sample_config_dict() -> dict:
    """Return a sample configuration dictionary."""
    return {
        "engine_backend": "faster",
        "model": "small",
        "language": "en",
        "target_sample_rate": 16000,
        "target_channels": 1,
        "sentence_locale": "en",
    }
