"""
memoscribe.recognition.engines - Concrete recognition engines.

Uses faster-whisper (primary) or mlx-whisper on Apple Silicon for neural
recognition with word-level timings, or a host-supplied platform
dictation recognizer that returns text only.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import numpy as np

from memoscribe.exceptions import DependencyError, EngineUnavailableError
from memoscribe.models import AudioFormat, AudioSample, TokenTiming, TranscriptionResult
from memoscribe.recognition.base import EngineCapabilities, RecognitionEngine

DictationRecognizer = Callable[[np.ndarray, int], str]

WHISPER_FORMAT = AudioFormat(sample_rate=16000, channels=1, encoding="float32")


def _whisper_format(preferred_format: AudioFormat | None) -> AudioFormat:
    if preferred_format is not None and preferred_format != WHISPER_FORMAT:
        raise ValueError(f"Whisper models require {WHISPER_FORMAT}, got {preferred_format}")
    return WHISPER_FORMAT


class FasterWhisperEngine(RecognitionEngine):
    """Whisper via faster-whisper (CTranslate2)."""

    name = "faster-whisper"
    capabilities = EngineCapabilities(token_timings=True, reports_processing_time=True)

    def __init__(
        self,
        model: str = "base",
        language: str | None = None,
        device: str = "auto",
        compute_type: str = "default",
        preferred_format: AudioFormat | None = None,
    ) -> None:
        super().__init__(_whisper_format(preferred_format))
        self.model = model
        self.language = language
        self.device = device
        self.compute_type = compute_type
        self._model = None

    def load_model(self) -> None:
        try:
            from faster_whisper import WhisperModel
        except ImportError as e:
            raise DependencyError(
                "faster-whisper",
                "not installed",
                "Install with: pip install memoscribe[faster]",
            ) from e

        self._model = WhisperModel(self.model, device=self.device, compute_type=self.compute_type)

    def recognize(self, samples: AudioSample) -> TranscriptionResult:
        kwargs: dict[str, Any] = {"word_timestamps": True}
        if self.language:
            kwargs["language"] = self.language

        started = time.perf_counter()
        segments, info = self._model.transcribe(samples.data, **kwargs)

        result: dict[str, Any] = {"language": info.language, "segments": []}
        # segments is lazy; decoding happens while iterating
        for segment in segments:
            seg_dict = {"text": segment.text, "words": []}
            for word in segment.words or []:
                seg_dict["words"].append({"word": word.word, "start": word.start})
            result["segments"].append(seg_dict)
        elapsed = time.perf_counter() - started

        return _parse_whisper_result(result, samples.duration_seconds, elapsed)


class MlxWhisperEngine(RecognitionEngine):
    """Whisper via mlx-whisper on Apple Silicon."""

    name = "mlx-whisper"
    capabilities = EngineCapabilities(token_timings=True, reports_processing_time=True)

    def __init__(
        self,
        model: str = "base",
        language: str | None = None,
        preferred_format: AudioFormat | None = None,
    ) -> None:
        super().__init__(_whisper_format(preferred_format))
        self.model = model
        self.language = language
        self._mlx_whisper = None

    @property
    def repo(self) -> str:
        return f"mlx-community/whisper-{self.model}-mlx"

    def load_model(self) -> None:
        try:
            import mlx.core as mx
            import mlx_whisper
            from mlx_whisper.transcribe import ModelHolder
        except ImportError as e:
            raise DependencyError(
                "mlx-whisper",
                "not installed",
                "Install with: pip install memoscribe[mlx]",
            ) from e

        # transcribe() reads its model from this cache, keyed by repo and dtype
        ModelHolder.get_model(self.repo, mx.float16)
        self._mlx_whisper = mlx_whisper

    def recognize(self, samples: AudioSample) -> TranscriptionResult:
        kwargs: dict[str, Any] = {
            "path_or_hf_repo": self.repo,
            "word_timestamps": True,
        }
        if self.language:
            kwargs["language"] = self.language

        started = time.perf_counter()
        result = self._mlx_whisper.transcribe(samples.data, **kwargs)
        elapsed = time.perf_counter() - started

        return _parse_whisper_result(result, samples.duration_seconds, elapsed)


class DictationEngine(RecognitionEngine):
    """Platform dictation recognizer supplied by the host application.

    Returns text only; the caller's telemetry substitutes wall-clock time
    for processing duration.
    """

    name = "dictation"
    capabilities = EngineCapabilities()

    def __init__(
        self,
        recognizer: DictationRecognizer | None,
        prepare: Callable[[], None] | None = None,
        preferred_format: AudioFormat | None = None,
    ) -> None:
        super().__init__(preferred_format or AudioFormat(encoding="int16"))
        self.recognizer = recognizer
        self.prepare = prepare

    def load_model(self) -> None:
        if self.recognizer is None:
            raise EngineUnavailableError("No platform dictation recognizer available")

    def initialize_engine(self) -> None:
        if self.prepare is not None:
            self.prepare()

    def recognize(self, samples: AudioSample) -> TranscriptionResult:
        text = self.recognizer(samples.data, samples.format.sample_rate)
        return TranscriptionResult(
            text=(text or "").strip(),
            token_timings=None,
            duration_seconds=samples.duration_seconds,
            processing_seconds=0.0,
        )


def _parse_whisper_result(
    result: dict[str, Any],
    duration_seconds: float,
    processing_seconds: float,
) -> TranscriptionResult:
    """Parse a Whisper-style result dict into a TranscriptionResult."""
    timings = []
    texts = []
    for seg in result.get("segments", []):
        texts.append(seg.get("text", ""))
        for w in seg.get("words", []):
            token = w.get("word", w.get("text", ""))
            timings.append(TokenTiming(token=token, start_time=float(w.get("start", 0))))

    text = result.get("text") or "".join(texts)

    return TranscriptionResult(
        text=text.strip(),
        token_timings=tuple(timings),
        duration_seconds=duration_seconds,
        processing_seconds=max(0.0, processing_seconds),
    )


def create_engine_from_config(
    config: Any,
    dictation_recognizer: DictationRecognizer | None = None,
) -> RecognitionEngine:
    """Create a recognition engine from PipelineConfig.

    Args:
        config: PipelineConfig instance
        dictation_recognizer: Host recognizer used by the dictation backend

    Returns:
        Uninitialized engine expecting ``config.target_format()``
    """
    target = config.target_format()
    if config.engine_backend == "faster":
        return FasterWhisperEngine(
            model=config.model,
            language=config.language,
            device=config.device,
            compute_type=config.compute_type,
            preferred_format=target,
        )
    elif config.engine_backend == "mlx":
        return MlxWhisperEngine(
            model=config.model,
            language=config.language,
            preferred_format=target,
        )
    elif config.engine_backend == "dictation":
        return DictationEngine(recognizer=dictation_recognizer, preferred_format=target)
    raise ValueError(f"Unknown engine backend: {config.engine_backend}")
