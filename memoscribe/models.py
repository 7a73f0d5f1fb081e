"""
memoscribe.models - Pipeline data model.

Value types passed between the normalizer, recognizer, telemetry
collector and aligner. All of them are immutable once created.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

SAMPLE_ENCODINGS = ("float32", "int16")
STATS_SCHEMA_VERSION = 1


@dataclass(frozen=True, slots=True)
class AudioFormat:
    """Sample rate, channel count and sample encoding of a buffer."""

    sample_rate: int = 16000
    channels: int = 1
    encoding: str = "float32"

    def __post_init__(self) -> None:
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.channels <= 0:
            raise ValueError(f"channels must be positive, got {self.channels}")
        if self.encoding not in SAMPLE_ENCODINGS:
            raise ValueError(f"encoding must be one of: {SAMPLE_ENCODINGS}")

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(self.encoding)


@dataclass(frozen=True, slots=True)
class AudioSample:
    """Normalized sample buffer handed to a recognition engine.

    Mono buffers are 1-D; multichannel buffers are shaped (frames, channels).
    The array is made read-only on construction.
    """

    data: np.ndarray
    format: AudioFormat

    def __post_init__(self) -> None:
        self.data.setflags(write=False)

    @property
    def frame_count(self) -> int:
        return int(self.data.shape[0])

    @property
    def duration_seconds(self) -> float:
        return self.frame_count / self.format.sample_rate


@dataclass(frozen=True, slots=True)
class TokenTiming:
    """Sub-word token and its start time in seconds from audio start."""

    token: str
    start_time: float


@dataclass(frozen=True, slots=True)
class TranscriptionResult:
    """Single finalized response from a recognition engine."""

    text: str
    token_timings: tuple[TokenTiming, ...] | None = None
    duration_seconds: float = 0.0
    processing_seconds: float = 0.0


@dataclass(frozen=True, slots=True)
class SentenceTimestamp:
    sentence: str
    start_time_seconds: float


class TranscriptionStats(BaseModel):
    """Timing, throughput and resource numbers for one transcription attempt."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    schema_version: int = STATS_SCHEMA_VERSION
    engine: str = "unknown"
    model_load_seconds: float = Field(default=0.0, ge=0.0)
    init_seconds: float = Field(default=0.0, ge=0.0)
    transcription_seconds: float = Field(default=0.0, ge=0.0)
    audio_duration_seconds: float = Field(default=0.0, ge=0.0)
    real_time_factor: float = Field(default=0.0, ge=0.0)
    token_count: int = Field(default=0, ge=0)
    tokens_per_second: float = Field(default=0.0, ge=0.0)
    cpu_user_seconds: float = Field(default=0.0, ge=0.0)
    cpu_system_seconds: float = Field(default=0.0, ge=0.0)
    cpu_total_seconds: float = Field(default=0.0, ge=0.0)
    memory_before_bytes: int = Field(default=0, ge=0)
    memory_after_bytes: int = Field(default=0, ge=0)
    memory_delta_bytes: int = Field(default=0, ge=0)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


@dataclass(frozen=True, slots=True)
class TranscriptionOutput:
    """Consumer-facing result of one memo transcription attempt.

    When ``failed`` is set, ``transcript_text`` holds a human-readable
    failure message and no timestamps or stats are present.
    """

    memo_id: str
    transcript_text: str
    sentence_timestamps: tuple[SentenceTimestamp, ...] = field(default_factory=tuple)
    stats: TranscriptionStats | None = None
    failed: bool = False
    error: str | None = None
