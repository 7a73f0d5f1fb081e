"""Tests for memoscribe.pipeline module."""

from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path

import numpy as np
import pytest
from rich.console import Console

from memoscribe.config import PipelineConfig
from memoscribe.exceptions import DecodeError, TranscriptionError
from memoscribe.models import SentenceTimestamp, TokenTiming
from memoscribe.pipeline import (
    MemoTranscriber,
    TranscriptionPipeline,
    format_bytes,
    render_stats_table,
)
from memoscribe.recognition.base import EngineHandle


@pytest.fixture
def memo_wav(write_wav) -> Path:
    """A 20-second, 16 kHz mono float32 recording."""
    t = np.arange(20 * 16000, dtype=np.float32) / 16000
    signal = (0.2 * np.sin(2 * np.pi * 300 * t)).astype(np.float32)
    return write_wav("memo.wav", signal, 16000)


class TestTranscriptionPipeline:
    def test_end_to_end(self, make_engine, memo_wav: Path) -> None:
        engine = make_engine()
        pipeline = TranscriptionPipeline(EngineHandle(engine))

        output = pipeline.run(memo_wav, memo_id="memo-1")

        assert output.memo_id == "memo-1"
        assert output.transcript_text == "hello world."
        assert output.sentence_timestamps == (SentenceTimestamp("hello world.", 0.1),)
        assert output.stats.audio_duration_seconds == 20.0
        assert output.stats.token_count == 3
        assert output.stats.real_time_factor == 40.0
        assert not output.failed

    def test_memo_id_defaults_to_stem(self, make_engine, memo_wav: Path) -> None:
        output = TranscriptionPipeline(EngineHandle(make_engine())).run(memo_wav)
        assert output.memo_id == "memo"

    def test_multi_sentence_timestamps_ordered(self, make_engine, memo_wav: Path) -> None:
        text = "Pick up the kids at five. Buy bread on the way. Call mum."
        timings = tuple(TokenTiming(word, 1.5 * i) for i, word in enumerate(text.split()))
        pipeline = TranscriptionPipeline(EngineHandle(make_engine(text=text, timings=timings)))

        output = pipeline.run(memo_wav)
        starts = [s.start_time_seconds for s in output.sentence_timestamps]

        assert len(starts) == 3
        assert starts == sorted(starts)
        assert starts[1] == 1.5 * 6

    def test_dictation_style_engine_uses_wall_clock(self, make_engine, memo_wav: Path) -> None:
        engine = make_engine(text="Remember the keys. Lock the door.", timings=None, processing_seconds=0.0)

        output = TranscriptionPipeline(EngineHandle(engine)).run(memo_wav)

        assert output.stats.token_count == 6
        assert output.stats.transcription_seconds >= 0.0
        assert output.sentence_timestamps[0].start_time_seconds == 0.0
        assert output.sentence_timestamps[1].start_time_seconds == pytest.approx(19 / 33 * 20.0)

    def test_locale_from_config(self, make_engine, memo_wav: Path) -> None:
        engine = make_engine(text="Ruf Dr. Weber an. Danke.", timings=None)
        pipeline = TranscriptionPipeline(EngineHandle(engine), PipelineConfig(sentence_locale="de"))

        assert len(pipeline.run(memo_wav).sentence_timestamps) == 2

    def test_decode_error_propagates(self, make_engine, tmp_path: Path) -> None:
        engine = make_engine()
        pipeline = TranscriptionPipeline(EngineHandle(engine))

        with pytest.raises(DecodeError):
            pipeline.run(tmp_path / "missing.m4a")
        assert engine.recognize_calls == 0

    def test_recognition_error_propagates(self, make_engine, memo_wav: Path) -> None:
        engine = make_engine(recognize_error=RuntimeError("boom"))

        with pytest.raises(TranscriptionError):
            TranscriptionPipeline(EngineHandle(engine)).run(memo_wav)

    def test_console_output(self, make_engine, memo_wav: Path) -> None:
        console = Console(record=True, width=120)
        TranscriptionPipeline(EngineHandle(make_engine())).run(memo_wav, console=console)
        assert "Recognizing 20.0s" in console.export_text()


class TestMemoTranscriber:
    def test_successful_transcription(self, make_engine, memo_wav: Path) -> None:
        service = MemoTranscriber(TranscriptionPipeline(EngineHandle(make_engine())))

        output = asyncio.run(service.transcribe("memo-1", memo_wav))

        assert output.transcript_text == "hello world."
        assert service.latest_stats("memo-1") == output.stats
        assert not service.is_transcribing("memo-1")

    def test_failure_recorded_as_transcript(self, make_engine, tmp_path: Path) -> None:
        service = MemoTranscriber(TranscriptionPipeline(EngineHandle(make_engine())))

        output = asyncio.run(service.transcribe("memo-1", tmp_path / "missing.wav"))

        assert output.failed
        assert output.error == "DecodeError"
        assert output.transcript_text.startswith("Transcription failed: ")
        assert output.sentence_timestamps == ()
        assert output.stats is None

    def test_same_memo_joins_in_flight_attempt(self, make_engine, memo_wav: Path) -> None:
        engine = make_engine()
        original = engine.recognize
        gate = threading.Event()

        def slow_recognize(samples):
            gate.wait(timeout=5)
            return original(samples)

        engine.recognize = slow_recognize
        service = MemoTranscriber(TranscriptionPipeline(EngineHandle(engine)))

        async def scenario():
            first = asyncio.create_task(service.transcribe("memo-1", memo_wav))
            second = asyncio.create_task(service.transcribe("memo-1", memo_wav))
            await asyncio.sleep(0.05)
            in_flight = service.is_transcribing("memo-1")
            gate.set()
            return in_flight, await first, await second

        in_flight, first, second = asyncio.run(scenario())

        assert in_flight
        assert first is second
        assert engine.recognize_calls == 1

    def test_different_memos_run_independently(self, make_engine, memo_wav: Path) -> None:
        engine = make_engine()
        service = MemoTranscriber(TranscriptionPipeline(EngineHandle(engine)))

        async def scenario():
            return await asyncio.gather(
                service.transcribe("memo-1", memo_wav),
                service.transcribe("memo-2", memo_wav),
            )

        first, second = asyncio.run(scenario())

        assert first.memo_id == "memo-1"
        assert second.memo_id == "memo-2"
        assert engine.recognize_calls == 2
        assert engine.load_calls == 1

    def test_stats_superseded_on_retranscription(self, make_engine, memo_wav: Path) -> None:
        engine = make_engine(processing_seconds=0.5)
        service = MemoTranscriber(TranscriptionPipeline(EngineHandle(engine)))

        first = asyncio.run(service.transcribe("memo-1", memo_wav))
        engine.processing_seconds = 2.0
        second = asyncio.run(service.transcribe("memo-1", memo_wav))

        assert first.stats.transcription_seconds == 0.5
        assert service.latest_stats("memo-1") is second.stats
        assert service.latest_stats("memo-1").transcription_seconds == 2.0

    def test_failed_retry_clears_stale_stats(self, make_engine, memo_wav: Path) -> None:
        engine = make_engine()
        service = MemoTranscriber(TranscriptionPipeline(EngineHandle(engine)))

        asyncio.run(service.transcribe("memo-1", memo_wav))
        engine.recognize_error = RuntimeError("engine crashed")
        output = asyncio.run(service.transcribe("memo-1", memo_wav))

        assert output.failed
        assert "engine crashed" in output.transcript_text
        assert service.latest_stats("memo-1") is None

    def test_engine_unavailable_then_recovers(self, make_engine, memo_wav: Path) -> None:
        engine = make_engine(load_failures=1)
        service = MemoTranscriber(TranscriptionPipeline(EngineHandle(engine)))

        failed = asyncio.run(service.transcribe("memo-1", memo_wav))
        retried = asyncio.run(service.transcribe("memo-1", memo_wav))

        assert failed.error == "EngineUnavailableError"
        assert not retried.failed


class TestRenderStatsTable:
    def test_table_rows(self, make_engine, memo_wav: Path) -> None:
        output = TranscriptionPipeline(EngineHandle(make_engine())).run(memo_wav)
        console = Console(record=True, width=120)

        console.print(render_stats_table(output.stats))
        text = console.export_text()

        assert "Real-time factor" in text
        assert "40.00x" in text
        assert "fake" in text


class TestFormatBytes:
    def test_bytes(self) -> None:
        assert format_bytes(500) == "500.0 B"

    def test_megabytes(self) -> None:
        assert format_bytes(1572864) == "1.5 MB"

    def test_gigabytes(self) -> None:
        assert format_bytes(1610612736) == "1.5 GB"


class TestCreatePipeline:
    def test_dictation_pipeline(self, write_wav, tone: np.ndarray) -> None:
        from memoscribe.pipeline import create_pipeline

        heard = []

        def recognizer(samples: np.ndarray, sample_rate: int) -> str:
            heard.append((samples.dtype, len(samples), sample_rate))
            return "Feed the cat. Water the plants."

        pipeline = create_pipeline(
            PipelineConfig(engine_backend="dictation"),
            dictation_recognizer=recognizer,
        )
        path = write_wav("note.wav", np.tile(tone, 2), 16000)

        output = pipeline.run(path)

        assert heard == [(np.dtype("int16"), 32000, 16000)]
        assert not pipeline.handle.engine.capabilities.token_timings
        assert output.stats.engine == "dictation"
        assert output.stats.token_count == 6
        assert [s.sentence for s in output.sentence_timestamps] == ["Feed the cat.", "Water the plants."]
        assert output.sentence_timestamps[1].start_time_seconds == pytest.approx(14 / 31 * 2.0)
