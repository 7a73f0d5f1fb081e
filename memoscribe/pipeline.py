"""
memoscribe.pipeline - Memo transcription pipeline and service.

Runs normalize → recognize (measured) → align strictly in sequence for
one memo, and provides an asyncio service that keeps at most one attempt
in flight per memo and turns failures into a readable transcript message.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from rich.table import Table

from memoscribe.alignment import align_sentences
from memoscribe.audio.normalizer import normalize_audio
from memoscribe.config import PipelineConfig
from memoscribe.exceptions import MemoscribeError
from memoscribe.logging import configure_logging, logger
from memoscribe.models import TranscriptionOutput, TranscriptionStats
from memoscribe.recognition.base import EngineHandle
from memoscribe.recognition.engines import DictationRecognizer, create_engine_from_config
from memoscribe.telemetry import measure_transcription

FAILURE_PREFIX = "Transcription failed"


class TranscriptionPipeline:
    """Sequential transcription of a single audio file."""

    def __init__(self, handle: EngineHandle, config: PipelineConfig | None = None) -> None:
        self.handle = handle
        self.config = config or PipelineConfig()

    def run(self, audio_path: Path, memo_id: str | None = None, console=None) -> TranscriptionOutput:
        """Transcribe an audio file.

        Args:
            audio_path: Path to the memo recording
            memo_id: Identity of the memo (defaults to the file stem)
            console: Optional rich console for output

        Returns:
            TranscriptionOutput with transcript, sentence timestamps and stats

        Raises:
            DecodeError, AllocationError, ConversionError: If normalization fails
            EngineUnavailableError, TranscriptionError: If recognition fails
        """
        memo_id = memo_id or audio_path.stem
        target = self.handle.engine.preferred_format

        samples = normalize_audio(audio_path, target, console=console)

        if console:
            console.print(f"[dim]  Recognizing {samples.duration_seconds:.1f}s of audio...[/dim]")
        result, stats = measure_transcription(self.handle, samples)
        del samples

        sentences = align_sentences(
            result.text,
            result.token_timings,
            result.duration_seconds,
            locale=self.config.sentence_locale,
        )

        return TranscriptionOutput(
            memo_id=memo_id,
            transcript_text=result.text,
            sentence_timestamps=tuple(sentences),
            stats=stats,
        )


class MemoTranscriber:
    """Async front end that serializes transcription per memo.

    Different memos run concurrently in worker threads and share only the
    pipeline's engine handle.
    """

    def __init__(self, pipeline: TranscriptionPipeline) -> None:
        self.pipeline = pipeline
        self._in_flight: dict[str, asyncio.Task[TranscriptionOutput]] = {}
        self._stats: dict[str, TranscriptionStats] = {}

    def is_transcribing(self, memo_id: str) -> bool:
        task = self._in_flight.get(memo_id)
        return task is not None and not task.done()

    def latest_stats(self, memo_id: str) -> TranscriptionStats | None:
        return self._stats.get(memo_id)

    async def transcribe(self, memo_id: str, audio_path: Path) -> TranscriptionOutput:
        """Transcribe a memo, joining an attempt already running for it."""
        task = self._in_flight.get(memo_id)
        if task is None or task.done():
            task = asyncio.ensure_future(self._attempt(memo_id, audio_path))
            self._in_flight[memo_id] = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._in_flight.get(memo_id) is task:
                del self._in_flight[memo_id]

    async def _attempt(self, memo_id: str, audio_path: Path) -> TranscriptionOutput:
        try:
            output = await asyncio.to_thread(self.pipeline.run, audio_path, memo_id)
        except MemoscribeError as e:
            logger.warning("Memo %s: %s", memo_id, e)
            self._stats.pop(memo_id, None)
            return failure_output(memo_id, e)

        if output.stats is not None:
            self._stats[memo_id] = output.stats
        return output


def failure_output(memo_id: str, error: Exception) -> TranscriptionOutput:
    """Failed attempt recorded with the failure message as transcript text."""
    return TranscriptionOutput(
        memo_id=memo_id,
        transcript_text=f"{FAILURE_PREFIX}: {error}",
        failed=True,
        error=type(error).__name__,
    )


def render_stats_table(stats: TranscriptionStats, title: str = "Transcription Stats") -> Table:
    """Build a rich table of a stats record for display."""
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Engine", stats.engine)
    table.add_row("Model load", f"{stats.model_load_seconds:.3f} s")
    table.add_row("Init", f"{stats.init_seconds:.3f} s")
    table.add_row("Transcription", f"{stats.transcription_seconds:.3f} s")
    table.add_row("Audio duration", f"{stats.audio_duration_seconds:.2f} s")
    table.add_row("Real-time factor", f"{stats.real_time_factor:.2f}x")
    table.add_row("Tokens", str(stats.token_count))
    table.add_row("Tokens/sec", f"{stats.tokens_per_second:.1f}")
    table.add_row(
        "CPU (user/system)",
        f"{stats.cpu_user_seconds:.3f} / {stats.cpu_system_seconds:.3f} s",
    )
    table.add_row("CPU total", f"{stats.cpu_total_seconds:.3f} s")
    table.add_row(
        "Memory (before → after)",
        f"{format_bytes(stats.memory_before_bytes)} → {format_bytes(stats.memory_after_bytes)}",
    )
    return table


def format_bytes(size: float) -> str:
    """Format a byte count in human-readable form."""
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def create_pipeline(
    config: PipelineConfig,
    dictation_recognizer: DictationRecognizer | None = None,
) -> TranscriptionPipeline:
    """Create a pipeline with its shared engine handle from PipelineConfig.

    Call once at application startup and reuse the pipeline for every memo.
    The engine itself is initialized on first use.
    """
    configure_logging(config.verbose)
    engine = create_engine_from_config(config, dictation_recognizer=dictation_recognizer)
    return TranscriptionPipeline(EngineHandle(engine), config)
