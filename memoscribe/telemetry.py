"""
memoscribe.telemetry - Resource and throughput measurement around recognition.

Samples wall-clock time, process CPU time and resident memory before and
after one engine call and derives real-time factor and token throughput.
Counters that cannot be read degrade to 0 instead of failing the run.
"""

from __future__ import annotations

import math
import os
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass

from memoscribe.logging import logger
from memoscribe.models import AudioSample, TranscriptionResult, TranscriptionStats
from memoscribe.recognition.base import EngineHandle


@dataclass(frozen=True, slots=True)
class ResourceSnapshot:
    """Point-in-time reading of process counters."""

    wall_seconds: float = 0.0
    cpu_user_seconds: float = 0.0
    cpu_system_seconds: float = 0.0
    rss_bytes: int = 0


def take_snapshot() -> ResourceSnapshot:
    user, system = _cpu_times()
    return ResourceSnapshot(
        wall_seconds=time.perf_counter(),
        cpu_user_seconds=user,
        cpu_system_seconds=system,
        rss_bytes=_resident_memory(),
    )


def _cpu_times() -> tuple[float, float]:
    try:
        times = os.times()
    except OSError as e:
        logger.warning("CPU time unavailable, reporting 0: %s", e)
        return 0.0, 0.0
    return times.user, times.system


def _resident_memory() -> int:
    """Current resident set size in bytes (peak RSS where only that is exposed)."""
    try:
        with open("/proc/self/statm") as f:
            resident_pages = int(f.read().split()[1])
        return resident_pages * os.sysconf("SC_PAGE_SIZE")
    except (OSError, ValueError, IndexError):
        pass

    try:
        import resource

        max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    except (ImportError, OSError, ValueError) as e:
        logger.warning("Resident memory unavailable, reporting 0: %s", e)
        return 0
    # ru_maxrss is bytes on macOS, kilobytes elsewhere
    return int(max_rss) if sys.platform == "darwin" else int(max_rss) * 1024


def count_tokens(result: TranscriptionResult) -> int:
    """Token count from engine timings, else whitespace word count.

    Non-empty text always counts as at least one token.
    """
    if result.token_timings:
        return len(result.token_timings)
    text = result.text.strip()
    if not text:
        return 0
    return max(1, len(text.split()))


def _delta(before: float, after: float) -> float:
    value = after - before
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


def _ratio(numerator: float, denominator: float) -> float:
    if not denominator > 0 or not math.isfinite(denominator):
        return 0.0
    value = numerator / denominator
    return value if math.isfinite(value) and value >= 0 else 0.0


def derive_stats(
    before: ResourceSnapshot,
    after: ResourceSnapshot,
    result: TranscriptionResult,
    engine: str = "unknown",
    model_load_seconds: float = 0.0,
    init_seconds: float = 0.0,
    audio_duration_seconds: float | None = None,
) -> TranscriptionStats:
    """Build a TranscriptionStats record from two snapshots and a result.

    Engine-reported processing time is used when positive; otherwise the
    measured wall-clock duration of the call stands in for it.
    """
    wall = _delta(before.wall_seconds, after.wall_seconds)
    if result.processing_seconds > 0 and math.isfinite(result.processing_seconds):
        processing = result.processing_seconds
    else:
        processing = wall

    duration = result.duration_seconds if audio_duration_seconds is None else audio_duration_seconds
    duration = max(0.0, duration) if math.isfinite(duration) else 0.0

    token_count = count_tokens(result)
    cpu_user = _delta(before.cpu_user_seconds, after.cpu_user_seconds)
    cpu_system = _delta(before.cpu_system_seconds, after.cpu_system_seconds)

    return TranscriptionStats(
        engine=engine,
        model_load_seconds=max(0.0, model_load_seconds),
        init_seconds=max(0.0, init_seconds),
        transcription_seconds=processing,
        audio_duration_seconds=duration,
        real_time_factor=_ratio(duration, processing),
        token_count=token_count,
        tokens_per_second=_ratio(token_count, processing),
        cpu_user_seconds=cpu_user,
        cpu_system_seconds=cpu_system,
        cpu_total_seconds=cpu_user + cpu_system,
        memory_before_bytes=max(0, before.rss_bytes),
        memory_after_bytes=max(0, after.rss_bytes),
        memory_delta_bytes=max(0, after.rss_bytes - before.rss_bytes),
    )


def measure_transcription(
    handle: EngineHandle,
    samples: AudioSample,
    snapshot: Callable[[], ResourceSnapshot] = take_snapshot,
) -> tuple[TranscriptionResult, TranscriptionStats]:
    """Run one engine call and measure it.

    Engine initialization happens before the first snapshot so it is
    reported separately rather than counted as transcription time.

    Raises:
        EngineUnavailableError: If the engine cannot be initialized
        TranscriptionError: If recognition fails
    """
    engine = handle.initialize()

    before = snapshot()
    result = engine.transcribe(samples)
    after = snapshot()

    stats = derive_stats(
        before,
        after,
        result,
        engine=engine.name,
        model_load_seconds=engine.model_load_seconds,
        init_seconds=engine.init_seconds,
        audio_duration_seconds=result.duration_seconds or samples.duration_seconds,
    )
    logger.debug(
        "%s: %d tokens in %.3fs (RTF %.2f)",
        engine.name,
        stats.token_count,
        stats.transcription_seconds,
        stats.real_time_factor,
    )
    return result, stats
