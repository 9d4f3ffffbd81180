"""Performance telemetry utilities.

This module turns attempt timings into per-request throughput figures,
collects optional per-stage timings with ``torch.profiler`` and provides a
CUDA cache cleanup helper.
"""

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import torch

logger = logging.getLogger(__name__)

ENCODER_PATTERN = re.compile(r"encoder", re.IGNORECASE)
DECODER_PATTERN = re.compile(r"decoder|lm_head", re.IGNORECASE)
DISPATCH_PATTERN = re.compile(r"launch|dispatch", re.IGNORECASE)


@dataclass
class PerformanceStats:
    """Throughput figures for one transcription.

    Attributes:
        tokens: Whitespace-separated tokens in the final text
        elapsed_ms: Wall-clock time of the terminal attempt
        tokens_per_sec: Tokens produced per second, None if undefined
        ms_per_token: Milliseconds per token, None if undefined
    """
    tokens: int
    elapsed_ms: float
    tokens_per_sec: Optional[float]
    ms_per_token: Optional[float]

    def __str__(self) -> str:
        if self.tokens_per_sec is None:
            return f"Performance: {self.tokens} tokens in {self.elapsed_ms:.1f}ms"
        return (
            f"Performance: {self.tokens} tokens in {self.elapsed_ms:.1f}ms "
            f"({self.tokens_per_sec:.1f} tok/s, {self.ms_per_token:.1f} ms/tok)"
        )


@dataclass(frozen=True)
class ProfileEvent:
    """One profiler event, durations in microseconds."""
    name: str
    duration_us: float
    self_us: float = 0.0


@dataclass
class StageTiming:
    """Per-stage breakdown extracted from profiler events."""
    stage_timing_ms: Dict[str, Optional[float]]
    dispatches: int
    max_dispatch_ms: float


class PerformanceProfiler:
    """Derives throughput statistics for a transcription."""

    @staticmethod
    def count_tokens(text: str) -> int:
        return len(text.split()) if text else 0

    @staticmethod
    def calculate_stats(text: str, elapsed_ms: float) -> PerformanceStats:
        """Calculate throughput for ``text`` produced in ``elapsed_ms``.

        Rates are None when either the token count or the elapsed time is
        zero.
        """
        tokens = PerformanceProfiler.count_tokens(text)
        if tokens > 0 and elapsed_ms > 0:
            tokens_per_sec = tokens / (elapsed_ms / 1000)
            ms_per_token = elapsed_ms / tokens
        else:
            tokens_per_sec = None
            ms_per_token = None

        return PerformanceStats(
            tokens=tokens,
            elapsed_ms=elapsed_ms,
            tokens_per_sec=tokens_per_sec,
            ms_per_token=ms_per_token,
        )


def summarize_events(
    events: Iterable[ProfileEvent],
    decode_ms: Optional[float] = None,
) -> StageTiming:
    """Bucket profiler events into encoder, decoder and post-processing time.

    Encoder and decoder time come from events named after those stages;
    the total is the sum of self times; whatever is left is post time.
    Zero figures are reported as None.
    """
    events = list(events)
    dispatches = [e for e in events if DISPATCH_PATTERN.search(e.name)]
    max_dispatch_ms = max((e.duration_us for e in dispatches), default=0.0) / 1000

    encoder_ms = sum(e.duration_us for e in events if ENCODER_PATTERN.search(e.name)) / 1000
    decoder_ms = sum(e.duration_us for e in events if DECODER_PATTERN.search(e.name)) / 1000
    total_ms = sum(e.self_us for e in events) / 1000
    post_ms = max(0.0, total_ms - encoder_ms - decoder_ms)

    return StageTiming(
        stage_timing_ms={
            "decode": decode_ms,
            "encoder": encoder_ms or None,
            "decoder": decoder_ms or None,
            "post": post_ms or None,
            "total": total_ms or None,
        },
        dispatches=len(dispatches),
        max_dispatch_ms=max_dispatch_ms,
    )


class StageProfiler:
    """Collects ``torch.profiler`` events across the attempts of one job.

    Attributes:
        enabled: Whether profiling was requested and is supported
    """

    def __init__(self, enabled: bool, use_cuda: bool = False):
        self.enabled = enabled
        self.use_cuda = use_cuda
        self._events: List[ProfileEvent] = []

    @contextmanager
    def record(self):
        """Profile the enclosed block if enabled."""
        if not self.enabled:
            yield
            return

        activities = [torch.profiler.ProfilerActivity.CPU]
        if self.use_cuda and torch.cuda.is_available():
            activities.append(torch.profiler.ProfilerActivity.CUDA)

        with torch.profiler.profile(activities=activities) as prof:
            yield
        self._events.extend(
            ProfileEvent(
                name=evt.name,
                duration_us=evt.cpu_time_total,
                self_us=evt.self_cpu_time_total,
            )
            for evt in prof.events()
        )

    @property
    def events(self) -> List[ProfileEvent]:
        return list(self._events)

    def summarize(self, decode_ms: Optional[float] = None) -> Optional[StageTiming]:
        if not self.enabled:
            return None
        return summarize_events(self._events, decode_ms=decode_ms)


@contextmanager
def cuda_memory_manager():
    """Context manager for CUDA memory management.

    Ensures cached GPU memory is released after an attempt, including one
    that ran out of memory.

    Example:
        >>> with cuda_memory_manager():
        ...     result = recognizer(audio, 16000, options)
    """
    try:
        yield
    finally:
        if torch.cuda.is_available():
            torch.cuda.empty_cache()
