"""Transcription orchestration.

This module provides ``TranscriptionOrchestrator``, which runs one
transcribe request end to end: trims leading silence, decides between
full-clip and chunked decoding, walks the retry ladder, and reports
progress, metrics and the result (or the error) through the host's
``post_message`` callable.
"""

import logging
import math
import threading
import time
from contextlib import ExitStack, nullcontext
from typing import Any, Callable, Dict, Optional

import numpy as np

from .data_models import AttemptResult, SpeechOnset, TranscriptionMetrics
from .errors import TranscriptionCancelled
from .fallback import FallbackStrategy, LadderState, build_ladder, run_ladder
from .loader import TranscriptionSession
from .messages import Error, Metrics, Profile, Progress, Result, TranscribeCommand, WorkerEvent
from .profiler import PerformanceProfiler, StageProfiler, cuda_memory_manager
from .vad import detect_speech_start

logger = logging.getLogger(__name__)

PostMessage = Callable[[WorkerEvent], None]


def extract_text(result: Optional[Dict[str, Any]]) -> str:
    """Pull the transcript out of an engine result.

    Prefers a non-blank top-level ``text``; otherwise joins the non-empty
    ``chunks`` (or ``segments``) texts with single spaces.
    """
    if not result:
        return ""
    text = result.get("text")
    if isinstance(text, str) and text.strip():
        return text.strip()
    for key in ("chunks", "segments"):
        pieces = result.get(key)
        if isinstance(pieces, list):
            parts = [(piece.get("text") or "").strip() for piece in pieces if piece]
            return " ".join(p for p in parts if p).strip()
    return ""


class ProgressReporter:
    """Posts clamped, non-decreasing progress for one job.

    Every retry restarts its own chunk accounting, so lower percentages
    than the one already reported are dropped.
    """

    def __init__(self, job_id: Optional[str], post: PostMessage):
        self.job_id = job_id
        self._post = post
        self._high: Optional[float] = None

    @property
    def last_percent(self) -> Optional[float]:
        return self._high

    def report(self, percent: float) -> None:
        if not self.job_id:
            return
        try:
            value = float(percent)
        except (TypeError, ValueError):
            value = 0.0
        if math.isnan(value):
            value = 0.0
        value = max(0.0, min(100.0, value))
        if self._high is not None and value < self._high:
            return
        self._high = value
        self._post(Progress(job_id=self.job_id, percent=value))

    def complete(self) -> None:
        self.report(100.0)


class TranscriptionOrchestrator:
    """Runs transcribe requests against a session's engine.

    Attributes:
        session: Session providing configuration and the model loader
        post_message: Receives every outbound event
    """

    def __init__(self, session: TranscriptionSession, post_message: PostMessage):
        self.session = session
        self.post_message = post_message
        self.ladder = build_ladder(session.config)

    def transcribe(
        self,
        command: TranscribeCommand,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[Result]:
        """Transcribe one clip and post its events.

        Posts progress events, one ``metrics`` event and a final ``result``;
        or, if the request cannot be completed, one ``error`` event with
        partial metrics.

        Args:
            command: The transcribe request
            cancel_event: Set by the host to abort the job between attempts
                or chunks

        Returns:
            The posted Result, or None if an error was posted instead
        """
        request = _Request(command)
        try:
            return self._run(request, cancel_event)
        except TranscriptionCancelled as e:
            logger.warning(f"Job {command.job_id} cancelled")
            self.post_message(Error(str(e), command.job_id, self._metrics(request, final=False)))
        except Exception as e:
            logger.error(f"Transcription failed for job {command.job_id}: {e}")
            self.post_message(Error(str(e), command.job_id, self._metrics(request, final=False)))
        return None

    def _run(self, request: "_Request", cancel_event: Optional[threading.Event]) -> Result:
        command = request.command
        config = self.session.config
        audio = command.samples()
        _check_cancelled(cancel_event, command.job_id)
        engine = self.session.loader.get_instance(command.model, None, command.backend)

        model_rate = getattr(engine, "sampling_rate", None) or 16000
        sample_rate = command.sample_rate or model_rate
        resample_factor = model_rate / sample_rate

        def seconds(samples: np.ndarray) -> float:
            effective = max(1, math.floor(len(samples) * resample_factor))
            return max(1.0, effective / model_rate)

        request.onset = detect_speech_start(
            audio,
            sample_rate,
            window_ms=config.vad_window_ms,
            hop_ms=config.vad_hop_ms,
            pad_seconds=config.vad_pad_seconds,
            min_threshold=config.vad_min_threshold,
        )
        trimmed = is_trimmable(request.onset, len(audio), sample_rate, config.min_untrimmed_tail_s)
        working = audio[request.onset.start_sample:] if trimmed else audio

        prefer_chunking = choose_chunking(
            max(seconds(working), seconds(audio)),
            command.force_chunking,
            threshold_s=config.long_clip_threshold_s,
            default_chunking=config.default_chunking,
        )
        logger.info(
            f"Job {command.job_id}: {len(audio) / sample_rate:.1f}s audio, "
            f"trimmed={trimmed}, mode={'chunked' if prefer_chunking else 'full'}"
        )

        backend = self.session.loader.backend or ""
        profiler = StageProfiler(
            enabled=command.wants_stage_timing and getattr(engine, "supports_profiling", False),
            use_cuda=backend.startswith("cuda"),
        )
        progress = ProgressReporter(command.job_id, self.post_message)
        progress.report(0)

        def attempt(strategy: FallbackStrategy) -> AttemptResult:
            _check_cancelled(cancel_event, command.job_id)
            samples = audio if strategy.untrimmed else working
            total_seconds = seconds(samples)
            processed = 0.0

            def on_chunk(info: Dict[str, Any]) -> None:
                nonlocal processed
                _check_cancelled(cancel_event, command.job_id)
                processed += info.get("processed_s", 0.0)
                logger.debug(f"Job {command.job_id}: chunk {info.get('index')} done")
                progress.report(processed / total_seconds * 100)

            options = strategy.options()
            request.recovery = request.recovery or strategy.recovery
            with ExitStack() as stack:
                if profiler.enabled and hasattr(engine, "stage_labels"):
                    stack.enter_context(engine.stage_labels())
                stack.enter_context(profiler.record())
                stack.enter_context(
                    cuda_memory_manager() if backend.startswith("cuda") else nullcontext()
                )
                start = time.perf_counter()
                result = engine(
                    samples,
                    sample_rate,
                    options,
                    chunk_callback=on_chunk if options.chunked else None,
                )
                elapsed_ms = (time.perf_counter() - start) * 1000

            outcome = AttemptResult(
                strategy=strategy.name,
                result=result if isinstance(result, dict) else {"text": str(result or "")},
                text=extract_text(result if isinstance(result, dict) else {"text": result}),
                elapsed_ms=elapsed_ms,
                used_chunking=options.chunked,
                used_trimmed=trimmed and not strategy.untrimmed,
                options=options,
            )
            request.last = outcome
            return outcome

        state = LadderState(prefer_chunking=prefer_chunking, trimmed=trimmed)
        try:
            final = run_ladder(self.ladder, state, attempt)
        finally:
            # failed attempts never reach request.last through attempt()
            if state.last is not None:
                request.last = state.last

        stage = profiler.summarize(decode_ms=command.decode_ms)
        if stage is not None:
            request.stage_timing_ms = stage.stage_timing_ms
            self.post_message(
                Profile(
                    job_id=command.job_id,
                    dispatches=stage.dispatches,
                    max_dispatch_ms=stage.max_dispatch_ms,
                )
            )

        metrics = self._metrics(request, final=True)
        logger.info(
            f"Job {command.job_id}: {metrics['tokens']} tokens in "
            f"{metrics['elapsed_ms']:.0f}ms via {final.strategy}"
        )
        self.post_message(Metrics(metrics))
        progress.complete()

        extra = {key: value for key, value in (final.result or {}).items() if key != "text"}
        event = Result(job_id=command.job_id, text=final.text, metrics=metrics, extra=extra)
        self.post_message(event)
        return event

    def _metrics(self, request: "_Request", final: bool) -> Dict[str, Any]:
        loader = self.session.loader
        last = request.last
        chunked = last is not None and last.used_chunking
        if final and last is not None:
            stats = PerformanceProfiler.calculate_stats(last.text, last.elapsed_ms)
            tokens, elapsed_ms = stats.tokens, stats.elapsed_ms
            tokens_per_sec, ms_per_token = stats.tokens_per_sec, stats.ms_per_token
        else:
            tokens = elapsed_ms = tokens_per_sec = ms_per_token = None

        return TranscriptionMetrics(
            job_id=request.command.job_id,
            backend=loader.backend or "unknown",
            dtype=loader.dtype or "unknown",
            runtime_dtype=loader.runtime_dtype,
            adapter=loader.adapter,
            chunk_length_s=last.options.chunk_length_s if chunked else None,
            stride_length_s=last.options.stride_length_s if chunked else None,
            vad_trimmed=last.used_trimmed if last is not None else False,
            recovery_fallback=request.recovery,
            speech_start_s=request.onset.start_seconds if request.onset else None,
            tokens=tokens,
            elapsed_ms=elapsed_ms,
            tokens_per_sec=tokens_per_sec,
            ms_per_token=ms_per_token,
            decode_ms=request.command.decode_ms,
            stage_timing_ms=request.stage_timing_ms if final else None,
        ).to_dict()


class _Request:
    """Mutable bookkeeping for one transcribe request."""

    def __init__(self, command: TranscribeCommand):
        self.command = command
        self.onset: Optional[SpeechOnset] = None
        self.last: Optional[AttemptResult] = None
        self.recovery = False
        self.stage_timing_ms: Optional[Dict[str, Optional[float]]] = None


def is_trimmable(
    onset: Optional[SpeechOnset],
    total_samples: int,
    sample_rate: int,
    min_tail_s: float = 0.5,
) -> bool:
    """Whether cutting audio before ``onset`` leaves a usable clip."""
    if onset is None:
        return False
    return 0 < onset.start_sample < total_samples - sample_rate * min_tail_s


def choose_chunking(
    duration_s: float,
    force_chunking: Optional[bool] = None,
    threshold_s: float = 30.0,
    default_chunking: bool = False,
) -> bool:
    """Decide whether the first attempt decodes in windows.

    An explicit True or False from the caller wins; otherwise clips longer
    than ``threshold_s`` are chunked.
    """
    if force_chunking is True:
        return True
    if force_chunking is False:
        return False
    return default_chunking or duration_s > threshold_s


def _check_cancelled(cancel_event: Optional[threading.Event], job_id: Optional[str]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise TranscriptionCancelled(job_id)
