"""Retry ladder for transcription attempts.

Each strategy is one way to run the engine (full clip, chunked, chunked on
the untrimmed audio, permissive chunked) together with the rule deciding
when it is worth trying. ``run_ladder`` walks the strategies in order and
stops at the first attempt that produces text.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from .config import WorkerConfig
from .data_models import AttemptResult, DecodeOptions
from .errors import TranscriptionCancelled

logger = logging.getLogger(__name__)


@dataclass
class LadderState:
    """What the ladder knows after the attempts made so far.

    Attributes:
        prefer_chunking: Mode decision for the first attempt
        trimmed: Whether leading silence was cut from the working audio
        attempts: Number of attempts made
        last: Outcome of the most recent attempt
    """
    prefer_chunking: bool
    trimmed: bool
    attempts: int = 0
    last: Optional[AttemptResult] = None

    @property
    def last_failed(self) -> bool:
        return self.last is not None and self.last.error is not None


@dataclass(frozen=True)
class FallbackStrategy:
    """Base strategy: decoding parameters plus an applicability rule."""
    chunk_length_s: float = 30.0
    stride_length_s: float = 5.0
    language: Optional[str] = "english"
    condition_on_previous_text: bool = True

    name = "strategy"
    chunked = True
    untrimmed = False
    recovery = False

    def applies(self, state: LadderState) -> bool:
        raise NotImplementedError

    def options(self) -> DecodeOptions:
        return DecodeOptions(
            chunked=self.chunked,
            chunk_length_s=self.chunk_length_s,
            stride_length_s=self.stride_length_s,
            language=self.language,
            temperature=0.0,
            condition_on_previous_text=self.condition_on_previous_text,
            no_speech_threshold=None,
            logprob_threshold=None,
            compression_ratio_threshold=None,
        )


@dataclass(frozen=True)
class FullClip(FallbackStrategy):
    """Single pass over the (possibly trimmed) audio."""
    name = "full_clip"
    chunked = False

    def applies(self, state: LadderState) -> bool:
        return state.attempts == 0 and not state.prefer_chunking


@dataclass(frozen=True)
class Chunked(FallbackStrategy):
    """Windowed decoding of the (possibly trimmed) audio.

    Runs first for long clips, otherwise after a full-clip attempt that
    raised or came back empty.
    """
    name = "chunked"

    def applies(self, state: LadderState) -> bool:
        if state.attempts == 0:
            return state.prefer_chunking
        return not state.last.used_chunking


@dataclass(frozen=True)
class ChunkedUntrimmed(FallbackStrategy):
    """Windowed decoding of the original audio, in case trimming cut speech."""
    name = "chunked_untrimmed"
    untrimmed = True

    def applies(self, state: LadderState) -> bool:
        return state.attempts > 0 and state.trimmed


@dataclass(frozen=True)
class PermissiveChunked(FallbackStrategy):
    """Short windows without conditioning on earlier text.

    Last resort for clips that decoded without error but produced nothing.
    """
    chunk_length_s: float = 15.0
    stride_length_s: float = 3.0
    condition_on_previous_text: bool = False

    name = "permissive_chunked"
    untrimmed = True
    recovery = True

    def applies(self, state: LadderState) -> bool:
        return state.attempts > 0 and not state.last_failed


def build_ladder(config: WorkerConfig) -> List[FallbackStrategy]:
    """The escalation order used for every transcribe request."""
    common = {"language": config.language}
    return [
        FullClip(
            chunk_length_s=config.chunk_length_s,
            stride_length_s=config.stride_length_s,
            **common,
        ),
        Chunked(
            chunk_length_s=config.chunk_length_s,
            stride_length_s=config.stride_length_s,
            **common,
        ),
        ChunkedUntrimmed(
            chunk_length_s=config.chunk_length_s,
            stride_length_s=config.stride_length_s,
            **common,
        ),
        PermissiveChunked(
            chunk_length_s=config.permissive_chunk_length_s,
            stride_length_s=config.permissive_stride_length_s,
            **common,
        ),
    ]


def run_ladder(
    strategies: List[FallbackStrategy],
    state: LadderState,
    attempt: Callable[[FallbackStrategy], AttemptResult],
) -> AttemptResult:
    """Run strategies in order until one yields text.

    Exceptions from ``attempt`` are recorded and escalate to the next
    applicable strategy; cancellation is never absorbed.

    Returns:
        The successful attempt, or the last one if every applicable
        strategy came back empty

    Raises:
        The last attempt's exception if it failed and nothing applied after
        it; TranscriptionCancelled as soon as it is raised
    """
    for strategy in strategies:
        if not strategy.applies(state):
            continue

        if state.last is not None:
            if state.last_failed:
                reason = f"{state.last.strategy} failed ({state.last.error})"
            else:
                reason = f"{state.last.strategy} returned empty text"
            logger.warning(f"{reason}; retrying with {strategy.name}")

        try:
            result = attempt(strategy)
        except TranscriptionCancelled:
            raise
        except Exception as e:
            result = AttemptResult(
                strategy=strategy.name,
                result=None,
                text="",
                elapsed_ms=0.0,
                used_chunking=strategy.chunked,
                used_trimmed=state.trimmed and not strategy.untrimmed,
                options=strategy.options(),
                error=e,
            )

        state.attempts += 1
        state.last = result
        if result.succeeded:
            return result

    if state.last is None:
        raise RuntimeError("no fallback strategy applied")
    if state.last_failed:
        raise state.last.error
    return state.last
