"""whisper-worker: background speech recognition with adaptive fallback.

This module provides a message-driven worker that probes the available
hardware, loads a Whisper-style model on the best backend, skips leading
silence and retries with progressively more permissive decoding until the
clip yields text.

Example:
    >>> from whisper_worker import TranscriptionWorker
    >>> worker = TranscriptionWorker()
    >>> worker.start()
    >>> worker.post({"type": "transcribe", "audio": samples,
    ...              "sampleRate": 16000, "jobId": "job-1"})
    >>> while (event := worker.outbox.get())["type"] not in ("result", "error"):
    ...     print(event)
"""

from .capabilities import CapabilityProber
from .chunker import AudioChunker
from .config import WorkerConfig
from .data_models import (
    AdapterInfo,
    AttemptResult,
    AudioChunk,
    CapabilityProfile,
    CpuConfig,
    DecodeOptions,
    Segment,
    SpeechOnset,
    TranscriptionMetrics,
)
from .engine import SpeechRecognizer, build_recognizer
from .errors import (
    ModelLoadError,
    NoAudioError,
    TranscriptionCancelled,
    UnknownMessageError,
    WorkerError,
)
from .fallback import (
    Chunked,
    ChunkedUntrimmed,
    FallbackStrategy,
    FullClip,
    PermissiveChunked,
    run_ladder,
)
from .loader import ModelLoader, TranscriptionSession
from .orchestrator import TranscriptionOrchestrator, extract_text
from .profiler import PerformanceProfiler, PerformanceStats, StageProfiler, cuda_memory_manager
from .vad import detect_speech_start
from .worker import TranscriptionWorker

__version__ = "0.1.0"

__all__ = [
    "AdapterInfo",
    "AttemptResult",
    "AudioChunk",
    "AudioChunker",
    "CapabilityProber",
    "CapabilityProfile",
    "Chunked",
    "ChunkedUntrimmed",
    "CpuConfig",
    "DecodeOptions",
    "FallbackStrategy",
    "FullClip",
    "ModelLoadError",
    "ModelLoader",
    "NoAudioError",
    "PerformanceProfiler",
    "PerformanceStats",
    "PermissiveChunked",
    "Segment",
    "SpeechOnset",
    "SpeechRecognizer",
    "StageProfiler",
    "TranscriptionCancelled",
    "TranscriptionMetrics",
    "TranscriptionOrchestrator",
    "TranscriptionSession",
    "TranscriptionWorker",
    "UnknownMessageError",
    "WorkerConfig",
    "WorkerError",
    "build_recognizer",
    "cuda_memory_manager",
    "detect_speech_start",
    "extract_text",
    "run_ladder",
]
