"""Core data models for whisper-worker.

This module defines the data structures passed between the capability
prober, the model loader, the speech-activity trimmer and the
transcription orchestrator.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np


@dataclass(frozen=True)
class AdapterInfo:
    """Accelerator adapter discovered by the capability prober.

    Attributes:
        name: Adapter name as reported by the driver
        vendor: Adapter vendor ("nvidia", "apple", ...)
        device: torch device string the adapter maps to ("cuda:0", "mps")
        features: Supported feature names (e.g. "shader-f16")
        limits: Numeric limits (memory, multiprocessor count, ...)
        is_software: True if the name matches a software rasterizer
    """
    name: Optional[str]
    vendor: Optional[str]
    device: str
    features: List[str] = field(default_factory=list)
    limits: Dict[str, Any] = field(default_factory=dict)
    is_software: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CpuConfig:
    """CPU fallback threading configuration."""
    num_threads: int
    proxy: bool
    simd: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CapabilityProfile:
    """Result of one-time hardware probing.

    Attributes:
        adapter: Adapter found, or None if no acceleration is available
        cpu: CPU threading configuration applied during probing
    """
    adapter: Optional[AdapterInfo]
    cpu: CpuConfig

    @property
    def accelerated(self) -> bool:
        """True if the adapter exists and is not a software shim."""
        return self.adapter is not None and not self.adapter.is_software

    @property
    def supports_fp16(self) -> bool:
        return self.adapter is not None and "shader-f16" in self.adapter.features

    @property
    def dtype(self) -> str:
        return "float16" if self.supports_fp16 else "float32"


@dataclass(frozen=True)
class SpeechOnset:
    """Estimated start of speech within an audio buffer.

    Attributes:
        start_sample: Sample offset where speech (minus padding) begins
        start_seconds: Same offset in seconds
        threshold: Decision threshold the window energy had to exceed
        noise_floor: 20th percentile of window RMS values
        median: 50th percentile of window RMS values
    """
    start_sample: int
    start_seconds: float
    threshold: float
    noise_floor: float
    median: float


@dataclass
class AudioChunk:
    """A window of audio cut by the chunker.

    Attributes:
        audio: Audio samples as numpy array
        start_time: Start time in seconds relative to the chunked audio
        end_time: End time in seconds relative to the chunked audio
        chunk_index: Index in the sequence of chunks (0-based)
        stride_left: Seconds of leading context shared with the previous chunk
        stride_right: Seconds of trailing context shared with the next chunk
    """
    audio: np.ndarray
    start_time: float
    end_time: float
    chunk_index: int
    stride_left: float = 0.0
    stride_right: float = 0.0

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def new_seconds(self) -> float:
        """Seconds of audio this chunk covers that no other chunk owns."""
        return max(0.0, self.duration - self.stride_left - self.stride_right)


@dataclass
class Segment:
    """Represents a transcribed segment with timing information.

    Attributes:
        id: Sequential identifier for the segment
        start: Start time in seconds relative to the transcribed audio
        end: End time in seconds, or None if the model left it open
        text: Transcribed text content
    """
    id: int
    start: float
    end: Optional[float]
    text: str

    def to_chunk(self) -> Dict[str, Any]:
        """Render in the transformers ``chunks`` shape."""
        return {"timestamp": (self.start, self.end), "text": self.text}


@dataclass(frozen=True)
class DecodeOptions:
    """Decoding settings for one inference attempt.

    Thresholds set to None disable the model's own abort heuristics.
    """
    chunked: bool
    chunk_length_s: float = 30.0
    stride_length_s: float = 5.0
    language: Optional[str] = "english"
    task: str = "transcribe"
    temperature: float = 0.0
    condition_on_previous_text: bool = True
    no_speech_threshold: Optional[float] = None
    logprob_threshold: Optional[float] = None
    compression_ratio_threshold: Optional[float] = None

    @property
    def return_timestamps(self) -> bool:
        return self.chunked


@dataclass
class AttemptResult:
    """Outcome of one engine invocation.

    Attributes:
        strategy: Name of the fallback strategy that ran
        result: Raw engine output (dict), None if the attempt raised
        text: Extracted text ("" if nothing usable)
        elapsed_ms: Wall-clock duration of the engine call
        used_chunking: Whether chunked decoding was used
        used_trimmed: Whether the VAD-trimmed audio was used
        options: Decode options the attempt ran with
        error: Exception raised by the engine, if any
    """
    strategy: str
    result: Optional[Dict[str, Any]]
    text: str
    elapsed_ms: float
    used_chunking: bool
    used_trimmed: bool
    options: DecodeOptions
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and bool(self.text)


@dataclass
class TranscriptionMetrics:
    """Telemetry for one completed (or failed) transcribe request."""
    job_id: Optional[str]
    backend: str
    dtype: str
    runtime_dtype: Optional[str]
    adapter: Optional[Dict[str, Any]]
    chunk_length_s: Optional[float]
    stride_length_s: Optional[float]
    vad_trimmed: bool
    recovery_fallback: bool
    speech_start_s: Optional[float]
    tokens: Optional[int]
    elapsed_ms: Optional[float]
    tokens_per_sec: Optional[float]
    ms_per_token: Optional[float]
    decode_ms: Optional[float]
    stage_timing_ms: Optional[Dict[str, Optional[float]]]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["jobId"] = data.pop("job_id")
        return data
