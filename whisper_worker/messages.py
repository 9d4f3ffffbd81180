"""Worker message protocol.

Inbound commands and outbound events are small dataclasses. Hosts talk in
plain ``{"type": ..., ...}`` dicts; ``parse_command`` turns those into
commands and rejects anything it does not know, and every event renders
back to a ``{"type": ..., "data": ...}`` dict with ``to_message``.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional, Union

import numpy as np

from .errors import NoAudioError, UnknownMessageError


# Inbound

@dataclass(frozen=True)
class LoadCommand:
    """(Re)initialize the engine, optionally forcing the CPU backend."""
    model: Optional[str] = None
    backend: Optional[str] = None
    job_id: Optional[str] = None

    type: ClassVar[str] = "load"


@dataclass(frozen=True)
class TranscribeCommand:
    """Transcribe one clip.

    Exactly one of ``audio`` (float samples) and ``audio_buffer`` (raw
    float32 bytes) must be given.
    """
    job_id: Optional[str] = None
    audio: Optional[np.ndarray] = field(default=None, repr=False)
    audio_buffer: Optional[bytes] = field(default=None, repr=False)
    sample_rate: Optional[int] = None
    model: Optional[str] = None
    force_chunking: Optional[bool] = None
    debug_profile: bool = False
    stage_timing: bool = False
    decode_ms: Optional[float] = None
    backend: Optional[str] = None

    type: ClassVar[str] = "transcribe"

    def samples(self) -> np.ndarray:
        """Return the clip as a 1D float32 array.

        Raises:
            NoAudioError: If no audio, both audio fields, or an empty or
                malformed buffer were supplied
        """
        if self.audio is None and self.audio_buffer is None:
            raise NoAudioError("No audio provided to worker")
        if self.audio is not None and self.audio_buffer is not None:
            raise NoAudioError("Provide either audio or audio_buffer, not both")

        if self.audio_buffer is not None:
            if len(self.audio_buffer) % 4:
                raise NoAudioError(
                    f"audio_buffer length must be a multiple of 4 bytes, "
                    f"got {len(self.audio_buffer)}"
                )
            samples = np.frombuffer(self.audio_buffer, dtype=np.float32)
        else:
            samples = np.asarray(self.audio, dtype=np.float32)

        if samples.ndim != 1:
            raise NoAudioError(f"audio must be 1-dimensional, got shape {samples.shape}")
        if samples.size == 0:
            raise NoAudioError("No audio provided to worker")
        if self.sample_rate is not None and self.sample_rate <= 0:
            raise NoAudioError(f"sample_rate must be positive, got {self.sample_rate}")
        return samples

    @property
    def wants_stage_timing(self) -> bool:
        return self.stage_timing or self.debug_profile


@dataclass(frozen=True)
class CancelCommand:
    """Abort a running or queued job."""
    job_id: str

    type: ClassVar[str] = "cancel"


Command = Union[LoadCommand, TranscribeCommand, CancelCommand]


def _number(value) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def parse_command(message: Dict[str, Any]) -> Command:
    """Turn a host message dict into a command.

    Raises:
        UnknownMessageError: If the message is not a dict or its type is
            missing or unknown
    """
    if not isinstance(message, dict):
        raise UnknownMessageError(
            f"message must be dict, got {type(message).__name__}"
        )

    kind = message.get("type")
    if kind == LoadCommand.type:
        return LoadCommand(
            model=message.get("model"),
            backend=message.get("backend"),
            job_id=message.get("jobId"),
        )
    if kind == TranscribeCommand.type:
        force = message.get("forceChunking")
        sample_rate = message.get("sampleRate")
        return TranscribeCommand(
            job_id=message.get("jobId"),
            audio=message.get("audio"),
            audio_buffer=message.get("audioBuffer"),
            sample_rate=int(sample_rate) if _number(sample_rate) is not None else None,
            model=message.get("model"),
            force_chunking=force if isinstance(force, bool) else None,
            debug_profile=bool(message.get("debugProfile")),
            stage_timing=bool(message.get("stageTiming")),
            decode_ms=_number(message.get("decodeMs")),
            backend=message.get("backend"),
        )
    if kind == CancelCommand.type:
        job_id = message.get("jobId")
        if not job_id:
            raise UnknownMessageError("cancel requires a jobId")
        return CancelCommand(job_id=job_id)

    raise UnknownMessageError(f"Unknown message type: {kind!r}")


# Outbound

@dataclass(frozen=True)
class WorkerEvent:
    """Base for outbound events."""
    type: ClassVar[str] = "event"

    def payload(self) -> Any:
        return None

    def to_message(self) -> Dict[str, Any]:
        message = {"type": self.type}
        data = self.payload()
        if data is not None:
            message["data"] = data
        return message


@dataclass(frozen=True)
class Alive(WorkerEvent):
    ts: float
    type: ClassVar[str] = "alive"

    def payload(self):
        return {"ts": self.ts}


@dataclass(frozen=True)
class Ready(WorkerEvent):
    type: ClassVar[str] = "ready"


@dataclass(frozen=True)
class Download(WorkerEvent):
    data: Dict[str, Any]
    type: ClassVar[str] = "download"

    def payload(self):
        return self.data


@dataclass(frozen=True)
class Progress(WorkerEvent):
    job_id: str
    percent: float
    type: ClassVar[str] = "progress"

    def payload(self):
        return {"jobId": self.job_id, "percent": self.percent}


@dataclass(frozen=True)
class Telemetry(WorkerEvent):
    data: Dict[str, Any]
    type: ClassVar[str] = "telemetry"

    def payload(self):
        return self.data


@dataclass(frozen=True)
class Metrics(WorkerEvent):
    data: Dict[str, Any]
    type: ClassVar[str] = "metrics"

    def payload(self):
        return self.data


@dataclass(frozen=True)
class Profile(WorkerEvent):
    job_id: Optional[str]
    dispatches: int
    max_dispatch_ms: float
    type: ClassVar[str] = "profile"

    def payload(self):
        return {
            "jobId": self.job_id,
            "dispatches": self.dispatches,
            "maxDispatchMs": self.max_dispatch_ms,
        }


@dataclass(frozen=True)
class Result(WorkerEvent):
    job_id: Optional[str]
    text: str
    metrics: Dict[str, Any]
    extra: Dict[str, Any] = field(default_factory=dict)
    type: ClassVar[str] = "result"

    def payload(self):
        data = {"jobId": self.job_id, "metrics": self.metrics, "text": self.text}
        # engine fields (e.g. timestamped chunks) ride along, but never
        # replace the resolved text or the job id
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data


@dataclass(frozen=True)
class Error(WorkerEvent):
    message: str
    job_id: Optional[str] = None
    metrics: Optional[Dict[str, Any]] = None
    type: ClassVar[str] = "error"

    def payload(self):
        data = {"message": self.message, "jobId": self.job_id}
        if self.metrics is not None:
            data["metrics"] = self.metrics
        return data
