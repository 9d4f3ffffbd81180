"""Exception types raised by whisper-worker.

Everything below the worker loop raises these (or plain ``TypeError`` /
``ValueError`` for bad arguments); the worker converts them into ``error``
events tagged with the job id.
"""


class WorkerError(RuntimeError):
    """Base class for whisper-worker failures."""


class NoAudioError(WorkerError, ValueError):
    """Raised when a transcribe request carries no usable audio."""


class ModelLoadError(WorkerError):
    """Raised when the recognizer cannot be built on any backend."""

    def __init__(self, model_id: str, cause: BaseException):
        super().__init__(f"Failed to load model '{model_id}': {cause}")
        self.model_id = model_id
        self.cause = cause


class TranscriptionCancelled(WorkerError):
    """Raised when the host cancels a job that is still running."""

    def __init__(self, job_id=None):
        super().__init__("Transcription cancelled")
        self.job_id = job_id


class UnknownMessageError(WorkerError, ValueError):
    """Raised for inbound messages with a missing or unknown type."""
