"""Background transcription worker.

``TranscriptionWorker`` runs on its own thread and talks to its host only
through messages: the host calls ``post()`` with command dicts, and the
worker hands event dicts to the host's ``post_message`` callable (by
default, the worker's ``outbox`` queue). Commands run one at a time in
arrival order; only cancellation bypasses the queue.
"""

import logging
import queue
import threading
import time
from typing import Any, Callable, Dict, Optional

from .capabilities import CapabilityProber
from .config import WorkerConfig
from .engine import build_recognizer
from .errors import UnknownMessageError
from .loader import TranscriptionSession
from .messages import (
    Alive,
    CancelCommand,
    Command,
    Download,
    Error,
    LoadCommand,
    Ready,
    Telemetry,
    TranscribeCommand,
    WorkerEvent,
    parse_command,
)
from .orchestrator import TranscriptionOrchestrator

logger = logging.getLogger(__name__)

_STOP = object()


class TranscriptionWorker:
    """Message-driven speech recognition worker.

    Example:
        >>> worker = TranscriptionWorker()
        >>> worker.start()
        >>> worker.post({"type": "load", "model": "openai/whisper-base.en"})
        >>> worker.post({"type": "transcribe", "audio": samples,
        ...              "sampleRate": 16000, "jobId": "job-1"})
        >>> event = worker.outbox.get()

    Attributes:
        session: Engine, capability profile and configuration
        orchestrator: Runs transcribe requests
        outbox: Default destination of outbound events
    """

    def __init__(
        self,
        config: Optional[WorkerConfig] = None,
        post_message: Optional[Callable[[Dict[str, Any]], None]] = None,
        recognizer_factory: Callable[..., Any] = build_recognizer,
        prober: Optional[CapabilityProber] = None,
    ):
        self.outbox: "queue.Queue[Dict[str, Any]]" = queue.Queue()
        self.post_message = post_message or self.outbox.put

        self.session = TranscriptionSession(
            config=config,
            prober=prober,
            recognizer_factory=recognizer_factory,
            telemetry_callback=lambda data: self._emit(Telemetry(data)),
        )
        self.orchestrator = TranscriptionOrchestrator(self.session, self._emit)

        self._inbox: "queue.Queue[Any]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._cancel_events: Dict[str, threading.Event] = {}
        self._cancel_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the worker thread (no-op if already running)."""
        if self.running:
            return
        self._thread = threading.Thread(
            target=self._run, name="TranscriptionWorker", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Finish queued commands, then stop the thread."""
        if self._thread is None:
            return
        self._inbox.put(_STOP)
        self._thread.join(timeout)
        self._thread = None

    def post(self, message: Dict[str, Any]) -> None:
        """Submit a host message.

        Malformed or unknown messages are answered with an ``error`` event
        right away. Cancellation takes effect immediately, even while
        another command is running.
        """
        try:
            command = parse_command(message)
        except UnknownMessageError as e:
            job_id = message.get("jobId") if isinstance(message, dict) else None
            logger.warning(f"Rejected message: {e}")
            self._emit(Error(str(e), job_id))
            return

        if isinstance(command, CancelCommand):
            self.cancel(command.job_id)
            return
        if isinstance(command, TranscribeCommand) and command.job_id:
            self._register_job(command.job_id)
        self._inbox.put(command)

    def cancel(self, job_id: str) -> None:
        """Ask the job ``job_id`` to stop at its next checkpoint.

        Ids that are neither queued nor running are ignored, so a later
        job reusing the id starts uncancelled.
        """
        with self._cancel_lock:
            event = self._cancel_events.get(job_id)
        if event is None:
            logger.info(f"Ignoring cancel for unknown or finished job {job_id}")
            return
        logger.info(f"Cancelling job {job_id}")
        event.set()

    def handle(self, command: Command) -> None:
        """Execute one command on the calling thread."""
        if isinstance(command, LoadCommand):
            self._load(command)
        elif isinstance(command, TranscribeCommand):
            cancel_event = self._job_event(command.job_id) if command.job_id else None
            try:
                self.orchestrator.transcribe(command, cancel_event)
            finally:
                if command.job_id:
                    with self._cancel_lock:
                        # a newer job may have taken over the id meanwhile
                        if self._cancel_events.get(command.job_id) is cancel_event:
                            del self._cancel_events[command.job_id]
        elif isinstance(command, CancelCommand):
            self.cancel(command.job_id)
        else:
            raise UnknownMessageError(f"Unknown command: {command!r}")

    def _load(self, command: LoadCommand) -> None:
        model = command.model or self.session.config.default_model
        try:
            self.session.loader.get_instance(
                model,
                lambda data: self._emit(Download(data)),
                command.backend,
            )
        except Exception as e:
            logger.exception(f"Loading '{model}' failed")
            self._emit(Error(str(e), command.job_id))
            return
        self._emit(Ready())

    def _run(self) -> None:
        self._emit(Alive(ts=time.time()))
        while True:
            command = self._inbox.get()
            if command is _STOP:
                break
            try:
                self.handle(command)
            except Exception as e:
                logger.exception(f"Command {command!r} failed")
                self._emit(Error(str(e), getattr(command, "job_id", None)))

    def _register_job(self, job_id: str) -> threading.Event:
        event = threading.Event()
        with self._cancel_lock:
            self._cancel_events[job_id] = event
        return event

    def _job_event(self, job_id: str) -> threading.Event:
        # commands passed straight to handle() were never registered
        with self._cancel_lock:
            event = self._cancel_events.get(job_id)
        return event or self._register_job(job_id)

    def _emit(self, event: WorkerEvent) -> None:
        self.post_message(event.to_message())
