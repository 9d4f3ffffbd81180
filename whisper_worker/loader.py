"""Model loading with backend and model fallback.

``ModelLoader`` owns the single live recognizer. It builds it lazily on the
best backend the capability profile allows, falls back from accelerator to
CPU, and substitutes a known-good model once if the requested architecture
is unsupported. ``TranscriptionSession`` bundles the loader with its
configuration so each worker (or test) gets isolated state.
"""

import logging
from typing import Any, Callable, Dict, Optional

from .capabilities import CapabilityProber
from .config import WorkerConfig
from .data_models import CapabilityProfile
from .engine import ProgressCallback, build_recognizer, is_unsupported_model_error
from .errors import ModelLoadError

logger = logging.getLogger(__name__)

CPU_BACKEND = "cpu"

TelemetryCallback = Callable[[Dict[str, Any]], None]


class ModelLoader:
    """Builds and caches the inference engine.

    Attributes:
        prober: Capability prober consulted on first build
        config: Worker configuration (default and fallback models)
        backend: Backend of the live engine ("cuda:0", "mps", "cpu:<n>")
        dtype: Effective precision of the live engine
        runtime_dtype: Precision reported by the loaded weights
    """

    def __init__(
        self,
        prober: CapabilityProber,
        config: Optional[WorkerConfig] = None,
        recognizer_factory: Callable[..., Any] = build_recognizer,
        telemetry_callback: Optional[TelemetryCallback] = None,
    ):
        self.prober = prober
        self.config = config or WorkerConfig()
        self.recognizer_factory = recognizer_factory
        self.telemetry_callback = telemetry_callback

        self._engine = None
        self._model_id: Optional[str] = None
        self._resolved_model_id: Optional[str] = None
        self._tried_fallback_model = False

        self.backend: Optional[str] = None
        self.dtype = "float32"
        self.runtime_dtype: Optional[str] = None

    @property
    def engine(self):
        return self._engine

    @property
    def model_id(self) -> Optional[str]:
        """Model identifier the live engine was requested with."""
        return self._model_id

    @property
    def adapter(self) -> Optional[Dict[str, Any]]:
        profile = self.prober.profile
        if profile is None or profile.adapter is None:
            return None
        return profile.adapter.to_dict()

    def get_instance(
        self,
        model_id: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
        forced_backend: Optional[str] = None,
    ):
        """Return the engine for ``model_id``, building it if needed.

        The cached engine is reused as long as the same model is requested.
        Asking for a different model, or forcing the CPU backend while the
        engine runs on an accelerator, drops the current engine and builds
        a new one.

        Args:
            model_id: Model to load (default: the loaded or configured model)
            progress_callback: Receives download progress dicts
            forced_backend: "cpu" to skip accelerator backends

        Returns:
            Callable inference engine

        Raises:
            ModelLoadError: If the engine cannot be built on any backend
        """
        model_id = model_id or self._model_id or self.config.default_model
        if self._engine is not None and model_id == self._model_id:
            if forced_backend != CPU_BACKEND or self.backend.startswith(CPU_BACKEND):
                return self._engine
            logger.info(f"Rebuilding '{model_id}' on the CPU backend")
        elif self._engine is not None:
            logger.info(f"Switching model from '{self._model_id}' to '{model_id}'")
        # no explicit teardown; dropping the reference frees it
        self._engine = None
        self._model_id = None

        profile = self.prober.probe()
        use_accelerator = forced_backend != CPU_BACKEND and profile.accelerated
        fp16_requested = use_accelerator and profile.supports_fp16

        engine = None
        self._resolved_model_id = model_id
        if use_accelerator:
            try:
                engine = self._build(
                    profile.adapter.device, profile.dtype, progress_callback
                )
                backend = profile.adapter.device
            except Exception as e:
                logger.warning(
                    f"Loading '{self._resolved_model_id}' on {profile.adapter.device} failed, "
                    f"falling back to CPU: {e}"
                )
        else:
            reason = "forced" if forced_backend == CPU_BACKEND else "no usable accelerator"
            logger.info(f"Using CPU backend ({reason})")

        if engine is None:
            try:
                engine = self._build(CPU_BACKEND, "float32", progress_callback)
            except Exception as e:
                raise ModelLoadError(self._resolved_model_id, e) from e
            backend = f"{CPU_BACKEND}:{profile.cpu.num_threads}"

        self._engine = engine
        self._model_id = model_id
        self.backend = backend
        self._record_precision(engine, "float16" if fp16_requested else "float32", fp16_requested)
        self._emit_telemetry(profile, fp16_requested)
        return engine

    def _build(self, device: str, dtype: str, progress_callback):
        """Build the resolved model on ``device``.

        If the architecture is unsupported and no substitution happened yet
        this session, the fallback model becomes the resolved model (also
        for any later backend) and is tried once.
        """
        model_id = self._resolved_model_id
        try:
            return self.recognizer_factory(
                model_id, device, dtype, progress_callback, self.config.cache_dir
            )
        except Exception as e:
            if self._tried_fallback_model or not is_unsupported_model_error(e):
                raise
            fallback = self.config.fallback_model
            logger.warning(
                f"Unsupported model type for '{model_id}', retrying with '{fallback}' on {device}"
            )
            self._tried_fallback_model = True
            self._resolved_model_id = fallback
            return self.recognizer_factory(
                fallback, device, dtype, progress_callback, self.config.cache_dir
            )

    def _record_precision(self, engine, requested: str, fp16_requested: bool) -> None:
        runtime = getattr(engine, "runtime_dtype", None) or requested
        if fp16_requested and "16" not in runtime:
            logger.warning(f"FP16 requested but runtime is {runtime}")
        self.runtime_dtype = runtime
        self.dtype = "float16" if "16" in runtime else "float32"

    def _emit_telemetry(self, profile: CapabilityProfile, fp16_requested: bool) -> None:
        data = {
            "backend": self.backend,
            "dtype": self.dtype,
            "runtime_dtype": self.runtime_dtype,
            "fp16_requested": fp16_requested,
            "adapter": self.adapter,
            "cpu": profile.cpu.to_dict(),
            "fallbacks": list(getattr(self._engine, "fallbacks", None) or []),
            "model": getattr(self._engine, "model_id", self._model_id),
        }
        logger.info(
            f"Model ready: backend={data['backend']}, dtype={data['dtype']}, "
            f"runtime_dtype={data['runtime_dtype']}"
        )
        if self.telemetry_callback is not None:
            self.telemetry_callback(data)


class TranscriptionSession:
    """Per-worker state: configuration, capability profile and engine.

    Example:
        >>> session = TranscriptionSession()
        >>> engine = session.loader.get_instance("openai/whisper-base.en")
    """

    def __init__(
        self,
        config: Optional[WorkerConfig] = None,
        prober: Optional[CapabilityProber] = None,
        recognizer_factory: Callable[..., Any] = build_recognizer,
        telemetry_callback: Optional[TelemetryCallback] = None,
    ):
        self.config = config or WorkerConfig()
        self.prober = prober or CapabilityProber(isolated=self.config.isolated)
        self.loader = ModelLoader(
            self.prober,
            config=self.config,
            recognizer_factory=recognizer_factory,
            telemetry_callback=telemetry_callback,
        )

    @property
    def capability_profile(self) -> Optional[CapabilityProfile]:
        return self.prober.profile

    @property
    def engine(self):
        return self.loader.engine

    @property
    def model_id(self) -> Optional[str]:
        return self.loader.model_id
