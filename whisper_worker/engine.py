"""Speech recognition engine wrapper.

This module wraps a transformers automatic-speech-recognition pipeline in
``SpeechRecognizer``, the callable the orchestrator drives. Chunked
decoding is done here, window by window, so the caller can follow progress
and abort between windows.
"""

import logging
import os
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional

import numpy as np
import torch
from huggingface_hub import snapshot_download
from tqdm.auto import tqdm
from transformers import pipeline

from .chunker import AudioChunker
from .data_models import AudioChunk, DecodeOptions, Segment

logger = logging.getLogger(__name__)

TASK = "automatic-speech-recognition"

MODEL_FILE_PATTERNS = ["*.json", "*.txt", "*.model", "*.tiktoken", "*.safetensors"]

UNSUPPORTED_MODEL_MARKERS = (
    "unsupported model type",
    "unrecognized model",
    "unrecognized configuration class",
    "does not recognize this architecture",
    "is not supported for",
)

ProgressCallback = Callable[[Dict[str, Any]], None]
ChunkCallback = Callable[[Dict[str, Any]], None]


def is_unsupported_model_error(error: BaseException) -> bool:
    """True if ``error`` says the model architecture cannot be loaded."""
    message = str(error).lower()
    return any(marker in message for marker in UNSUPPORTED_MODEL_MARKERS)


def torch_dtype(dtype: str) -> torch.dtype:
    if dtype not in ("float16", "float32"):
        raise ValueError(f"dtype must be 'float16' or 'float32', got '{dtype}'")
    return torch.float16 if dtype == "float16" else torch.float32


def _progress_tqdm(model_id: str, callback: ProgressCallback):
    """Build a tqdm class relaying download progress to ``callback``."""

    class _DownloadProgress(tqdm):
        def update(self, n=1):
            displayed = super().update(n)
            total = self.total or 0
            callback({
                "status": "progress",
                "name": model_id,
                "loaded": self.n,
                "total": total,
                "progress": 100.0 * self.n / total if total else None,
            })
            return displayed

    return _DownloadProgress


def download_model(
    model_id: str,
    progress_callback: Optional[ProgressCallback] = None,
    cache_dir: Optional[str] = None,
) -> str:
    """Fetch model files into the local cache and return their directory.

    Local directories are returned as they are.
    """
    if os.path.isdir(model_id):
        return model_id

    if progress_callback is not None:
        progress_callback({"status": "initiate", "name": model_id})

    kwargs = {}
    if progress_callback is not None:
        kwargs["tqdm_class"] = _progress_tqdm(model_id, progress_callback)

    path = snapshot_download(
        repo_id=model_id,
        cache_dir=cache_dir,
        allow_patterns=MODEL_FILE_PATTERNS,
        **kwargs,
    )

    if progress_callback is not None:
        progress_callback({"status": "done", "name": model_id})
    return path


class SpeechRecognizer:
    """Callable inference engine bound to a model, device and precision.

    Attributes:
        pipe: Underlying transformers pipeline
        model_id: Model identifier the pipeline was built from
        device: torch device string ("cuda:0", "mps", "cpu")
        dtype: Requested weight precision ("float16" or "float32")
    """

    supports_profiling = True

    def __init__(self, pipe, model_id: str, device: str, dtype: str):
        self.pipe = pipe
        self.model_id = model_id
        self.device = device
        self.dtype = dtype

    @property
    def sampling_rate(self) -> int:
        extractor = getattr(self.pipe, "feature_extractor", None)
        return getattr(extractor, "sampling_rate", None) or 16000

    @property
    def runtime_dtype(self) -> Optional[str]:
        """Precision the weights actually ended up in."""
        model = getattr(self.pipe, "model", None)
        if model is None:
            return None
        try:
            return str(next(model.parameters()).dtype).replace("torch.", "")
        except StopIteration:
            return None

    @property
    def fallbacks(self) -> List[str]:
        """Modules offloaded to CPU by the model's device map."""
        device_map = getattr(getattr(self.pipe, "model", None), "hf_device_map", None) or {}
        return sorted(name for name, device in device_map.items() if device in ("cpu", "disk"))

    @property
    def is_whisper(self) -> bool:
        return getattr(self.pipe, "type", None) == "seq2seq_whisper"

    @property
    def is_multilingual(self) -> bool:
        config = getattr(getattr(self.pipe, "model", None), "generation_config", None)
        return bool(getattr(config, "is_multilingual", False))

    def __call__(
        self,
        audio: np.ndarray,
        sampling_rate: int,
        options: DecodeOptions,
        chunk_callback: Optional[ChunkCallback] = None,
    ) -> Dict[str, Any]:
        """Transcribe ``audio``.

        Args:
            audio: 1D float32 samples
            sampling_rate: Sample rate of ``audio`` in Hz
            options: Decoding settings for this attempt
            chunk_callback: Called after each window in chunked mode with
                ``{"index", "stride", "processed_s"}``; may raise to abort

        Returns:
            Dict with ``text`` and, when timestamps were requested,
            ``chunks`` in the transformers shape
        """
        if options.chunked:
            return self._transcribe_chunked(audio, sampling_rate, options, chunk_callback)
        return self._transcribe_once(audio, sampling_rate, options, options.return_timestamps)

    def generate_kwargs(self, options: DecodeOptions) -> Dict[str, Any]:
        """Decoder settings passed through to ``generate``."""
        if not self.is_whisper:
            return {}
        kwargs = {
            "temperature": options.temperature,
            "condition_on_prev_tokens": options.condition_on_previous_text,
        }
        # English-only checkpoints reject language and task
        if self.is_multilingual:
            if options.language:
                kwargs["language"] = options.language
            kwargs["task"] = options.task
        for name in ("no_speech_threshold", "logprob_threshold", "compression_ratio_threshold"):
            value = getattr(options, name)
            if value is not None:
                kwargs[name] = value
        return kwargs

    def _transcribe_once(
        self,
        audio: np.ndarray,
        sampling_rate: int,
        options: DecodeOptions,
        return_timestamps: bool,
    ) -> Dict[str, Any]:
        with self._oom_guard():
            result = self.pipe(
                {"raw": audio, "sampling_rate": sampling_rate},
                return_timestamps=return_timestamps,
                generate_kwargs=self.generate_kwargs(options),
            )
        return dict(result) if isinstance(result, dict) else {"text": str(result)}

    def _transcribe_chunked(
        self,
        audio: np.ndarray,
        sampling_rate: int,
        options: DecodeOptions,
        chunk_callback: Optional[ChunkCallback],
    ) -> Dict[str, Any]:
        chunker = AudioChunker(
            chunk_length=options.chunk_length_s,
            stride_length=options.stride_length_s,
            sample_rate=sampling_rate,
        )
        chunks = chunker.chunk_audio(audio)

        chunk_segments = []
        for chunk in chunks:
            result = self._transcribe_once(chunk.audio, sampling_rate, options, True)
            chunk_segments.append(self._segments_from_result(result, chunk))
            if chunk_callback is not None:
                chunk_callback({
                    "index": chunk.chunk_index,
                    "stride": (chunk.duration, chunk.stride_left, chunk.stride_right),
                    "processed_s": chunk.new_seconds,
                })

        segments = chunker.merge_segments(chunk_segments, chunks)
        text = " ".join(s.text.strip() for s in segments if s.text.strip())
        return {
            "text": text,
            "chunks": [s.to_chunk() for s in segments],
        }

    @staticmethod
    def _segments_from_result(result: Dict[str, Any], chunk: AudioChunk) -> List[Segment]:
        """Shift a window's timestamped output onto the full timeline."""
        pieces = result.get("chunks")
        if not pieces:
            text = result.get("text") or ""
            return [Segment(id=0, start=chunk.start_time, end=chunk.end_time, text=text)]

        segments = []
        for i, piece in enumerate(pieces):
            start, end = piece.get("timestamp") or (None, None)
            segments.append(
                Segment(
                    id=i,
                    start=chunk.start_time + (start or 0.0),
                    end=chunk.start_time + end if end is not None else None,
                    text=piece.get("text") or "",
                )
            )
        return segments

    @contextmanager
    def _oom_guard(self):
        try:
            yield
        except RuntimeError as e:
            if "out of memory" not in str(e).lower():
                raise
            if self.device.startswith("cuda") and torch.cuda.is_available():
                allocated = torch.cuda.memory_allocated() / 1024**3
                reserved = torch.cuda.memory_reserved() / 1024**3
                torch.cuda.empty_cache()
                raise RuntimeError(
                    f"GPU out of memory (allocated: {allocated:.2f}GB, "
                    f"reserved: {reserved:.2f}GB). Retry with chunked decoding "
                    f"or a smaller model"
                ) from e
            raise RuntimeError(
                "Out of memory. Retry with chunked decoding or a smaller model"
            ) from e

    @contextmanager
    def stage_labels(self):
        """Label encoder and decoder passes for ``torch.profiler``.

        Registers forward hooks that wrap the encoder and decoder modules in
        ``record_function`` ranges named after them.
        """
        model = getattr(self.pipe, "model", None)
        handles = []
        for label, getter in (("encoder", "get_encoder"), ("decoder", "get_decoder")):
            module_getter = getattr(model, getter, None)
            if module_getter is None:
                continue
            handles.extend(_label_module(module_getter(), label))
        try:
            yield
        finally:
            for handle in handles:
                handle.remove()


def _label_module(module, label: str):
    ranges = []

    def enter(mod, args):
        rf = torch.profiler.record_function(label)
        rf.__enter__()
        ranges.append(rf)

    def leave(mod, args, output):
        if ranges:
            ranges.pop().__exit__(None, None, None)

    return [
        module.register_forward_pre_hook(enter),
        module.register_forward_hook(leave),
    ]


def build_recognizer(
    model_id: str,
    device: str,
    dtype: str,
    progress_callback: Optional[ProgressCallback] = None,
    cache_dir: Optional[str] = None,
) -> SpeechRecognizer:
    """Download ``model_id`` and build a recognizer on ``device``.

    Raises:
        Whatever transformers or huggingface_hub raise; the loader decides
        which failures are recoverable.
    """
    logger.info(f"Loading model '{model_id}' on device '{device}' ({dtype})")
    path = download_model(model_id, progress_callback, cache_dir)
    pipe = pipeline(
        TASK,
        model=path,
        device=device,
        torch_dtype=torch_dtype(dtype),
    )
    return SpeechRecognizer(pipe, model_id=model_id, device=device, dtype=dtype)
