"""Worker configuration.

Defaults can be overridden through the environment so a host process can
tune the worker without code changes.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_MODEL = "openai/whisper-base.en"


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class WorkerConfig:
    """Tunables for probing, trimming and decoding.

    Attributes:
        default_model: Model loaded when a command names none
        fallback_model: Known-good model substituted once when a model
            architecture is not supported
        isolated: Whether the worker owns the host's CPU cores; when False
            CPU kernels run single-threaded
        language: Language passed to the decoder (None to auto-detect)
        chunk_length_s: Window length for chunked decoding
        stride_length_s: Context shared on each inner side of a window
        long_clip_threshold_s: Clips longer than this are chunked by default
        default_chunking: Chunk every clip unless the caller asks for full-clip
        permissive_chunk_length_s: Window length of the recovery pass
        permissive_stride_length_s: Stride of the recovery pass
        vad_window_ms: VAD analysis window
        vad_hop_ms: VAD hop between windows
        vad_pad_seconds: Audio kept before the detected onset
        vad_min_threshold: Lowest RMS that can count as speech
        min_untrimmed_tail_s: Trimming must leave more than this much audio
        cache_dir: Hugging Face cache directory (None for the hub default)
    """
    default_model: str = field(
        default_factory=lambda: os.getenv("WHISPER_WORKER_MODEL", DEFAULT_MODEL)
    )
    fallback_model: str = DEFAULT_MODEL
    isolated: bool = field(
        default_factory=lambda: _env_flag("WHISPER_WORKER_ISOLATED", True)
    )
    language: Optional[str] = "english"
    chunk_length_s: float = 30.0
    stride_length_s: float = 5.0
    long_clip_threshold_s: float = 30.0
    default_chunking: bool = False
    permissive_chunk_length_s: float = 15.0
    permissive_stride_length_s: float = 3.0
    vad_window_ms: float = 30.0
    vad_hop_ms: float = 15.0
    vad_pad_seconds: float = 1.0
    vad_min_threshold: float = 1e-5
    min_untrimmed_tail_s: float = 0.5
    cache_dir: Optional[str] = field(
        default_factory=lambda: os.getenv("WHISPER_WORKER_CACHE_DIR")
    )

    def __post_init__(self):
        for name in ("chunk_length_s", "permissive_chunk_length_s",
                     "vad_window_ms", "vad_hop_ms"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        for name in ("stride_length_s", "permissive_stride_length_s",
                     "vad_pad_seconds", "vad_min_threshold",
                     "min_untrimmed_tail_s", "long_clip_threshold_s"):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")
        if 2 * self.stride_length_s >= self.chunk_length_s:
            raise ValueError(
                f"stride_length_s ({self.stride_length_s}s) must be less than "
                f"half of chunk_length_s ({self.chunk_length_s}s)"
            )
        if 2 * self.permissive_stride_length_s >= self.permissive_chunk_length_s:
            raise ValueError(
                f"permissive_stride_length_s ({self.permissive_stride_length_s}s) "
                f"must be less than half of permissive_chunk_length_s "
                f"({self.permissive_chunk_length_s}s)"
            )
        if not self.default_model:
            raise ValueError("default_model cannot be empty string")
