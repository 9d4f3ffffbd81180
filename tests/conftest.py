"""Shared fakes for whisper-worker tests.

The fakes stand in for the transformers pipeline and the hardware so the
tests never download a model or need a GPU.
"""

import numpy as np
import pytest

from whisper_worker.capabilities import CapabilityProber
from whisper_worker.chunker import AudioChunker
from whisper_worker.config import WorkerConfig
from whisper_worker.data_models import AdapterInfo, CapabilityProfile, CpuConfig
from whisper_worker.loader import TranscriptionSession

SAMPLE_RATE = 16000


class FakeEngine:
    """Callable engine; ``handler(audio, options)`` decides the output."""

    def __init__(self, handler=None, model_id="fake/model", sampling_rate=SAMPLE_RATE):
        self.handler = handler or (lambda audio, options: {"text": "hello world"})
        self.model_id = model_id
        self.sampling_rate = sampling_rate
        self.runtime_dtype = "float32"
        self.fallbacks = []
        self.calls = []

    def __call__(self, audio, sampling_rate, options, chunk_callback=None):
        self.calls.append({"samples": len(audio), "options": options})
        if options.chunked and chunk_callback is not None:
            chunker = AudioChunker(
                chunk_length=options.chunk_length_s,
                stride_length=options.stride_length_s,
                sample_rate=sampling_rate,
            )
            for chunk in chunker.chunk_audio(audio):
                chunk_callback({
                    "index": chunk.chunk_index,
                    "stride": (chunk.duration, chunk.stride_left, chunk.stride_right),
                    "processed_s": chunk.new_seconds,
                })
        return self.handler(audio, options)


class FakeFactory:
    """Recognizer factory recording every build request.

    ``failures`` maps (model_id, device) to the exception raised for it.
    Built engines report ``runtime_dtype`` (default: the requested dtype).
    """

    def __init__(self, failures=None, engine_handler=None, runtime_dtype=None):
        self.failures = failures or {}
        self.engine_handler = engine_handler
        self.runtime_dtype = runtime_dtype
        self.calls = []

    def __call__(self, model_id, device, dtype, progress_callback=None, cache_dir=None):
        self.calls.append((model_id, device, dtype))
        error = self.failures.get((model_id, device))
        if error is not None:
            raise error
        if progress_callback is not None:
            progress_callback({"status": "done", "name": model_id})
        engine = FakeEngine(handler=self.engine_handler, model_id=model_id)
        engine.runtime_dtype = self.runtime_dtype or dtype
        return engine


def make_prober(adapter=None, num_threads=3, isolated=True):
    """Prober whose profile is fixed up front."""
    prober = CapabilityProber(isolated=isolated)
    prober._profile = CapabilityProfile(
        adapter=adapter,
        cpu=CpuConfig(num_threads=num_threads, proxy=isolated, simd="AVX2"),
    )
    return prober


def cuda_adapter(fp16=True, name="NVIDIA GeForce RTX 3090"):
    return AdapterInfo(
        name=name,
        vendor="nvidia",
        device="cuda:0",
        features=["shader-f16"] if fp16 else [],
        limits={"total_memory": 24 * 1024**3},
        is_software=False,
    )


def tone(seconds, sample_rate=SAMPLE_RATE, amplitude=0.5, freq=440.0):
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def silence(seconds, sample_rate=SAMPLE_RATE, noise=1e-4, seed=0):
    rng = np.random.default_rng(seed)
    return (noise * rng.standard_normal(int(seconds * sample_rate))).astype(np.float32)


@pytest.fixture
def config():
    return WorkerConfig(default_model="fake/model", fallback_model="fake/fallback")


@pytest.fixture
def events():
    return []


@pytest.fixture
def session(config):
    return TranscriptionSession(
        config=config,
        prober=make_prober(),
        recognizer_factory=FakeFactory(),
    )
