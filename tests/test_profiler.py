"""Tests for performance telemetry utilities."""

import pytest
import torch

from whisper_worker.profiler import (
    PerformanceProfiler,
    ProfileEvent,
    StageProfiler,
    cuda_memory_manager,
    summarize_events,
)


class TestCalculateStats:
    """Test throughput statistics."""

    def test_rates(self):
        """Test tokens per second and milliseconds per token."""
        stats = PerformanceProfiler.calculate_stats("one two three four", 2000.0)

        assert stats.tokens == 4
        assert stats.tokens_per_sec == pytest.approx(2.0)
        assert stats.ms_per_token == pytest.approx(500.0)
        assert "2.0 tok/s" in str(stats)

    def test_no_tokens(self):
        """Test rates are undefined without tokens."""
        stats = PerformanceProfiler.calculate_stats("", 150.0)

        assert stats.tokens == 0
        assert stats.tokens_per_sec is None
        assert stats.ms_per_token is None
        assert str(stats) == "Performance: 0 tokens in 150.0ms"

    def test_zero_elapsed(self):
        """Test rates are undefined for a zero duration."""
        stats = PerformanceProfiler.calculate_stats("hello", 0.0)

        assert stats.tokens_per_sec is None


class TestSummarizeEvents:
    """Test bucketing profiler events into stages."""

    def test_stage_buckets(self):
        """Test encoder, decoder and post time are separated."""
        events = [
            ProfileEvent("encoder", duration_us=4000, self_us=1000),
            ProfileEvent("decoder", duration_us=3000, self_us=1000),
            ProfileEvent("lm_head", duration_us=1000, self_us=1000),
            ProfileEvent("aten::mm", duration_us=6000, self_us=6000),
            ProfileEvent("cudaLaunchKernel", duration_us=2500, self_us=1000),
            ProfileEvent("cudaLaunchKernel", duration_us=500, self_us=500),
        ]

        timing = summarize_events(events, decode_ms=20.0)

        assert timing.stage_timing_ms == {
            "decode": 20.0,
            "encoder": pytest.approx(4.0),
            "decoder": pytest.approx(4.0),
            "post": pytest.approx(2.5),
            "total": pytest.approx(10.5),
        }
        assert timing.dispatches == 2
        assert timing.max_dispatch_ms == pytest.approx(2.5)

    def test_empty_events(self):
        """Test missing figures are reported as None."""
        timing = summarize_events([])

        assert timing.stage_timing_ms == {
            "decode": None, "encoder": None, "decoder": None, "post": None, "total": None,
        }
        assert timing.dispatches == 0
        assert timing.max_dispatch_ms == 0.0


class TestStageProfiler:
    """Test the torch.profiler wrapper."""

    def test_disabled(self):
        """Test a disabled profiler records nothing."""
        profiler = StageProfiler(enabled=False)

        with profiler.record():
            torch.ones(4) + 1

        assert profiler.events == []
        assert profiler.summarize() is None

    def test_enabled_collects_events(self):
        """Test labelled ranges end up in the encoder bucket."""
        profiler = StageProfiler(enabled=True)

        with profiler.record():
            with torch.profiler.record_function("encoder"):
                torch.mm(torch.ones(8, 8), torch.ones(8, 8))

        names = [event.name for event in profiler.events]
        assert "encoder" in names
        timing = profiler.summarize(decode_ms=1.0)
        assert timing.stage_timing_ms["decode"] == 1.0
        assert timing.stage_timing_ms["encoder"] is not None


class TestCudaMemoryManager:
    """Test CUDA cache cleanup."""

    def test_releases_cache_on_error(self, monkeypatch):
        """Test the cache is emptied even when the block raises."""
        calls = []
        monkeypatch.setattr(torch.cuda, "is_available", lambda: True)
        monkeypatch.setattr(torch.cuda, "empty_cache", lambda: calls.append(1))

        with pytest.raises(RuntimeError):
            with cuda_memory_manager():
                raise RuntimeError("CUDA out of memory")

        assert calls == [1]
