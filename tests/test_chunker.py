"""Tests for AudioChunker."""

import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from whisper_worker.chunker import AudioChunker
from whisper_worker.data_models import Segment


class TestAudioChunkerInitialization:
    """Test AudioChunker parameter validation."""

    def test_defaults(self):
        """Test default window, stride and sample rate."""
        chunker = AudioChunker()

        assert chunker.chunk_length == 30.0
        assert chunker.stride_length == 5.0
        assert chunker.sample_rate == 16000

    def test_stride_too_large(self):
        """Test strides covering the whole window are rejected."""
        with pytest.raises(ValueError, match="less than half of chunk_length"):
            AudioChunker(chunk_length=10, stride_length=5)

    def test_non_positive_chunk_length(self):
        """Test chunk_length must be positive."""
        with pytest.raises(ValueError, match="chunk_length must be positive"):
            AudioChunker(chunk_length=0)

    def test_negative_stride(self):
        """Test stride_length must be non-negative."""
        with pytest.raises(ValueError, match="stride_length must be non-negative"):
            AudioChunker(stride_length=-1)


class TestChunkAudio:
    """Test splitting audio into strided windows."""

    def test_short_audio_single_chunk(self):
        """Test audio shorter than a window is one unstrided chunk."""
        chunker = AudioChunker(sample_rate=100)
        chunks = chunker.chunk_audio(np.zeros(1000, dtype=np.float32))

        assert len(chunks) == 1
        assert chunks[0].stride_left == 0.0
        assert chunks[0].stride_right == 0.0
        assert chunks[0].end_time == 10.0

    def test_long_audio_windows(self):
        """Test 70s of audio gives three 30s windows 20s apart."""
        chunker = AudioChunker(sample_rate=100)
        chunks = chunker.chunk_audio(np.zeros(7000, dtype=np.float32))

        assert [(c.start_time, c.end_time) for c in chunks] == [
            (0.0, 30.0), (20.0, 50.0), (40.0, 70.0),
        ]
        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        assert chunks[0].stride_left == 0.0 and chunks[0].stride_right == 5.0
        assert chunks[1].stride_left == 5.0 and chunks[1].stride_right == 5.0
        assert chunks[2].stride_left == 5.0 and chunks[2].stride_right == 0.0

    def test_rejects_empty_audio(self):
        """Test empty audio raises ValueError."""
        with pytest.raises(ValueError, match="audio cannot be empty"):
            AudioChunker().chunk_audio(np.array([], dtype=np.float32))

    def test_rejects_multichannel_audio(self):
        """Test 2D audio raises ValueError."""
        with pytest.raises(ValueError, match="must be 1-dimensional"):
            AudioChunker().chunk_audio(np.zeros((2, 100), dtype=np.float32))

    @settings(max_examples=50, deadline=None)
    @given(seconds=st.integers(min_value=1, max_value=200))
    def test_new_seconds_cover_audio(self, seconds):
        """Test per-chunk new audio adds up to the whole clip."""
        chunker = AudioChunker(sample_rate=100)
        chunks = chunker.chunk_audio(np.zeros(seconds * 100, dtype=np.float32))

        assert sum(c.new_seconds for c in chunks) == pytest.approx(seconds)
        assert chunks[-1].end_time == pytest.approx(seconds)


class TestMergeSegments:
    """Test merging per-window segments."""

    def test_overlap_is_deduplicated(self):
        """Test text decoded in shared context is kept once."""
        chunker = AudioChunker(sample_rate=100)
        chunks = chunker.chunk_audio(np.zeros(7000, dtype=np.float32))
        per_chunk = [
            [Segment(0, 1.0, 5.0, "a"), Segment(1, 26.0, 29.0, "b-dup")],
            [Segment(0, 26.0, 29.0, "b"), Segment(1, 46.0, 49.0, "c-dup")],
            [Segment(0, 46.0, 49.0, "c"), Segment(1, 60.0, 65.0, "d")],
        ]

        merged = chunker.merge_segments(per_chunk, chunks)

        assert [s.text for s in merged] == ["a", "b", "c", "d"]
        assert [s.id for s in merged] == [0, 1, 2, 3]

    def test_single_chunk_keeps_everything(self):
        """Test one window keeps all its segments."""
        chunker = AudioChunker(sample_rate=100)
        chunks = chunker.chunk_audio(np.zeros(500, dtype=np.float32))
        segments = [Segment(5, 0.0, 1.0, "x"), Segment(9, 2.0, None, "y")]

        merged = chunker.merge_segments([segments], chunks)

        assert [s.text for s in merged] == ["x", "y"]
        assert [s.id for s in merged] == [0, 1]

    def test_mismatched_lengths(self):
        """Test segment lists must line up with chunks."""
        chunker = AudioChunker(sample_rate=100)
        chunks = chunker.chunk_audio(np.zeros(7000, dtype=np.float32))

        with pytest.raises(ValueError, match="got segments for 1 chunks"):
            chunker.merge_segments([[]], chunks)
