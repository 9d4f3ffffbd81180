"""Audio chunking for windowed decoding.

This module splits long audio into fixed-length windows that share
``stride_length`` seconds of context with their neighbours, and merges the
per-window segments back into one timeline.
"""

from typing import List

import numpy as np

from .data_models import AudioChunk, Segment


class AudioChunker:
    """Splits audio into overlapping decode windows.

    Consecutive windows advance by ``chunk_length - 2 * stride_length``
    seconds, so every inner boundary has ``stride_length`` seconds of
    context on both sides. Only the un-strided middle of each window is
    trusted when merging.

    Attributes:
        chunk_length: Duration of each window in seconds
        stride_length: Context shared with each neighbour in seconds
        sample_rate: Audio sample rate in Hz
    """

    def __init__(
        self,
        chunk_length: float = 30.0,
        stride_length: float = 5.0,
        sample_rate: int = 16000,
    ):
        """Initialize audio chunker.

        Args:
            chunk_length: Window duration in seconds (default: 30)
            stride_length: Shared context per side in seconds (default: 5)
            sample_rate: Audio sample rate in Hz (default: 16000)

        Raises:
            ValueError: If the windows would not advance or values are
                non-positive
        """
        if chunk_length <= 0:
            raise ValueError(
                f"chunk_length must be positive, got {chunk_length}"
            )
        if stride_length < 0:
            raise ValueError(
                f"stride_length must be non-negative, got {stride_length}"
            )
        if 2 * stride_length >= chunk_length:
            raise ValueError(
                f"stride_length ({stride_length}s) must be less than half of "
                f"chunk_length ({chunk_length}s)"
            )
        if sample_rate <= 0:
            raise ValueError(
                f"sample_rate must be positive, got {sample_rate}"
            )

        self.chunk_length = chunk_length
        self.stride_length = stride_length
        self.sample_rate = sample_rate

    def chunk_audio(self, audio: np.ndarray) -> List[AudioChunk]:
        """Split audio into strided windows.

        Audio no longer than one window comes back as a single chunk with
        no strides.

        Args:
            audio: Audio samples as numpy array (1D)

        Returns:
            List of AudioChunk objects in time order

        Raises:
            ValueError: If audio is empty or has invalid shape
        """
        if audio.ndim != 1:
            raise ValueError(
                f"audio must be 1-dimensional, got shape {audio.shape}"
            )
        if len(audio) == 0:
            raise ValueError("audio cannot be empty")

        chunk_samples = max(1, int(self.chunk_length * self.sample_rate))
        stride_samples = int(self.stride_length * self.sample_rate)
        step_samples = max(1, chunk_samples - 2 * stride_samples)

        chunks = []
        start_sample = 0

        while True:
            end_sample = min(start_sample + chunk_samples, len(audio))
            is_first = start_sample == 0
            is_last = end_sample >= len(audio)

            chunks.append(
                AudioChunk(
                    audio=audio[start_sample:end_sample],
                    start_time=start_sample / self.sample_rate,
                    end_time=end_sample / self.sample_rate,
                    chunk_index=len(chunks),
                    stride_left=0.0 if is_first else stride_samples / self.sample_rate,
                    stride_right=0.0 if is_last else stride_samples / self.sample_rate,
                )
            )

            if is_last:
                break
            start_sample += step_samples

        return chunks

    def merge_segments(
        self,
        chunk_segments: List[List[Segment]],
        chunks: List[AudioChunk],
    ) -> List[Segment]:
        """Merge segments decoded from overlapping windows.

        Each window only keeps the segments that start inside its trusted
        region (the window minus its strides), so text decoded twice in
        the shared context is emitted once.

        Args:
            chunk_segments: Segments per window, in the same order as
                ``chunks``, timestamps already on the full-audio timeline
            chunks: Windows that produced the segments

        Returns:
            Deduplicated segments in time order with sequential ids

        Raises:
            ValueError: If the two lists do not line up
        """
        if len(chunk_segments) != len(chunks):
            raise ValueError(
                f"got segments for {len(chunk_segments)} chunks, "
                f"expected {len(chunks)}"
            )

        if len(chunks) == 1:
            merged = list(chunk_segments[0])
        else:
            merged = []
            for i, (chunk, segments) in enumerate(zip(chunks, chunk_segments)):
                lower = chunk.start_time + chunk.stride_left if i > 0 else float("-inf")
                if i < len(chunks) - 1:
                    upper = chunk.end_time - chunk.stride_right
                else:
                    upper = float("inf")
                merged.extend(s for s in segments if lower <= s.start < upper)
            merged.sort(key=lambda s: s.start)

        for idx, segment in enumerate(merged):
            segment.id = idx

        return merged
