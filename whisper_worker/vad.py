"""Energy-based speech onset detection.

Finds the first analysis window whose energy stands well above the
recording's own noise floor so leading silence can be skipped before
inference.
"""

import logging
import math
from typing import Optional

import numpy as np

from .data_models import SpeechOnset

logger = logging.getLogger(__name__)


def window_rms(audio: np.ndarray, window: int, hop: int) -> np.ndarray:
    """Compute RMS energy of windows starting every ``hop`` samples.

    The last windows are shortened at the end of the buffer rather than
    padded.

    Args:
        audio: 1D audio samples
        window: Window size in samples
        hop: Hop size in samples

    Returns:
        Array with one RMS value per window start
    """
    if window < 1 or hop < 1:
        raise ValueError(f"window and hop must be positive, got {window}, {hop}")
    samples = np.asarray(audio, dtype=np.float64)
    if samples.size == 0:
        return np.empty(0, dtype=np.float64)

    energy = np.concatenate(([0.0], np.cumsum(samples * samples)))
    starts = np.arange(0, samples.size, hop)
    ends = np.minimum(samples.size, starts + window)
    sums = energy[ends] - energy[starts]
    # cumsum rounding can leave tiny negatives on silent stretches
    return np.sqrt(np.maximum(sums, 0.0) / np.maximum(1, ends - starts))


def quantile(values: np.ndarray, q: float) -> float:
    """Nearest-rank quantile on the sorted values (0.0 for empty input)."""
    if len(values) == 0:
        return 0.0
    ordered = np.sort(values)
    idx = min(len(ordered) - 1, max(0, math.floor(q * (len(ordered) - 1))))
    return float(ordered[idx])


def detect_speech_start(
    audio: np.ndarray,
    sample_rate: int,
    window_ms: float = 30,
    hop_ms: float = 15,
    pad_seconds: float = 1,
    min_threshold: float = 1e-5,
) -> Optional[SpeechOnset]:
    """Estimate where speech begins in ``audio``.

    The threshold adapts to the recording: it is the largest of
    ``min_threshold``, three times the noise floor (20th percentile of
    window RMS) and 0.6 times the median window RMS. The onset is the first
    window whose RMS, averaged with the next window's, exceeds it.
    ``pad_seconds`` of audio is kept in front of the onset.

    Args:
        audio: 1D float audio samples
        sample_rate: Sample rate in Hz
        window_ms: Analysis window length in milliseconds
        hop_ms: Hop between windows in milliseconds
        pad_seconds: Audio to keep before the detected onset
        min_threshold: Lowest RMS that can count as speech

    Returns:
        SpeechOnset, or None if the audio is empty or no window clears the
        threshold (callers should then leave the audio untouched)
    """
    if audio is None or len(audio) == 0 or not sample_rate or sample_rate <= 0:
        return None

    window = max(1, math.floor(sample_rate * (window_ms / 1000)))
    hop = max(1, math.floor(sample_rate * (hop_ms / 1000)))

    rms = window_rms(audio, window, hop)
    if rms.size == 0:
        return None

    noise_floor = quantile(rms, 0.2)
    median = quantile(rms, 0.5)
    threshold = max(min_threshold, noise_floor * 3, median * 0.6)

    following = np.append(rms[1:], rms[-1])
    above = np.flatnonzero((rms + following) / 2 > threshold)
    if above.size == 0:
        logger.debug(f"No speech onset above threshold {threshold:.6f}")
        return None

    speech_window = int(above[0])
    start_sample = max(0, speech_window * hop - math.floor(sample_rate * pad_seconds))
    logger.debug(
        f"Speech onset at window {speech_window} "
        f"(threshold={threshold:.6f}, noise_floor={noise_floor:.6f}, "
        f"median={median:.6f}, start={start_sample / sample_rate:.2f}s)"
    )
    return SpeechOnset(
        start_sample=start_sample,
        start_seconds=start_sample / sample_rate,
        threshold=threshold,
        noise_floor=noise_floor,
        median=median,
    )
