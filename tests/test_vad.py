"""Tests for speech onset detection."""

import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from hypothesis.extra.numpy import arrays

from conftest import SAMPLE_RATE, silence, tone
from whisper_worker.vad import detect_speech_start, quantile, window_rms


class TestWindowRms:
    """Test windowed RMS energy."""

    def test_constant_signal(self):
        """Test RMS of a constant signal equals its magnitude."""
        rms = window_rms(np.full(1000, 0.5, dtype=np.float32), window=100, hop=50)

        assert len(rms) == 20
        assert np.allclose(rms, 0.5)

    def test_trailing_windows_are_shortened(self):
        """Test windows running past the end are averaged over what is there."""
        audio = np.concatenate([np.zeros(90), np.ones(10)]).astype(np.float32)
        rms = window_rms(audio, window=50, hop=50)

        assert len(rms) == 2
        assert rms[0] == 0.0
        assert rms[1] == pytest.approx(np.sqrt(10 / 50))

    def test_empty_audio(self):
        """Test empty audio yields no windows."""
        assert window_rms(np.array([], dtype=np.float32), 10, 5).size == 0

    def test_invalid_window(self):
        """Test non-positive window raises ValueError."""
        with pytest.raises(ValueError, match="window and hop must be positive"):
            window_rms(np.ones(10), 0, 5)


class TestQuantile:
    """Test nearest-rank quantiles."""

    def test_nearest_rank(self):
        """Test index is floor(q * (n - 1)) of the sorted values."""
        values = np.array([5.0, 1.0, 4.0, 2.0, 3.0])

        assert quantile(values, 0.2) == 1.0
        assert quantile(values, 0.5) == 3.0
        assert quantile(values, 1.0) == 5.0

    def test_empty(self):
        """Test empty input yields 0."""
        assert quantile(np.array([]), 0.5) == 0.0


class TestDetectSpeechStart:
    """Test the adaptive-threshold onset detector."""

    def test_empty_audio_returns_none(self):
        """Test empty audio has no onset."""
        assert detect_speech_start(np.array([], dtype=np.float32), SAMPLE_RATE) is None

    def test_invalid_sample_rate_returns_none(self):
        """Test a zero sample rate has no onset."""
        assert detect_speech_start(tone(1.0), 0) is None

    def test_digital_silence_returns_none(self):
        """Test all-zero audio never clears the minimum threshold."""
        audio = np.zeros(SAMPLE_RATE * 3, dtype=np.float32)

        assert detect_speech_start(audio, SAMPLE_RATE) is None

    def test_constant_level_returns_none(self):
        """Test audio with no louder region has no onset."""
        audio = np.full(SAMPLE_RATE * 3, 0.25, dtype=np.float32)

        assert detect_speech_start(audio, SAMPLE_RATE) is None

    def test_speech_from_first_window(self):
        """Test speech from the start yields onset 0."""
        audio = np.concatenate([tone(3.0), silence(3.0)])

        onset = detect_speech_start(audio, SAMPLE_RATE)

        assert onset is not None
        assert onset.start_sample == 0
        assert onset.start_seconds == 0.0

    def test_silence_then_tone(self):
        """Test onset lands about one second before the tone."""
        audio = np.concatenate([silence(5.0), tone(5.0)])

        onset = detect_speech_start(audio, SAMPLE_RATE)

        assert onset is not None
        # within one window of 5s minus the 1s pad
        assert onset.start_seconds == pytest.approx(4.0, abs=0.05)
        assert onset.start_sample == int(round(onset.start_seconds * SAMPLE_RATE))
        assert onset.threshold >= onset.noise_floor * 3
        assert onset.threshold >= onset.median * 0.6

    def test_pad_is_configurable(self):
        """Test a zero pad puts the onset at the tone."""
        audio = np.concatenate([silence(5.0), tone(5.0)])

        onset = detect_speech_start(audio, SAMPLE_RATE, pad_seconds=0)

        assert onset.start_seconds == pytest.approx(5.0, abs=0.05)

    @settings(max_examples=50, deadline=None)
    @given(
        audio=arrays(
            np.float32,
            st.integers(min_value=1, max_value=4000),
            elements=st.floats(-1.0, 1.0, width=32),
        ),
        sample_rate=st.sampled_from([8000, 16000, 44100]),
    )
    def test_onset_is_inside_audio(self, audio, sample_rate):
        """Test any detected onset is a valid sample offset."""
        onset = detect_speech_start(audio, sample_rate)

        if onset is not None:
            assert 0 <= onset.start_sample < len(audio)
            assert onset.start_seconds == pytest.approx(onset.start_sample / sample_rate)
