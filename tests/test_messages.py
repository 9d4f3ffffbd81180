"""Tests for the worker message protocol."""

import numpy as np
import pytest

from whisper_worker.errors import NoAudioError, UnknownMessageError
from whisper_worker.messages import (
    Alive,
    CancelCommand,
    Error,
    LoadCommand,
    Profile,
    Progress,
    Ready,
    Result,
    TranscribeCommand,
    parse_command,
)


class TestParseCommand:
    """Test turning host dicts into commands."""

    def test_load(self):
        """Test load messages keep model and backend."""
        command = parse_command({"type": "load", "model": "m", "backend": "cpu"})

        assert command == LoadCommand(model="m", backend="cpu")

    def test_transcribe_fields(self):
        """Test camelCase fields map onto the command."""
        command = parse_command({
            "type": "transcribe",
            "jobId": "job-1",
            "audio": [0.1, 0.2],
            "sampleRate": 22050.0,
            "forceChunking": True,
            "stageTiming": True,
            "decodeMs": 3.5,
        })

        assert isinstance(command, TranscribeCommand)
        assert command.job_id == "job-1"
        assert command.sample_rate == 22050
        assert command.force_chunking is True
        assert command.wants_stage_timing
        assert command.decode_ms == 3.5

    def test_transcribe_loose_values_ignored(self):
        """Test non-bool and non-numeric options fall back to defaults."""
        command = parse_command({
            "type": "transcribe",
            "audio": [0.1],
            "sampleRate": "fast",
            "forceChunking": "yes",
            "decodeMs": True,
        })

        assert command.sample_rate is None
        assert command.force_chunking is None
        assert command.decode_ms is None
        assert not command.wants_stage_timing

    def test_debug_profile_implies_stage_timing(self):
        """Test the debug flag also requests stage timing."""
        command = parse_command({"type": "transcribe", "debugProfile": True})

        assert command.wants_stage_timing

    def test_cancel(self):
        """Test cancel messages need a job id."""
        assert parse_command({"type": "cancel", "jobId": "j"}) == CancelCommand("j")
        with pytest.raises(UnknownMessageError, match="cancel requires a jobId"):
            parse_command({"type": "cancel"})

    @pytest.mark.parametrize("message", [{"type": "shutdown"}, {}, {"type": None}])
    def test_unknown_type(self, message):
        """Test unknown types are rejected."""
        with pytest.raises(UnknownMessageError, match="Unknown message type"):
            parse_command(message)

    def test_not_a_dict(self):
        """Test non-dict messages are rejected."""
        with pytest.raises(UnknownMessageError, match="message must be dict, got str"):
            parse_command("load")


class TestTranscribeSamples:
    """Test audio validation on transcribe commands."""

    def test_float_array(self):
        """Test sample lists become float32 arrays."""
        samples = TranscribeCommand(audio=[0.0, 0.5, -0.5]).samples()

        assert samples.dtype == np.float32
        assert samples.tolist() == [0.0, 0.5, -0.5]

    def test_raw_buffer(self):
        """Test raw float32 bytes are decoded."""
        buffer = np.array([0.25, -0.25], dtype=np.float32).tobytes()

        samples = TranscribeCommand(audio_buffer=buffer).samples()

        assert samples.tolist() == [0.25, -0.25]

    @pytest.mark.parametrize("command, match", [
        (TranscribeCommand(), "No audio provided"),
        (TranscribeCommand(audio=[]), "No audio provided"),
        (TranscribeCommand(audio=[0.1], audio_buffer=b"\x00" * 4), "not both"),
        (TranscribeCommand(audio_buffer=b"\x00" * 6), "multiple of 4 bytes"),
        (TranscribeCommand(audio=[[0.1, 0.2]]), "must be 1-dimensional"),
        (TranscribeCommand(audio=[0.1], sample_rate=0), "sample_rate must be positive"),
    ])
    def test_invalid_audio(self, command, match):
        """Test unusable audio raises NoAudioError."""
        with pytest.raises(NoAudioError, match=match):
            command.samples()


class TestEvents:
    """Test outbound event rendering."""

    def test_event_without_data(self):
        """Test events without payload carry only a type."""
        assert Ready().to_message() == {"type": "ready"}

    def test_alive(self):
        assert Alive(ts=12.5).to_message() == {"type": "alive", "data": {"ts": 12.5}}

    def test_progress(self):
        """Test progress uses the host's key names."""
        assert Progress("job-1", 42.0).to_message() == {
            "type": "progress",
            "data": {"jobId": "job-1", "percent": 42.0},
        }

    def test_profile(self):
        data = Profile("job-1", dispatches=3, max_dispatch_ms=1.5).to_message()["data"]

        assert data == {"jobId": "job-1", "dispatches": 3, "maxDispatchMs": 1.5}

    def test_result_text_not_overridden(self):
        """Test engine fields never replace the resolved text or job id."""
        event = Result(
            job_id="job-1",
            text="resolved",
            metrics={"tokens": 1},
            extra={"text": "raw", "jobId": "other", "chunks": []},
        )

        data = event.to_message()["data"]

        assert data["text"] == "resolved"
        assert data["jobId"] == "job-1"
        assert data["chunks"] == []

    def test_error_metrics_optional(self):
        """Test error events only carry metrics when there are some."""
        assert Error("boom").to_message() == {
            "type": "error",
            "data": {"message": "boom", "jobId": None},
        }
        assert Error("boom", "j", {"tokens": None}).to_message()["data"]["metrics"] == {
            "tokens": None,
        }
