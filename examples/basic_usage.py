"""Basic usage example for whisper-worker.

This example demonstrates:
1. Starting the worker and loading a model
2. Transcribing a clip with progress reporting
3. Forcing the CPU backend
4. Reading the metrics attached to each result
"""

import logging

import numpy as np

from whisper_worker import TranscriptionWorker

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")


def wait_for(worker, *kinds):
    """Print events until one of ``kinds`` arrives and return it."""
    while True:
        event = worker.outbox.get()
        kind = event["type"]
        data = event.get("data")
        if kind == "progress":
            print(f"  progress: {data['percent']:.0f}%")
        elif kind == "download" and data.get("status") == "progress":
            print(f"  download: {data['name']} {data['loaded']}/{data['total']}")
        elif kind == "telemetry":
            print(f"  backend={data['backend']} dtype={data['dtype']}")
        if kind in kinds:
            return event


# =============================================================================
# Example 1: Load a model
# =============================================================================
print("=" * 70)
print("Example 1: Load a model")
print("=" * 70)

worker = TranscriptionWorker()
worker.start()
wait_for(worker, "alive")

# "model" defaults to the configured model (WHISPER_WORKER_MODEL)
worker.post({"type": "load", "model": "openai/whisper-base.en"})
event = wait_for(worker, "ready", "error")
if event["type"] == "error":
    raise SystemExit(f"Loading failed: {event['data']['message']}")

# =============================================================================
# Example 2: Transcribe a clip
# =============================================================================
print("\n" + "=" * 70)
print("Example 2: Transcribe a clip")
print("=" * 70)

# Audio should be mono float32; replace with real speech.
# Two seconds of silence in front are skipped before decoding.
sample_rate = 16000
t = np.arange(sample_rate * 8) / sample_rate
audio = np.concatenate([
    np.zeros(sample_rate * 2, dtype=np.float32),
    (0.3 * np.sin(2 * np.pi * 220 * t)).astype(np.float32),
])

worker.post({"type": "transcribe", "jobId": "job-1", "audio": audio, "sampleRate": sample_rate})
event = wait_for(worker, "result", "error")
print(f"\n{event['type']}: {event['data'].get('text', event['data'].get('message'))!r}")

metrics = event["data"]["metrics"]
print(f"  trimmed leading silence: {metrics['vad_trimmed']}")
print(f"  speech starts at: {metrics['speech_start_s']}")
print(f"  tokens: {metrics['tokens']}, elapsed: {metrics['elapsed_ms']}ms")

# =============================================================================
# Example 3: Force the CPU backend
# =============================================================================
print("\n" + "=" * 70)
print("Example 3: Force the CPU backend")
print("=" * 70)

worker.post({"type": "load", "model": "openai/whisper-tiny.en", "backend": "cpu"})
wait_for(worker, "ready", "error")

# Long clips are decoded in 30s windows; forceChunking overrides the choice
worker.post({
    "type": "transcribe",
    "jobId": "job-2",
    "audio": np.tile(audio, 5),
    "sampleRate": sample_rate,
    "model": "openai/whisper-tiny.en",
    "forceChunking": True,
    "stageTiming": True,
})
event = wait_for(worker, "result", "error")
print(f"\nstage timing: {event['data'].get('metrics', {}).get('stage_timing_ms')}")

worker.stop()
