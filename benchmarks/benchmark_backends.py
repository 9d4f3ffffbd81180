"""Benchmark accelerator vs CPU transcription.

This script runs the worker on synthetic clips of various durations, once
on the best available accelerator and once with the CPU backend forced,
and compares wall-clock time per clip.
"""

import argparse
import sys
import time
from pathlib import Path

import numpy as np

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from whisper_worker import TranscriptionWorker
from whisper_worker.config import WorkerConfig


def generate_test_audio(duration: float, sample_rate: int = 16000) -> np.ndarray:
    """Generate synthetic audio for testing.

    A second of near silence precedes the signal so the speech trimmer has
    something to cut.
    """
    rng = np.random.default_rng(0)
    lead = 1e-4 * rng.standard_normal(sample_rate)
    body = 0.1 * rng.standard_normal(int(duration * sample_rate))
    return np.concatenate([lead, body]).astype(np.float32)


def wait_for(worker, *kinds):
    while True:
        event = worker.outbox.get()
        if event["type"] in kinds:
            return event


def benchmark_backend(
    model: str,
    backend,
    audio_durations: list,
    num_runs: int = 3,
):
    """Benchmark transcription on one backend.

    Args:
        model: Model identifier
        backend: "cpu" to force the CPU backend, None for auto-selection
        audio_durations: List of audio durations to test
        num_runs: Number of runs per duration for averaging

    Returns:
        List of result dicts, or None if the model could not be loaded
    """
    label = "CPU (forced)" if backend == "cpu" else "auto"
    print(f"\n{'='*60}")
    print(f"Benchmarking {label}")
    print(f"{'='*60}\n")

    worker = TranscriptionWorker(WorkerConfig(default_model=model))
    worker.start()
    worker.post({"type": "load", "model": model, "backend": backend})
    event = wait_for(worker, "ready", "error")
    if event["type"] == "error":
        print(f"Failed to load model: {event['data']['message']}")
        worker.stop()
        return None

    results = []
    for duration in audio_durations:
        print(f"Testing {duration}s audio...")
        audio = generate_test_audio(duration)

        run_times = []
        metrics = None
        # first run warms up
        for run in range(num_runs + 1):
            start_time = time.time()
            worker.post({
                "type": "transcribe",
                "jobId": f"{duration}-{run}",
                "audio": audio,
                "sampleRate": 16000,
                "model": model,
                "backend": backend,
            })
            event = wait_for(worker, "result", "error")
            elapsed = time.time() - start_time
            if event["type"] == "error":
                print(f"  Run {run} failed: {event['data']['message']}")
                continue
            if run > 0:
                run_times.append(elapsed)
                metrics = event["data"]["metrics"]

        if not run_times:
            print(f"  All runs failed for {duration}s audio")
            continue

        avg_time = np.mean(run_times)
        std_time = np.std(run_times)
        result = {
            "duration": duration,
            "avg_time": avg_time,
            "std_time": std_time,
            "rtf": avg_time / duration,
            "backend": metrics["backend"],
            "chunked": metrics["chunk_length_s"] is not None,
        }
        results.append(result)

        print(f"  Backend: {result['backend']} ({metrics['dtype']})")
        print(f"  Avg time: {avg_time:.3f}s ± {std_time:.3f}s")
        print(f"  RTF: {result['rtf']:.3f}")
        print(f"  Chunked: {result['chunked']}")
        print()

    worker.stop()
    return results


def compare_results(cpu_results, auto_results):
    """Compare forced-CPU and auto-selected results."""
    if not cpu_results or not auto_results:
        print("Cannot compare - missing results")
        return

    print(f"\n{'='*60}")
    print("CPU vs auto-selected backend")
    print(f"{'='*60}\n")

    print(f"{'Duration':<12} {'CPU Time':<12} {'Auto Time':<12} {'Speedup':<12} {'Backend':<12}")
    print("-" * 60)

    for cpu_res, auto_res in zip(cpu_results, auto_results):
        if cpu_res["duration"] != auto_res["duration"]:
            continue
        speedup = cpu_res["avg_time"] / auto_res["avg_time"]
        print(
            f"{cpu_res['duration']:<12.1f} "
            f"{cpu_res['avg_time']:<12.3f} "
            f"{auto_res['avg_time']:<12.3f} "
            f"{speedup:<12.2f}x "
            f"{auto_res['backend']:<12}"
        )

    print()


def main():
    parser = argparse.ArgumentParser(description="Benchmark accelerator vs CPU backends")
    parser.add_argument(
        "--model",
        type=str,
        default="openai/whisper-tiny.en",
        help="Model identifier (default: openai/whisper-tiny.en)",
    )
    parser.add_argument(
        "--durations",
        type=float,
        nargs="+",
        default=[5.0, 10.0, 30.0, 60.0],
        help="Audio durations to test in seconds (default: 5 10 30 60)",
    )
    parser.add_argument(
        "--runs",
        type=int,
        default=3,
        help="Number of runs per duration (default: 3)",
    )
    parser.add_argument(
        "--cpu-only",
        action="store_true",
        help="Only benchmark the forced CPU backend",
    )

    args = parser.parse_args()

    print("whisper-worker backend benchmark")
    print(f"Model: {args.model}")
    print(f"Runs per duration: {args.runs}")
    print(f"Durations: {args.durations}")

    cpu_results = benchmark_backend(args.model, "cpu", args.durations, args.runs)
    auto_results = None
    if not args.cpu_only:
        auto_results = benchmark_backend(args.model, None, args.durations, args.runs)

    if cpu_results and auto_results:
        compare_results(cpu_results, auto_results)


if __name__ == "__main__":
    main()
