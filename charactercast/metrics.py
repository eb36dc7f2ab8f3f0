"""
In-memory pipeline metrics.

  - Counters: stage starts / successes / failures, submissions, detached launches
  - Latency: last MAX_SAMPLES durations per stage
  - Gauges: in-flight detached video tasks, start time
  - Recent errors: last MAX_ERRORS stage failures

Everything resets on restart; the job table is the durable record.
"""

import time
import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Dict, List

_lock = threading.Lock()

_counters: Dict[str, int] = defaultdict(int)

_latency_samples: Dict[str, List[float]] = defaultdict(list)
MAX_SAMPLES = 100

_gauges: Dict[str, float] = defaultdict(float)

_recent_errors: List[dict] = []
MAX_ERRORS = 50


def inc_counter(name: str, amount: int = 1):
    """Increment a counter (e.g. 'stage.video.failed')."""
    with _lock:
        _counters[name] += amount


def set_gauge(name: str, value: float):
    with _lock:
        _gauges[name] = value


def record_latency(stage: str, duration_ms: float):
    with _lock:
        samples = _latency_samples[stage]
        samples.append(duration_ms)
        if len(samples) > MAX_SAMPLES:
            del samples[:-MAX_SAMPLES]


def record_error(stage: str, job_id: str, error_kind: str, message: str):
    with _lock:
        _recent_errors.append({
            "timestamp": time.time(),
            "stage": stage,
            "job_id": job_id,
            "kind": error_kind,
            "message": message[:300],
        })
        if len(_recent_errors) > MAX_ERRORS:
            _recent_errors.pop(0)


@contextmanager
def stage_timer(stage: str):
    """Count a stage run and record its latency, success or not."""
    inc_counter(f"stage.{stage}.started")
    start = time.perf_counter()
    try:
        yield
    except Exception:
        inc_counter(f"stage.{stage}.failed")
        raise
    else:
        inc_counter(f"stage.{stage}.succeeded")
    finally:
        record_latency(stage, (time.perf_counter() - start) * 1000)


def reset():
    """Clear everything. Tests only."""
    with _lock:
        _counters.clear()
        _latency_samples.clear()
        _gauges.clear()
        _recent_errors.clear()


def get_snapshot() -> dict:
    now = time.time()
    with _lock:
        latency_stats = {}
        for stage, samples in _latency_samples.items():
            if not samples:
                continue
            ordered = sorted(samples)
            n = len(ordered)
            latency_stats[stage] = {
                "p50": ordered[n // 2],
                "p95": ordered[int(n * 0.95)] if n >= 20 else ordered[-1],
                "avg": sum(ordered) / n,
                "count": n,
            }

        return {
            "timestamp": now,
            "counters": dict(_counters),
            "gauges": dict(_gauges),
            "latency_ms": latency_stats,
            "recent_errors": list(_recent_errors[-10:]),
            "uptime_seconds": now - _gauges.get("start_time", now),
        }
