"""Telemetry and metrics utilities.

Provides a JSONL event logger for proxy calls, in-memory counters per
action and per error code, and a Prometheus-style text exposition.
"""
from __future__ import annotations
import os
import json
import time
from threading import Lock
from typing import Dict, Any

LOG_PATH = os.environ.get("CLARITY_LOG", "logs/events.jsonl")

_counters: Dict[str, float] = {
    "requests_total": 0,
    "errors_total": 0,
    "upstream_calls_total": 0,
    "upstream_latency_ms_sum": 0.0,
}
_lock = Lock()

# Log event to JSONL

def log_event(event: Dict[str, Any]) -> None:
    event["ts"] = int(time.time() * 1000)
    with _lock:
        log_dir = os.path.dirname(LOG_PATH)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        with open(LOG_PATH, "a", encoding="utf-8") as f:
            f.write(json.dumps(event, ensure_ascii=False) + "\n")

# Increment counter

def inc(key: str, amt: int = 1) -> None:
    with _lock:
        _counters[key] = _counters.get(key, 0) + amt

# Record one upstream call

def add_upstream_latency(ms: float) -> None:
    with _lock:
        _counters["upstream_calls_total"] += 1
        _counters["upstream_latency_ms_sum"] += ms

# Stats summary

def stats() -> Dict[str, Any]:
    with _lock:
        counters = dict(_counters)
    calls = counters.get("upstream_calls_total", 0) or 1
    counters["avg_upstream_latency_ms"] = round(counters.get("upstream_latency_ms_sum", 0.0) / calls, 2)
    return counters


def reset() -> None:
    with _lock:
        for k in list(_counters):
            _counters[k] = 0.0 if k.endswith("_sum") else 0

# Prometheus text exposition

def prometheus_text() -> str:
    lines = []
    for key, value in sorted(stats().items()):
        lines.append(f"clarity_{key} {value}")
    return "\n".join(lines) + "\n"
