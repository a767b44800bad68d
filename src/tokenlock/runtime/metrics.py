# src/tokenlock/runtime/metrics.py
from __future__ import annotations

import os
import threading
import time
from typing import Dict


_lock = threading.Lock()
_counters: Dict[str, int] = {}
_gauges: Dict[str, int] = {}
_started_ms = int(time.time() * 1000)


def metrics_enabled() -> bool:
    v = (os.environ.get("TOKENLOCK_METRICS_ENABLED") or "").strip().lower()
    return v in {"1", "true", "yes", "y", "on"}


def _clean(name: str) -> str:
    return str(name or "").strip().lower().replace("-", "_").replace(".", "_")


def inc_counter(name: str, value: int = 1) -> None:
    n = _clean(name)
    if not n:
        return
    with _lock:
        _counters[n] = int(_counters.get(n, 0)) + int(value)


def set_gauge(name: str, value: int) -> None:
    n = _clean(name)
    if not n:
        return
    with _lock:
        _gauges[n] = int(value)


def snapshot() -> dict:
    now = int(time.time() * 1000)
    with _lock:
        return {
            "ts_ms": now,
            "started_ms": int(_started_ms),
            "uptime_ms": now - int(_started_ms),
            "counters": dict(_counters),
            "gauges": dict(_gauges),
        }


def reset() -> None:
    with _lock:
        _counters.clear()
        _gauges.clear()


def format_prometheus(prefix: str = "tokenlock_") -> str:
    """Prometheus exposition text; integer counters and gauges only."""
    pre = str(prefix or "").strip() or "tokenlock_"
    snap = snapshot()
    lines: list[str] = [f"{pre}uptime_ms {int(snap['uptime_ms'])}"]

    for name, v in sorted(snap["counters"].items()):
        lines.append(f"# TYPE {pre}{name} counter")
        lines.append(f"{pre}{name} {int(v)}")

    for name, v in sorted(snap["gauges"].items()):
        lines.append(f"# TYPE {pre}{name} gauge")
        lines.append(f"{pre}{name} {int(v)}")

    return "\n".join(lines) + "\n"
