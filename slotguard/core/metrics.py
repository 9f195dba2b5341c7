"""
Metrics collection and Prometheus-compatible exposition.

Counts cache traffic, denials, guard outcomes and store outages for the
access engine.
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Any

PREFIX = "slotguard_"


def _series(name: str, labels: dict[str, str] | None) -> str:
    if not labels:
        return f"{PREFIX}{name}"
    rendered = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
    return f"{PREFIX}{name}{{{rendered}}}"


class MetricsCollector:
    """
    Counters and gauges with Prometheus text export.

    Series are keyed by metric name plus an optional label set, e.g.
    ``inc("guard_rejections_total", code="LAST_MANAGER")``.
    """

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._gauges: dict[str, float] = {}
        self._start_time = time.time()

    def inc(self, name: str, value: int = 1, **labels: str) -> None:
        """Increment a counter."""
        self._counters[_series(name, labels)] += value

    def set_gauge(self, name: str, value: float, **labels: str) -> None:
        """Set a gauge value."""
        self._gauges[_series(name, labels)] = value

    def get(self, name: str, **labels: str) -> int | float:
        """Get a metric value (0 for a series never touched)."""
        full = _series(name, labels)
        if full in self._gauges:
            return self._gauges[full]
        return self._counters.get(full, 0)

    def to_prometheus(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines = []
        typed: set[str] = set()
        for kind, series in (("counter", self._counters), ("gauge", self._gauges)):
            for name, value in sorted(series.items()):
                base = name.split("{", 1)[0]
                if base not in typed:
                    lines.append(f"# TYPE {base} {kind}")
                    typed.add(base)
                lines.append(f"{name} {value}")
        uptime = time.time() - self._start_time
        lines.append(f"# TYPE {PREFIX}uptime_seconds gauge")
        lines.append(f"{PREFIX}uptime_seconds {uptime:.1f}")
        return "\n".join(lines) + "\n"

    def to_dict(self) -> dict[str, Any]:
        """Export metrics as a dictionary."""
        return {
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "uptime_seconds": time.time() - self._start_time,
        }
