"""
Counters and gauges for the sync client.

Every metric is declared below with its help text; an undeclared name raises
KeyError. Exposed as Prometheus text on ``/metrics`` and as a compact summary
in the ``/health`` body.
"""

from __future__ import annotations

import time
from typing import Any

PREFIX = "todo_sync"

COUNTERS = {
    "fetches_total": "Full collection fetches attempted",
    "fetch_failures_total": "Collection fetches that failed",
    "mutations_total": "Create, update and delete calls sent",
    "mutation_failures_total": "Create, update and delete calls that failed",
    "change_events_total": "Change feed events received",
    "feed_connects_total": "Successful change feed connections",
}

GAUGES = {
    "todos_cached": "Records in the cached snapshot",
    "last_fetch_timestamp_seconds": "Unix time of the last successful fetch",
}


class MetricsCollector:
    def __init__(self) -> None:
        self._counters: dict[str, int] = dict.fromkeys(COUNTERS, 0)
        self._gauges: dict[str, float] = dict.fromkeys(GAUGES, 0)
        self._start_time = time.time()

    def inc(self, name: str, value: int = 1) -> None:
        if name not in self._counters:
            raise KeyError(f"Unknown counter: {name}")
        self._counters[name] += value

    def set_gauge(self, name: str, value: float) -> None:
        if name not in self._gauges:
            raise KeyError(f"Unknown gauge: {name}")
        self._gauges[name] = value

    def get(self, name: str) -> int | float:
        if name in self._gauges:
            return self._gauges[name]
        return self._counters[name]

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self._start_time

    def summary(self) -> dict[str, Any]:
        """Counters without the suffix, plus the age of the cached snapshot."""
        last_fetch = self._gauges["last_fetch_timestamp_seconds"]
        body: dict[str, Any] = {
            name.removesuffix("_total"): value for name, value in self._counters.items()
        }
        body["last_fetch_age_seconds"] = round(time.time() - last_fetch, 1) if last_fetch else None
        body["uptime_seconds"] = round(self.uptime_seconds, 1)
        return body

    def to_prometheus(self) -> str:
        lines = []
        for kind, values, helps in (
            ("counter", self._counters, COUNTERS),
            ("gauge", self._gauges, GAUGES),
        ):
            for name, value in values.items():
                full = f"{PREFIX}_{name}"
                lines.append(f"# HELP {full} {helps[name]}")
                lines.append(f"# TYPE {full} {kind}")
                lines.append(f"{full} {value}")
        lines.append(f"# TYPE {PREFIX}_uptime_seconds gauge")
        lines.append(f"{PREFIX}_uptime_seconds {self.uptime_seconds:.1f}")
        return "\n".join(lines) + "\n"
