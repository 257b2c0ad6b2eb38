"""
Metrics reporting seam.

Services receive a reporter instead of touching a global registry. The
default implementation keeps in-process counters and logs each event.
"""

from __future__ import annotations

from collections import Counter
from typing import Protocol

from amenities.logging_config import logger


class MetricsReporter(Protocol):
    def increment(self, name: str, value: int = 1, **labels: str) -> None: ...

    def observe(self, name: str, value: float, **labels: str) -> None: ...


def _key(name: str, labels: dict) -> str:
    if not labels:
        return name
    rendered = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
    return f"{name}{{{rendered}}}"


class LoggingMetrics:
    """Counts events in memory and mirrors them to the debug log."""

    def __init__(self):
        self.counters: Counter[str] = Counter()
        self.observations: dict[str, list[float]] = {}

    def increment(self, name: str, value: int = 1, **labels: str) -> None:
        key = _key(name, labels)
        self.counters[key] += value
        logger.debug(f"metric {key} +{value}")

    def observe(self, name: str, value: float, **labels: str) -> None:
        key = _key(name, labels)
        self.observations.setdefault(key, []).append(value)
        logger.debug(f"metric {key} observed {value:.3f}")

    def count(self, name: str, **labels: str) -> int:
        return self.counters.get(_key(name, labels), 0)
