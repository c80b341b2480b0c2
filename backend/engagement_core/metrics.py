"""
Metrics Collector
==================
In-memory counters and bounded histograms for the admission and
generation paths. No external dependency (Prometheus, Datadog) required;
`summary()` feeds the /metrics endpoint.
"""

import threading
import time
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class Counter:
    """Labelled event counter. Thread-safe: handlers may run in the threadpool."""

    def __init__(self, name: str):
        self.name = name
        self._counts: Dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    def inc(self, label: str, amount: int = 1):
        with self._lock:
            self._counts[label] += amount

    @property
    def value(self) -> int:
        with self._lock:
            return sum(self._counts.values())

    def by_label(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def get(self, label: str) -> int:
        with self._lock:
            return self._counts.get(label, 0)

    def to_dict(self) -> dict:
        counts = self.by_label()
        return {"name": self.name, "total": sum(counts.values()), "by_label": counts}


class Histogram:
    """Sliding sample of the last `max_samples` observations."""

    def __init__(self, name: str, max_samples: int = 500):
        self.name = name
        self._samples: deque = deque(maxlen=max_samples)

    def observe(self, value: float):
        self._samples.append(float(value))

    @property
    def count(self) -> int:
        return len(self._samples)

    def percentile(self, pct: float) -> float:
        ordered = sorted(self._samples)
        if not ordered:
            return 0.0
        rank = min(len(ordered) - 1, int(len(ordered) * pct / 100))
        return ordered[rank]

    def mean(self) -> float:
        samples = list(self._samples)
        return sum(samples) / len(samples) if samples else 0.0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "count": self.count,
            "avg": round(self.mean(), 3),
            "p50": round(self.percentile(50), 3),
            "p95": round(self.percentile(95), 3),
        }


class MetricsCollector:
    """
    Central metrics for the engagement core.

    Metrics tracked:
    - admissions_total          (Counter)   — by result: admitted | limited
    - generations_total         (Counter)   — by provenance: external | fallback
    - fallback_reasons          (Counter)   — circuit_open | retries_exhausted | ...
    - risk_assessments_total    (Counter)   — by label
    - generation_latency_ms     (Histogram)
    - generation_attempts       (Histogram)
    """

    def __init__(self, buffer_size: int = 1000):
        self._start_time = time.monotonic()

        self.admissions = Counter("admissions_total")
        self.generations = Counter("generations_total")
        self.fallback_reasons = Counter("fallback_reasons")
        self.risk_assessments = Counter("risk_assessments_total")

        self.generation_latency = Histogram("generation_latency_ms", buffer_size)
        self.generation_attempts = Histogram("generation_attempts", buffer_size)

        self._recent_generations: deque = deque(maxlen=50)

    def record_admission(self, limited: bool):
        self.admissions.inc("limited" if limited else "admitted")

    def record_risk(self, label: str, count: int = 1):
        self.risk_assessments.inc(label, count)

    def record_generation(
        self,
        provenance: str,
        attempts: int,
        latency_ms: float,
        fallback_reason: Optional[str] = None,
        learner_id: Optional[int] = None,
    ):
        self.generations.inc(provenance)
        if fallback_reason:
            self.fallback_reasons.inc(fallback_reason)
        self.generation_attempts.observe(attempts)
        self.generation_latency.observe(latency_ms)
        self._recent_generations.append({
            "learner_id": learner_id,
            "provenance": provenance,
            "attempts": attempts,
            "fallback_reason": fallback_reason,
            "latency_ms": round(latency_ms, 1),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self._start_time

    @property
    def fallback_rate(self) -> float:
        total = self.generations.value
        if total == 0:
            return 0.0
        return self.generations.get("fallback") / total

    def summary(self) -> Dict[str, Any]:
        """Full metrics summary for /metrics endpoint."""
        return {
            "uptime_seconds": round(self.uptime_seconds, 1),
            "admissions": self.admissions.to_dict(),
            "generations": self.generations.to_dict(),
            "fallback_reasons": self.fallback_reasons.to_dict(),
            "risk_assessments": self.risk_assessments.to_dict(),
            "generation_latency": self.generation_latency.to_dict(),
            "generation_attempts": self.generation_attempts.to_dict(),
            "recent_generations": list(self._recent_generations)[-10:],
        }

    def health_summary(self) -> Dict[str, Any]:
        """Compact summary for health endpoint."""
        return {
            "uptime_s": round(self.uptime_seconds, 0),
            "total_generations": self.generations.value,
            "fallback_rate": round(self.fallback_rate, 4),
            "rate_limited": self.admissions.get("limited"),
            "p95_latency_ms": round(self.generation_latency.percentile(95), 1),
        }
