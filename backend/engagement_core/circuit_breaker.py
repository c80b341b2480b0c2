"""
Circuit Breaker Pattern
========================
Stops calling the external generator while it is failing.

State Machine:
  CLOSED    ──[consecutive_failures >= threshold]──►  OPEN
  OPEN      ──[cooldown elapsed, first caller]────►  HALF_OPEN (that caller is the probe)
  HALF_OPEN ──[probe success]─────────────────────►  CLOSED
  HALF_OPEN ──[probe failure]─────────────────────►  OPEN

One breaker per external dependency, shared by every caller. All state
changes happen under a lock, so at most one probe is ever in flight.
"""

import logging
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CBState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerStats:
    """Counters exposed through /circuit-breaker and /health."""
    total_calls: int = 0
    total_successes: int = 0
    total_failures: int = 0
    total_rejections: int = 0       # allow_request() refusals
    consecutive_failures: int = 0
    state_changes: int = 0
    times_opened: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["success_rate"] = (
            round(self.total_successes / self.total_calls, 3) if self.total_calls else 1.0
        )
        return data


class CircuitBreaker:
    """
    Breaker guarding a single external dependency.

    Usage:
        cb = CircuitBreaker("groq", failure_threshold=3, cooldown_s=30)
        if cb.allow_request():
            try:
                ...
                cb.record_success()
            except Exception:
                cb.record_failure()
                raise
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        cooldown_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_s = cooldown_s
        self._clock = clock

        self._state = CBState.CLOSED
        self._stats = CircuitBreakerStats()
        self._opened_at: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> CBState:
        return self._state

    @property
    def stats(self) -> CircuitBreakerStats:
        return self._stats

    @property
    def consecutive_failures(self) -> int:
        return self._stats.consecutive_failures

    @property
    def opened_at(self) -> Optional[float]:
        return self._opened_at

    @property
    def is_available(self) -> bool:
        """Would a request be let through right now? Read-only, no transition."""
        with self._lock:
            if self._state == CBState.CLOSED:
                return True
            if self._state == CBState.OPEN:
                return self._cooldown_elapsed(self._clock())
            return False

    def allow_request(self) -> bool:
        """
        Gate one call. When the cooldown has elapsed the first caller flips
        the breaker to HALF_OPEN and becomes the probe; everyone else is
        refused until the probe reports back.
        """
        with self._lock:
            if self._state == CBState.CLOSED:
                return True

            if self._state == CBState.OPEN and self._cooldown_elapsed(self._clock()):
                self._transition(CBState.HALF_OPEN)
                return True

            self._stats.total_rejections += 1
            return False

    def record_success(self):
        """Record a successful call."""
        with self._lock:
            self._stats.total_calls += 1
            self._stats.total_successes += 1
            self._stats.consecutive_failures = 0
            if self._state == CBState.HALF_OPEN:
                self._transition(CBState.CLOSED)

    def record_failure(self):
        """Record a failed call."""
        with self._lock:
            now = self._clock()
            self._stats.total_calls += 1
            self._stats.total_failures += 1
            self._stats.consecutive_failures += 1
            if self._state == CBState.HALF_OPEN:
                self._open(now)
            elif (
                self._state == CBState.CLOSED
                and self._stats.consecutive_failures >= self.failure_threshold
            ):
                self._open(now)

    def time_until_probe(self) -> float:
        """Seconds until the next probe is allowed (0 unless OPEN)."""
        with self._lock:
            if self._state != CBState.OPEN or self._opened_at is None:
                return 0.0
            return max(0.0, self.cooldown_s - (self._clock() - self._opened_at))

    def reset(self):
        """Manual reset (admin action)."""
        with self._lock:
            self._transition(CBState.CLOSED)
            self._stats.consecutive_failures = 0
            self._opened_at = None
        logger.info(f"🔄 Circuit breaker [{self.name}] manually reset")

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "is_available": self.is_available,
            "time_until_probe_s": round(self.time_until_probe(), 1),
            "stats": self._stats.to_dict(),
            "config": {
                "failure_threshold": self.failure_threshold,
                "cooldown_s": self.cooldown_s,
            },
        }

    # ── Internals (caller holds the lock) ─────────────────────────

    def _cooldown_elapsed(self, now: float) -> bool:
        return self._opened_at is not None and now - self._opened_at >= self.cooldown_s

    def _open(self, now: float):
        self._opened_at = now
        self._stats.times_opened += 1
        self._transition(CBState.OPEN)

    def _transition(self, new_state: CBState):
        old = self._state
        self._state = new_state
        self._stats.state_changes += 1

        if new_state == CBState.CLOSED:
            self._opened_at = None

        logger.info(
            f"🔌 Circuit breaker [{self.name}]: {old.value} → {new_state.value} "
            f"(failures={self._stats.consecutive_failures})"
        )
