"""
Admission Controller (Rate Limiter)
====================================
Fixed-window counter keyed by caller identity.

  first request / window expired  → new window, count=1
  count < max_requests            → count += 1, admitted
  count >= max_requests           → limited, retry_after = ceil(reset_at - now)

A burst straddling a window boundary can admit up to 2 × max_requests in a
short span. That imprecision is accepted.

Expired records are swept opportunistically on the request path (no timer
thread), at most once per sweep interval, so `check()` stays O(1) amortized.
"""

import hashlib
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .models import AdmissionResult

logger = logging.getLogger(__name__)

UNKNOWN_KEY = "unknown"


@dataclass(frozen=True)
class RateLimitRecord:
    """Per-key window state. Replaced (never mutated) when a window rolls over."""
    count: int
    window_start: float
    reset_at: float


class AdmissionController:
    """
    Per-caller admission control.

    Usage:
        limiter = AdmissionController(max_requests=5, window_s=60)
        result = limiter.check("ip:10.0.0.1")
        if result.limited: ...  # HTTP 429, Retry-After = result.retry_after_seconds
    """

    def __init__(
        self,
        max_requests: int = 5,
        window_s: float = 60.0,
        sweep_interval_s: float = 300.0,
        bypass: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_s = window_s
        self.sweep_interval_s = sweep_interval_s
        self.bypass = bypass
        self._clock = clock

        self._records: Dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

        if bypass:
            logger.warning("⚠️  Admission control BYPASSED (test mode): all callers admitted")

    def check(self, key: str) -> AdmissionResult:
        """Count one request for `key` and decide whether it is admitted."""
        now = self._clock()
        if self.bypass:
            return AdmissionResult(
                limited=False,
                remaining=self.max_requests,
                reset_at=now + self.window_s,
            )

        key = key or UNKNOWN_KEY
        with self._lock:
            self._maybe_sweep(now)
            record = self._records.get(key)

            if record is None or now > record.reset_at:
                record = RateLimitRecord(count=1, window_start=now, reset_at=now + self.window_s)
                self._records[key] = record
                return AdmissionResult(
                    limited=False,
                    remaining=max(0, self.max_requests - 1),
                    reset_at=record.reset_at,
                )

            if record.count >= self.max_requests:
                retry_after = max(1, math.ceil(record.reset_at - now))
                reset_at = record.reset_at
                count = record.count
            else:
                record = RateLimitRecord(
                    count=record.count + 1,
                    window_start=record.window_start,
                    reset_at=record.reset_at,
                )
                self._records[key] = record
                return AdmissionResult(
                    limited=False,
                    remaining=self.max_requests - record.count,
                    reset_at=record.reset_at,
                )

        logger.warning(
            f"🚦 Rate limit exceeded for {key[:20]}... "
            f"(count={count}, limit={self.max_requests}, retry_after={retry_after}s)"
        )
        return AdmissionResult(
            limited=True,
            remaining=0,
            reset_at=reset_at,
            retry_after_seconds=retry_after,
        )

    # ── Sweep ─────────────────────────────────────────────────────

    def _maybe_sweep(self, now: float):
        """Drop expired records if the sweep floor has elapsed. Caller holds the lock."""
        if now - self._last_sweep < self.sweep_interval_s:
            return
        self._sweep_locked(now)

    def _sweep_locked(self, now: float) -> int:
        expired = [k for k, r in self._records.items() if now > r.reset_at]
        for k in expired:
            del self._records[k]
        self._last_sweep = now
        if expired:
            logger.debug(
                f"Rate limit sweep removed {len(expired)} entries ({len(self._records)} remain)"
            )
        return len(expired)

    def sweep(self) -> int:
        """Force a sweep now. Returns the number of records removed."""
        with self._lock:
            return self._sweep_locked(self._clock())

    # ── Introspection ─────────────────────────────────────────────

    def status(self, key: str) -> Optional[RateLimitRecord]:
        with self._lock:
            return self._records.get(key)

    def reset(self, key: str):
        with self._lock:
            self._records.pop(key, None)

    def clear(self):
        with self._lock:
            self._records.clear()

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._records)

    def to_dict(self) -> dict:
        return {
            "max_requests": self.max_requests,
            "window_s": self.window_s,
            "tracked_keys": self.size,
            "bypass": self.bypass,
        }


# ── Caller identity & HTTP mapping ────────────────────────────────

def rate_limit_key(
    api_key: Optional[str] = None,
    client_ip: Optional[str] = None,
    forwarded_for: Optional[str] = None,
    real_ip: Optional[str] = None,
) -> str:
    """
    Derive the admission key for a caller.

    Preference: API key hash → client IP → first X-Forwarded-For hop →
    X-Real-IP → the literal "unknown". The raw API key never appears in the key.
    """
    if api_key:
        digest = hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]
        return f"api-key:{digest}"

    ip = client_ip
    if not ip and forwarded_for:
        ip = forwarded_for.split(",")[0].strip()
    if not ip and real_ip:
        ip = real_ip.strip()
    if not ip:
        return UNKNOWN_KEY
    return f"ip:{ip}"


def rate_limit_headers(result: AdmissionResult, limit: int) -> Dict[str, str]:
    """Response headers for an admission result; adds Retry-After when limited."""
    headers = {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": result.reset_at_iso,
    }
    if result.limited:
        headers["Retry-After"] = str(result.retry_after_seconds or 60)
    return headers
