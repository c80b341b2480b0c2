"""
Unit tests for admission control: fixed window, sweep, bypass, concurrency, key derivation.
"""

import hashlib
import threading

import pytest

from engagement_core.models import AdmissionResult
from engagement_core.rate_limiter import (
    AdmissionController,
    rate_limit_headers,
    rate_limit_key,
)


@pytest.fixture
def limiter(clock) -> AdmissionController:
    return AdmissionController(max_requests=5, window_s=60, sweep_interval_s=300, clock=clock)


def test_admits_up_to_limit_then_limits(limiter):
    results = [limiter.check("ip:1.2.3.4") for _ in range(6)]

    assert [r.limited for r in results] == [False] * 5 + [True]
    assert [r.remaining for r in results[:5]] == [4, 3, 2, 1, 0]
    assert results[5].remaining == 0
    assert results[5].retry_after_seconds == 60


def test_limited_calls_do_not_grow_the_count(limiter):
    for _ in range(20):
        limiter.check("k")
    assert limiter.status("k").count == 5


def test_retry_after_counts_down_and_never_hits_zero(limiter, clock):
    for _ in range(5):
        limiter.check("k")
    clock.advance(59.5)
    result = limiter.check("k")
    assert result.limited
    assert result.retry_after_seconds == 1


def test_new_window_after_reset(limiter, clock):
    for _ in range(6):
        limiter.check("k")

    clock.advance(60.01)
    result = limiter.check("k")

    assert not result.limited
    assert result.remaining == 4
    assert result.reset_at == pytest.approx(clock.now + 60)


def test_boundary_instant_still_in_old_window(limiter, clock):
    for _ in range(5):
        limiter.check("k")
    clock.advance(60)
    assert limiter.check("k").limited


def test_keys_are_independent(limiter):
    for _ in range(5):
        limiter.check("a")
    assert limiter.check("a").limited
    assert not limiter.check("b").limited


def test_empty_key_is_treated_as_unknown(limiter):
    limiter.check("")
    assert limiter.status("unknown").count == 1


def test_sweep_removes_only_expired_records(limiter, clock):
    limiter.check("old")
    clock.advance(61)
    limiter.check("fresh")

    removed = limiter.sweep()

    assert removed == 1
    assert limiter.status("old") is None
    assert limiter.status("fresh") is not None


def test_opportunistic_sweep_runs_after_interval(limiter, clock):
    limiter.check("stale")
    clock.advance(301)
    limiter.check("other")

    assert limiter.size == 1
    assert limiter.status("stale") is None


def test_bypass_admits_everything(clock):
    limiter = AdmissionController(max_requests=1, bypass=True, clock=clock)
    results = [limiter.check("k") for _ in range(10)]
    assert not any(r.limited for r in results)
    assert all(r.remaining == 1 for r in results)
    assert limiter.size == 0


def test_reset_and_clear(limiter):
    for _ in range(5):
        limiter.check("a")
    limiter.check("b")

    limiter.reset("a")
    assert not limiter.check("a").limited

    limiter.clear()
    assert limiter.size == 0


def test_concurrent_checks_lose_no_updates(clock):
    limiter = AdmissionController(max_requests=50, window_s=60, clock=clock)
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        local = [limiter.check("shared") for _ in range(25)]
        with lock:
            results.extend(local)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    admitted = [r for r in results if not r.limited]
    assert len(results) == 200
    assert len(admitted) == 50
    assert limiter.status("shared").count == 50


# ── Key derivation ────────────────────────────────────────────────

def test_key_prefers_hashed_api_key():
    key = rate_limit_key(api_key="secret-admin-key", client_ip="10.0.0.1")
    digest = hashlib.sha256(b"secret-admin-key").hexdigest()[:16]
    assert key == f"api-key:{digest}"
    assert "secret" not in key


@pytest.mark.parametrize("kwargs,expected", [
    ({"client_ip": "10.0.0.1", "forwarded_for": "9.9.9.9"}, "ip:10.0.0.1"),
    ({"forwarded_for": "9.9.9.9, 10.0.0.2", "real_ip": "8.8.8.8"}, "ip:9.9.9.9"),
    ({"real_ip": " 8.8.8.8 "}, "ip:8.8.8.8"),
    ({}, "unknown"),
])
def test_key_falls_back_through_ip_sources(kwargs, expected):
    assert rate_limit_key(**kwargs) == expected


def test_headers_for_admitted_and_limited():
    admitted = AdmissionResult(limited=False, remaining=3, reset_at=0.0)
    limited = AdmissionResult(limited=True, remaining=0, reset_at=0.0, retry_after_seconds=42)

    ok = rate_limit_headers(admitted, 5)
    assert ok["X-RateLimit-Limit"] == "5"
    assert ok["X-RateLimit-Remaining"] == "3"
    assert ok["X-RateLimit-Reset"].startswith("1970-01-01T00:00:00")
    assert "Retry-After" not in ok

    assert rate_limit_headers(limited, 5)["Retry-After"] == "42"
