"""
Unit tests for the circuit breaker state machine.
"""

import threading

import pytest

from engagement_core.circuit_breaker import CBState, CircuitBreaker


@pytest.fixture
def breaker(clock) -> CircuitBreaker:
    return CircuitBreaker("groq", failure_threshold=3, cooldown_s=30, clock=clock)


def trip(breaker: CircuitBreaker):
    for _ in range(breaker.failure_threshold):
        assert breaker.allow_request()
        breaker.record_failure()


def test_starts_closed_and_allows(breaker):
    assert breaker.state == CBState.CLOSED
    assert breaker.allow_request()


def test_opens_at_threshold(breaker):
    breaker.record_failure()
    breaker.record_failure()
    assert breaker.state == CBState.CLOSED

    breaker.record_failure()
    assert breaker.state == CBState.OPEN
    assert not breaker.allow_request()
    assert breaker.stats.total_rejections == 1


def test_success_resets_consecutive_failures(breaker):
    breaker.record_failure()
    breaker.record_failure()
    breaker.record_success()
    breaker.record_failure()
    assert breaker.state == CBState.CLOSED
    assert breaker.consecutive_failures == 1


def test_refuses_until_cooldown_elapses(breaker, clock):
    trip(breaker)
    clock.advance(29.9)
    assert not breaker.allow_request()
    assert breaker.time_until_probe() == pytest.approx(0.1)


def test_half_open_probe_success_closes(breaker, clock):
    trip(breaker)
    clock.advance(30)

    assert breaker.allow_request()
    assert breaker.state == CBState.HALF_OPEN
    breaker.record_success()

    assert breaker.state == CBState.CLOSED
    assert breaker.consecutive_failures == 0
    assert breaker.opened_at is None


def test_half_open_probe_failure_reopens(breaker, clock):
    trip(breaker)
    clock.advance(30)

    assert breaker.allow_request()
    breaker.record_failure()

    assert breaker.state == CBState.OPEN
    assert breaker.opened_at == clock.now
    assert breaker.stats.times_opened == 2
    assert not breaker.allow_request()


def test_only_one_probe_while_half_open(breaker, clock):
    trip(breaker)
    clock.advance(30)

    assert breaker.allow_request()
    assert not breaker.allow_request()
    assert not breaker.allow_request()


def test_single_probe_under_concurrency(breaker, clock):
    trip(breaker)
    clock.advance(31)

    allowed = []
    lock = threading.Lock()
    barrier = threading.Barrier(16)

    def worker():
        barrier.wait()
        ok = breaker.allow_request()
        with lock:
            allowed.append(ok)

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert allowed.count(True) == 1
    assert breaker.state == CBState.HALF_OPEN


def test_is_available_does_not_transition(breaker, clock):
    trip(breaker)
    assert not breaker.is_available
    clock.advance(30)
    assert breaker.is_available
    assert breaker.state == CBState.OPEN


def test_manual_reset(breaker):
    trip(breaker)
    breaker.reset()
    assert breaker.state == CBState.CLOSED
    assert breaker.allow_request()


def test_to_dict_shape(breaker):
    breaker.record_success()
    data = breaker.to_dict()
    assert data["name"] == "groq"
    assert data["state"] == "closed"
    assert data["stats"]["total_successes"] == 1
    assert data["config"] == {"failure_threshold": 3, "cooldown_s": 30}
