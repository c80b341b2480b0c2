"""
Retry Orchestrator
===================
Runs one external-call attempt at a time, with bounded exponential backoff.

Per attempt n (1-based):
  1. Sleep min(base × factor^(n-2), max_delay) when n ≥ 2  (1s, 2s, 4s, ...).
     A breaker that is already open refuses before the sleep, not after it.
  2. Ask the circuit breaker. Refused → CircuitOpenError, no attempt made.
  3. Run the operation under a per-attempt timeout (timeout = transient).
  4. Report the outcome to the breaker, including cancellation and interrupts.
  5. Permanent error → propagate as-is. Transient → retry until max_attempts,
     then GenerationUnavailableError carrying the last cause.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

from .circuit_breaker import CircuitBreaker
from .errors import (
    CircuitOpenError,
    GenerationUnavailableError,
    InvalidInput,
    PermanentExternalError,
    TransientExternalError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SleepFunc(Protocol):
    """Injectable async sleep (tests pass a recorder that advances a fake clock)."""

    async def __call__(self, seconds: float) -> None: ...


def is_transient(error: BaseException) -> bool:
    """
    Classify an attempt failure once, by type.

    Permanent: PermanentExternalError, InvalidInput.
    Everything else is retried: TransientExternalError (5xx, 429), timeouts,
    httpx.TransportError, ConnectionError, and unknown exception types.
    """
    return not isinstance(error, (PermanentExternalError, InvalidInput))


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_s: float = 1.0
    backoff_factor: float = 2.0
    max_delay_s: float = 30.0
    attempt_timeout_s: Optional[float] = 8.0
    classify: Callable[[BaseException], bool] = is_transient

    def delay_before(self, attempt: int) -> float:
        """Backoff before attempt `attempt` (1-based). The first attempt never waits."""
        if attempt < 2:
            return 0.0
        return min(self.base_delay_s * self.backoff_factor ** (attempt - 2), self.max_delay_s)


class RetryOrchestrator:
    """
    Usage:
        orchestrator = RetryOrchestrator(breaker, RetryPolicy())
        text = await orchestrator.execute(lambda: generator(prompt, learner))
    """

    def __init__(
        self,
        breaker: CircuitBreaker,
        policy: Optional[RetryPolicy] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.breaker = breaker
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run `operation` with retries and return its result."""
        policy = self.policy
        last_error: Optional[BaseException] = None
        attempts = 0

        for attempt in range(1, max(1, policy.max_attempts) + 1):
            delay = policy.delay_before(attempt)
            if delay > 0:
                if not self.breaker.is_available:
                    raise self._refused(attempts, last_error)
                logger.warning(
                    f"Retry attempt {attempt}/{policy.max_attempts} after {delay:.1f}s "
                    f"(last error: {last_error})"
                )
                await self._sleep(delay)

            if not self.breaker.allow_request():
                raise self._refused(attempts, last_error)

            attempts = attempt
            try:
                result = await self._attempt(operation)
            except Exception as e:
                self.breaker.record_failure()
                last_error = e
                if not policy.classify(e):
                    logger.warning(f"Permanent failure on attempt {attempt}, not retrying: {e}")
                    raise
                continue
            except BaseException:
                self.breaker.record_failure()
                raise

            self.breaker.record_success()
            return result

        raise GenerationUnavailableError(
            f"External generator unavailable after {attempts} attempt(s): {last_error}",
            attempts=attempts,
            last_error=last_error,
        )

    def _refused(
        self, attempts: int, last_error: Optional[BaseException]
    ) -> CircuitOpenError:
        return CircuitOpenError(
            f"Circuit breaker [{self.breaker.name}] is open, "
            f"probe allowed in {self.breaker.time_until_probe():.0f}s",
            attempts=attempts,
            last_error=last_error,
        )

    async def _attempt(self, operation: Callable[[], Awaitable[T]]) -> T:
        timeout = self.policy.attempt_timeout_s
        if timeout is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TransientExternalError(
                "generator", f"attempt timed out after {timeout:.1f}s"
            ) from e
