"""
Resilience Context
===================
Owns every stateful piece of the core (rate-limit map, breaker, metrics)
as explicit objects instead of process-wide globals. Build one per process
and hand it to request handlers; tests build as many as they like.

Exposes the three call contracts:
  assess_risk(signals)        → RiskAssessment      (pure, raises InvalidInput)
  check_admission(caller_key) → AdmissionResult     (never raises)
  generate_message(learner)   → GenerationOutcome   (never raises)
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Mapping, Optional, Union

from .circuit_breaker import CircuitBreaker
from .client import ResilientGenerationClient
from .config import ConfigProvider, CoreConfig
from .fallback import FallbackGenerator
from .llm import SERVICE_NAME, CannedNudgeGenerator, GroqNudgeGenerator, NudgeGenerator
from .metrics import MetricsCollector
from .models import (
    AdmissionResult,
    BatchRiskItem,
    GenerationOutcome,
    LearnerProfile,
    RiskAssessment,
    RiskDistribution,
)
from .rate_limiter import AdmissionController
from .retry import RetryOrchestrator, RetryPolicy, SleepFunc
from .risk import RiskEngine, SignalsLike

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResilienceContext:
    """
    Wires config → risk engine, admission controller, breaker, retry,
    fallback and the resilient client.

    Only the risk weights are hot-reloadable (`reload_config()`); limits,
    breaker and retry knobs are fixed at construction.
    """

    def __init__(
        self,
        provider: Optional[ConfigProvider] = None,
        generator: Optional[NudgeGenerator] = None,
        wall_clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.provider = provider or ConfigProvider()
        config = self.provider.config

        self.metrics = MetricsCollector()
        self.risk_engine = RiskEngine(
            weights_provider=self.provider.weights,
            clock=now,
            missed_sessions_cap=config.missed_sessions_cap,
            login_recency_cap_days=config.login_recency_cap_days,
        )
        self.admission = AdmissionController(
            max_requests=config.rate_limit_per_window,
            window_s=config.rate_limit_window_s,
            sweep_interval_s=config.rate_limit_sweep_interval_s,
            bypass=config.test_mode,
            clock=wall_clock,
        )
        self.breaker = CircuitBreaker(
            SERVICE_NAME,
            failure_threshold=config.cb_failure_threshold,
            cooldown_s=config.cb_cooldown_s,
            clock=monotonic,
        )
        self.retry = RetryOrchestrator(
            self.breaker,
            RetryPolicy(
                max_attempts=config.retry_max_attempts,
                base_delay_s=config.retry_base_delay_s,
                backoff_factor=config.retry_backoff_factor,
                max_delay_s=config.retry_max_delay_s,
                attempt_timeout_s=config.llm_timeout_seconds,
            ),
            sleep=sleep,
        )

        if generator is None:
            generator = (
                CannedNudgeGenerator() if config.test_mode
                else GroqNudgeGenerator.from_config(config)
            )
        self.client = ResilientGenerationClient(
            self.retry,
            generator,
            fallback=FallbackGenerator(),
            metrics=self.metrics,
            clock=monotonic,
        )

        logger.info(
            f"✅ Resilience context ready (rate_limit={config.rate_limit_per_window}/"
            f"{config.rate_limit_window_s:.0f}s, cb_threshold={config.cb_failure_threshold}, "
            f"cb_cooldown={config.cb_cooldown_s:.0f}s, retries={config.retry_max_attempts}, "
            f"test_mode={config.test_mode})"
        )

    @property
    def config(self) -> CoreConfig:
        return self.provider.config

    # ── Call contracts ────────────────────────────────────────────

    def assess_risk(self, signals: SignalsLike) -> RiskAssessment:
        assessment = self.risk_engine.assess(signals)
        self.metrics.record_risk(assessment.label.value)
        return assessment

    def batch_assess(self, signals_list: Iterable[SignalsLike]) -> List[BatchRiskItem]:
        items = self.risk_engine.batch_assess(signals_list)
        for item in items:
            self.metrics.record_risk(item.label.value)
        return items

    def risk_distribution(self, signals_list: Iterable[SignalsLike]) -> RiskDistribution:
        return self.risk_engine.distribution(signals_list)

    def check_admission(self, caller_key: str) -> AdmissionResult:
        result = self.admission.check(caller_key)
        self.metrics.record_admission(result.limited)
        return result

    async def generate_message(
        self, learner: Union[LearnerProfile, Mapping[str, Any], None]
    ) -> GenerationOutcome:
        return await self.client.generate(learner)

    # ── Admin ─────────────────────────────────────────────────────

    def reload_config(self) -> CoreConfig:
        """Re-read the environment; the next scoring call uses the new weights."""
        return self.provider.reload()
