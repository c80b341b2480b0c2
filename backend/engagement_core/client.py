"""
Resilient Generation Client
============================
"Produce a message for this learner, resiliently."

┌──────────┐   ┌──────────────────┐   ┌────────────────┐   ┌──────────────┐
│ generate │──►│ RetryOrchestrator│──►│ CircuitBreaker │──►│ External LLM │
└──────────┘   └──────────────────┘   └────────────────┘   └──────────────┘
      │                 │ exhausted / open / permanent
      │                 ▼
      │         ┌──────────────────┐
      └────────►│FallbackGenerator │  (terminal, always succeeds)
                └──────────────────┘

Every outcome carries provenance and attempt count so the caller can
persist an audit record. Nothing is persisted here.
"""

import logging
import time
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import ValidationError

from .errors import (
    CircuitOpenError,
    GenerationUnavailableError,
    InvalidInput,
    PermanentExternalError,
)
from .fallback import FallbackGenerator
from .llm import NudgeGenerator, build_nudge_prompt
from .metrics import MetricsCollector
from .models import FallbackReason, GenerationOutcome, LearnerProfile, Provenance
from .retry import RetryOrchestrator

logger = logging.getLogger(__name__)


class ResilientGenerationClient:
    """
    Usage:
        client = ResilientGenerationClient(orchestrator, GroqNudgeGenerator(api_key))
        outcome = await client.generate(learner)   # never raises
    """

    def __init__(
        self,
        orchestrator: RetryOrchestrator,
        generator: NudgeGenerator,
        fallback: Optional[FallbackGenerator] = None,
        metrics: Optional[MetricsCollector] = None,
        prompt_builder: Callable[[LearnerProfile], str] = build_nudge_prompt,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.orchestrator = orchestrator
        self.generator = generator
        self.fallback = fallback or FallbackGenerator()
        self.metrics = metrics
        self.prompt_builder = prompt_builder
        self._clock = clock

    async def generate(
        self, learner: Union[LearnerProfile, Mapping[str, Any], None]
    ) -> GenerationOutcome:
        start = self._clock()
        attempts = 0
        reason: Optional[FallbackReason] = None

        try:
            profile = self._coerce(learner)
        except ValidationError as e:
            logger.warning(f"Malformed learner profile, skipping external generator: {e.error_count()} error(s)")
            return self._fallback(learner, FallbackReason.PERMANENT_ERROR, 0, start)

        prompt = self.prompt_builder(profile)

        async def attempt() -> str:
            nonlocal attempts
            attempts += 1
            return await self.generator(prompt, profile)

        try:
            text = await self.orchestrator.execute(attempt)
        except CircuitOpenError as e:
            reason = FallbackReason.CIRCUIT_OPEN
            logger.info(f"Circuit open, using fallback for learner {profile.id}: {e}")
        except GenerationUnavailableError as e:
            reason = FallbackReason.RETRIES_EXHAUSTED
            logger.warning(f"AI generation failed, using fallback for learner {profile.id}: {e}")
        except (PermanentExternalError, InvalidInput) as e:
            reason = FallbackReason.PERMANENT_ERROR
            logger.warning(f"Permanent generator error, using fallback for learner {profile.id}: {e}")
        except Exception as e:
            reason = FallbackReason.UNEXPECTED_ERROR
            logger.error(f"Unexpected generator error for learner {profile.id}: {e}", exc_info=True)
        else:
            return self._finish(
                GenerationOutcome(text=text, provenance=Provenance.EXTERNAL, attempts=attempts),
                start,
                profile.id,
            )

        return self._fallback(profile, reason, attempts, start)

    # ── Internals ─────────────────────────────────────────────────

    @staticmethod
    def _coerce(learner: Union[LearnerProfile, Mapping[str, Any], None]) -> LearnerProfile:
        if learner is None:
            return LearnerProfile()
        if isinstance(learner, LearnerProfile):
            return learner
        return LearnerProfile.model_validate(learner)

    def _fallback(
        self,
        learner: Any,
        reason: FallbackReason,
        attempts: int,
        start: float,
    ) -> GenerationOutcome:
        text = self.fallback.generate(learner, reason=reason.value)
        outcome = GenerationOutcome(
            text=text,
            provenance=Provenance.FALLBACK,
            attempts=attempts,
            fallback_reason=reason,
        )
        learner_id = learner.id if isinstance(learner, LearnerProfile) else None
        return self._finish(outcome, start, learner_id)

    def _finish(
        self, outcome: GenerationOutcome, start: float, learner_id: Optional[int]
    ) -> GenerationOutcome:
        outcome.latency_ms = (self._clock() - start) * 1000
        if self.metrics:
            self.metrics.record_generation(
                provenance=outcome.provenance.value,
                attempts=outcome.attempts,
                latency_ms=outcome.latency_ms,
                fallback_reason=outcome.fallback_reason.value if outcome.fallback_reason else None,
                learner_id=learner_id,
            )
        return outcome
