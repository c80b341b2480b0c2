"""
Engagement Core Package v1.0
=============================
Learner disengagement scoring and resilient nudge generation.

Architecture:
- config.py          → CoreConfig, risk weights, env overrides, hot reload
- errors.py          → Error taxonomy (transient vs permanent)
- models.py          → Pydantic models (API contracts, call results)
- risk.py            → Deterministic weighted risk engine
- rate_limiter.py    → Fixed-window admission control per caller
- circuit_breaker.py → Breaker guarding the external generator
- retry.py           → Bounded exponential backoff around the breaker
- llm.py             → Groq nudge generator (httpx)
- fallback.py        → Offline template nudges
- client.py          → Resilient generation client (never raises)
- metrics.py         → In-memory metrics (counters, histograms)
- audit.py           → Nudge audit trail (asyncpg)
- context.py         → Wires everything into one explicit context
- main.py            → FastAPI application (HTTP layer)
"""

from .config import ConfigProvider, CoreConfig, RiskWeights, load_config
from .errors import (
    CircuitOpenError,
    EngagementCoreError,
    GenerationUnavailableError,
    InvalidInput,
    PermanentExternalError,
    TransientExternalError,
)
from .models import (
    AdmissionResult,
    FallbackReason,
    GenerationOutcome,
    LearnerProfile,
    LearnerSignals,
    Provenance,
    RiskAssessment,
    RiskLabel,
)
from .risk import RiskEngine, label_from_score
from .rate_limiter import AdmissionController, rate_limit_headers, rate_limit_key
from .circuit_breaker import CBState, CircuitBreaker
from .retry import RetryOrchestrator, RetryPolicy
from .fallback import FallbackGenerator
from .llm import CannedNudgeGenerator, GroqNudgeGenerator
from .client import ResilientGenerationClient
from .metrics import MetricsCollector
from .context import ResilienceContext

__all__ = [
    "ConfigProvider",
    "CoreConfig",
    "RiskWeights",
    "load_config",
    "CircuitOpenError",
    "EngagementCoreError",
    "GenerationUnavailableError",
    "InvalidInput",
    "PermanentExternalError",
    "TransientExternalError",
    "AdmissionResult",
    "FallbackReason",
    "GenerationOutcome",
    "LearnerProfile",
    "LearnerSignals",
    "Provenance",
    "RiskAssessment",
    "RiskLabel",
    "RiskEngine",
    "label_from_score",
    "AdmissionController",
    "rate_limit_headers",
    "rate_limit_key",
    "CBState",
    "CircuitBreaker",
    "RetryOrchestrator",
    "RetryPolicy",
    "FallbackGenerator",
    "CannedNudgeGenerator",
    "GroqNudgeGenerator",
    "ResilientGenerationClient",
    "MetricsCollector",
    "ResilienceContext",
]
