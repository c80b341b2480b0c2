"""
Engagement Core Models
=======================
Pydantic models for API contracts and call-scoped results.
Nothing here is persisted by the core itself.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


# ── Enums ─────────────────────────────────────────────────────────

class RiskLabel(str, Enum):
    """Categorical disengagement risk."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Provenance(str, Enum):
    """Where a generated message came from."""
    EXTERNAL = "external"   # External generative service
    FALLBACK = "fallback"   # Local template synthesis


class FallbackReason(str, Enum):
    """Why the external path was not used."""
    CIRCUIT_OPEN = "circuit_open"
    RETRIES_EXHAUSTED = "retries_exhausted"
    PERMANENT_ERROR = "permanent_error"
    UNEXPECTED_ERROR = "unexpected_error"


# ── Risk Inputs ───────────────────────────────────────────────────

class LearnerSignals(BaseModel):
    """
    Behavioral snapshot used for risk scoring.

    All four fields are required. Numeric fields are unbounded: out-of-range
    values are clamped by the engine, not rejected. `last_login` may be a datetime or
    an ISO-8601 string; the engine parses it.
    """
    completion_pct: float
    quiz_avg: float
    missed_sessions: float
    last_login: Union[datetime, str]


class LearnerProfile(BaseModel):
    """Learner context handed to the generator (external or fallback)."""
    id: Optional[int] = None
    name: str = "Learner"
    completion_pct: float = 0.0
    quiz_avg: float = 0.0
    missed_sessions: int = 0
    risk_label: Optional[RiskLabel] = None


# ── Risk Outputs ──────────────────────────────────────────────────

class RiskComponents(BaseModel):
    """Weighted sub-scores. Their sum is the unclamped risk score."""
    completion: float = 0.0
    quiz: float = 0.0
    missed: float = 0.0
    login: float = 0.0

    @property
    def total(self) -> float:
        return self.completion + self.quiz + self.missed + self.login


class RiskAssessment(BaseModel):
    score: float = Field(..., ge=0.0, le=1.0)
    label: RiskLabel
    components: RiskComponents


class BatchRiskItem(BaseModel):
    index: int
    score: float
    label: RiskLabel


class RiskDistribution(BaseModel):
    low: int = 0
    medium: int = 0
    high: int = 0
    total: int = 0
    avg_risk_score: float = 0.0


# ── Admission ─────────────────────────────────────────────────────

class AdmissionResult(BaseModel):
    """Outcome of a rate-limit check. `limited=True` maps to HTTP 429."""
    limited: bool
    remaining: int
    reset_at: float                          # Epoch seconds
    retry_after_seconds: Optional[int] = None

    @property
    def reset_at_iso(self) -> str:
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat()


# ── Generation ────────────────────────────────────────────────────

class GenerationOutcome(BaseModel):
    """Result of a resilient generation call, with audit metadata."""
    text: str
    provenance: Provenance
    attempts: int = 0
    fallback_reason: Optional[FallbackReason] = None
    latency_ms: float = 0.0


# ── API Models ────────────────────────────────────────────────────

class BatchAssessRequest(BaseModel):
    learners: List[LearnerSignals] = Field(default_factory=list)


class NudgeResponse(BaseModel):
    """API response for POST /learners/{id}/nudge."""
    learner_id: int
    text: str
    provenance: Provenance
    attempts: int
    fallback_reason: Optional[FallbackReason] = None
    nudge_id: Optional[int] = None


class HealthResponse(BaseModel):
    status: str
    service: str = "engagement-core"
    version: str = "1.0.0"
    database: str = "unknown"
    test_mode: bool = False
    circuit_breaker: Dict[str, Any] = Field(default_factory=dict)
    metrics_summary: Dict[str, Any] = Field(default_factory=dict)
