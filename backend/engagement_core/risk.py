"""
Risk Engine — Learner Disengagement Scoring
============================================
NO I/O. NO RANDOMNESS. Pure arithmetic over a signal snapshot.

Signals (each normalized to [0, 1], higher = riskier):
1. Completion   — 1 - completion_pct / 100
2. Quiz         — 1 - quiz_avg / 100
3. Missed       — missed_sessions / 10 (capped)
4. Login        — days since last login / 30 (capped)

score = clamp(Σ weight_i × signal_i, 0, 1)

Labels: < 0.33 → low, [0.33, 0.66) → medium, ≥ 0.66 → high.

Weights are looked up through a provider on every call so a config reload
is picked up by the next call without a restart.
"""

import logging
import math
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from .config import RiskWeights
from .errors import InvalidInput
from .models import (
    BatchRiskItem,
    LearnerSignals,
    RiskAssessment,
    RiskComponents,
    RiskDistribution,
    RiskLabel,
)

logger = logging.getLogger(__name__)

LOW_THRESHOLD = 0.33
HIGH_THRESHOLD = 0.66

SECONDS_PER_DAY = 24 * 60 * 60

SignalsLike = Union[LearnerSignals, Mapping[str, Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, value))


def label_from_score(score: float) -> RiskLabel:
    """Threshold lookup. Total over the reals: out-of-range scores land on the boundary labels."""
    if score < LOW_THRESHOLD:
        return RiskLabel.LOW
    if score < HIGH_THRESHOLD:
        return RiskLabel.MEDIUM
    return RiskLabel.HIGH


def parse_last_login(value: Any) -> datetime:
    """Accept a datetime, a date or an ISO-8601 string; return an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise InvalidInput(f"Unparseable last_login: {value!r}") from e
    else:
        raise InvalidInput(f"Unsupported last_login type: {type(value).__name__}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RiskEngine:
    """
    Deterministic disengagement risk scoring.

    Usage:
        engine = RiskEngine(weights_provider=config_provider.weights)
        assessment = engine.assess(signals)
    """

    def __init__(
        self,
        weights_provider: Callable[[], RiskWeights] = RiskWeights,
        clock: Callable[[], datetime] = _utcnow,
        missed_sessions_cap: int = 10,
        login_recency_cap_days: float = 30.0,
    ):
        self._weights_provider = weights_provider
        self._clock = clock
        self.missed_sessions_cap = missed_sessions_cap
        self.login_recency_cap_days = login_recency_cap_days

    # ── Public API ────────────────────────────────────────────────

    def score(self, signals: SignalsLike, weights: Optional[RiskWeights] = None) -> float:
        """Risk score in [0, 1]. Raises InvalidInput only for malformed signals."""
        return _clamp(self._weighted_components(signals, weights).total)

    label_from_score = staticmethod(label_from_score)

    def assess(self, signals: SignalsLike) -> RiskAssessment:
        """Score, label and the four weighted components (for auditing)."""
        components = self._weighted_components(signals, None)
        score = _clamp(components.total)
        return RiskAssessment(
            score=score,
            label=label_from_score(score),
            components=components,
        )

    def batch_assess(self, signals_list: Iterable[SignalsLike]) -> List[BatchRiskItem]:
        """
        Order-preserving batch scoring. All-or-nothing: the first malformed
        element fails the whole call, and the error names its index.
        """
        weights = self._weights_provider()
        items: List[BatchRiskItem] = []
        for index, signals in enumerate(signals_list):
            try:
                score = self.score(signals, weights)
            except InvalidInput as e:
                raise InvalidInput(f"Learner at index {index}: {e}") from e
            items.append(BatchRiskItem(index=index, score=score, label=label_from_score(score)))
        return items

    def distribution(self, signals_list: Iterable[SignalsLike]) -> RiskDistribution:
        """Count learners per label and report the mean score."""
        items = self.batch_assess(signals_list)
        dist = RiskDistribution(total=len(items))
        for item in items:
            if item.label == RiskLabel.LOW:
                dist.low += 1
            elif item.label == RiskLabel.MEDIUM:
                dist.medium += 1
            else:
                dist.high += 1
        if items:
            dist.avg_risk_score = round(sum(i.score for i in items) / len(items), 2)
        return dist

    # ── Internals ─────────────────────────────────────────────────

    def _weighted_components(
        self, signals: SignalsLike, weights: Optional[RiskWeights]
    ) -> RiskComponents:
        snapshot = self._coerce(signals)
        weights = weights or self._weights_provider()

        completion = 1.0 - _clamp(snapshot.completion_pct / 100.0)
        quiz = 1.0 - _clamp(snapshot.quiz_avg / 100.0)
        missed = _clamp(snapshot.missed_sessions / self.missed_sessions_cap)

        last_login = parse_last_login(snapshot.last_login)
        elapsed_s = (self._clock() - last_login).total_seconds()
        days_since_login = max(0.0, elapsed_s / SECONDS_PER_DAY)
        login = _clamp(days_since_login / self.login_recency_cap_days)

        components = RiskComponents(
            completion=completion * weights.completion,
            quiz=quiz * weights.quiz,
            missed=missed * weights.missed,
            login=login * weights.login,
        )
        logger.debug(
            f"Risk components: completion={completion:.2f}, quiz={quiz:.2f}, "
            f"missed={missed:.2f}, login={login:.2f} (days={days_since_login:.1f})"
        )
        return components

    @staticmethod
    def _coerce(signals: SignalsLike) -> LearnerSignals:
        if isinstance(signals, LearnerSignals):
            snapshot = signals
        else:
            try:
                snapshot = LearnerSignals.model_validate(signals)
            except ValidationError as e:
                raise InvalidInput(f"Malformed learner signals: {e.error_count()} error(s)") from e

        for name in ("completion_pct", "quiz_avg", "missed_sessions"):
            if math.isnan(getattr(snapshot, name)):
                raise InvalidInput(f"{name} is NaN")
        return snapshot

