"""
Fallback Nudge Generator — Template Synthesis
===============================================
NO LLM. NO NETWORK. NO RANDOMNESS.

Used whenever the external generator is unavailable. Picks an
encouragement and a micro-step from the learner's completion band,
overrides the tone for learners with many missed sessions or low risk,
then fills one of four templates chosen by first-name length.

Never raises: a missing or malformed learner yields a generic message
addressed to "Learner".
"""

import logging
import math
from typing import Any, Mapping, Optional, Tuple, Union

from .models import LearnerProfile, RiskLabel

logger = logging.getLogger(__name__)

DEFAULT_NAME = "Learner"
HIGH_MISSED_SESSIONS = 5

# (upper bound on completion_pct, encouragement, micro-step)
COMPLETION_BANDS: Tuple[Tuple[float, str, str], ...] = (
    (25, "every journey starts with a single step", "start with one 5-minute lesson"),
    (50, "you're building great momentum", "complete one more module today"),
    (75, "you're over halfway there", "take a quick practice quiz"),
)
TOP_BAND = ("you're so close to the finish line", "finish strong with one final push")
NO_DATA = ("keep up the great work", "complete a quick lesson")

TEMPLATES: Tuple[str, ...] = (
    "Hey {name}, {encouragement}! Try to {action}. Small steps win! 🚀",
    "Hi {name}! {encouragement_cap} - ready to {action}? 💪",
    "{name}, {encouragement}! How about you {action}? You've got this! ⭐",
    "Quick nudge, {name}! {encouragement_cap}. Time to {action}? 🎯",
)

LearnerLike = Union[LearnerProfile, Mapping[str, Any], None]


def _get(learner: LearnerLike, name: str) -> Any:
    if learner is None:
        return None
    if isinstance(learner, Mapping):
        return learner.get(name)
    return getattr(learner, name, None)


def _as_float(value: Any) -> Optional[float]:
    try:
        result = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return result if math.isfinite(result) else None


class FallbackGenerator:
    """
    Deterministic, offline nudge synthesis.

    Usage:
        text = FallbackGenerator().generate(learner)
    """

    def generate(self, learner: LearnerLike = None, reason: str = "") -> str:
        try:
            return self._render(learner, reason)
        except Exception as e:
            logger.error(f"Fallback template failed, using generic nudge: {e}", exc_info=True)
            return self._render(None, reason)

    def _render(self, learner: LearnerLike, reason: str) -> str:
        first_name = self._first_name(learner)
        encouragement, action = self._pick_phrases(learner)

        index = len(first_name) % len(TEMPLATES)
        message = TEMPLATES[index].format(
            name=first_name,
            encouragement=encouragement,
            encouragement_cap=encouragement[:1].upper() + encouragement[1:],
            action=action,
        )

        logger.info(
            f"Generated fallback nudge for {first_name} "
            f"(reason={reason or 'fallback'}, template={index}, length={len(message)})"
        )
        return message

    @staticmethod
    def _first_name(learner: LearnerLike) -> str:
        name = _get(learner, "name")
        if not isinstance(name, str) or not name.strip():
            return DEFAULT_NAME
        return name.strip().split()[0]

    @staticmethod
    def _pick_phrases(learner: LearnerLike) -> Tuple[str, str]:
        completion = _as_float(_get(learner, "completion_pct"))
        if completion is None:
            encouragement, action = NO_DATA
        else:
            encouragement, action = TOP_BAND
            for upper, band_encouragement, band_action in COMPLETION_BANDS:
                if completion < upper:
                    encouragement, action = band_encouragement, band_action
                    break

        missed = _as_float(_get(learner, "missed_sessions"))
        risk = _get(learner, "risk_label")
        risk_value = risk.value if isinstance(risk, RiskLabel) else risk

        if missed is not None and missed > HIGH_MISSED_SESSIONS:
            encouragement = "it's never too late to get back on track"
        elif risk_value == RiskLabel.LOW.value:
            encouragement = "keep up the excellent work"
        return encouragement, action
