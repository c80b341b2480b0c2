"""
Unit tests for template fallback nudges.
"""

import pytest

from engagement_core.fallback import FallbackGenerator
from engagement_core.models import LearnerProfile, RiskLabel


@pytest.fixture
def fallback() -> FallbackGenerator:
    return FallbackGenerator()


def test_no_learner_gets_generic_message(fallback):
    text = fallback.generate(None)
    assert text == "Quick nudge, Learner! Keep up the great work. Time to complete a quick lesson? 🎯"


def test_blank_name_defaults_to_learner(fallback):
    assert "Learner" in fallback.generate({"name": "   ", "completion_pct": 10})


def test_uses_first_name_only(fallback):
    text = fallback.generate(LearnerProfile(name="Alex Morgan", completion_pct=10))
    assert text.startswith("Hey Alex,")
    assert "Morgan" not in text


@pytest.mark.parametrize("completion,encouragement,action", [
    (0, "every journey starts with a single step", "start with one 5-minute lesson"),
    (24.9, "every journey starts with a single step", "start with one 5-minute lesson"),
    (25, "you're building great momentum", "complete one more module today"),
    (60, "you're over halfway there", "take a quick practice quiz"),
    (75, "you're so close to the finish line", "finish strong with one final push"),
    (100, "you're so close to the finish line", "finish strong with one final push"),
])
def test_completion_bands(fallback, completion, encouragement, action):
    # "Alex" → template 0, which keeps the encouragement lowercase
    text = fallback.generate(LearnerProfile(name="Alex", completion_pct=completion))
    assert text == f"Hey Alex, {encouragement}! Try to {action}. Small steps win! 🚀"


def test_many_missed_sessions_override_encouragement(fallback):
    learner = LearnerProfile(name="Alex", completion_pct=60, missed_sessions=6)
    text = fallback.generate(learner)
    assert "it's never too late to get back on track" in text
    assert "take a quick practice quiz" in text


def test_low_risk_learner_is_praised(fallback):
    learner = LearnerProfile(name="Alex", completion_pct=60, risk_label=RiskLabel.LOW)
    assert "keep up the excellent work" in fallback.generate(learner)


def test_missed_sessions_win_over_low_risk(fallback):
    learner = {"name": "Alex", "completion_pct": 60, "missed_sessions": 9, "risk_label": "low"}
    assert "never too late" in fallback.generate(learner)


@pytest.mark.parametrize("name,prefix", [
    ("Alex", "Hey Alex,"),
    ("Maria", "Hi Maria!"),
    ("Jordan", "Jordan,"),
    ("Sam", "Quick nudge, Sam!"),
])
def test_template_choice_follows_name_length(fallback, name, prefix):
    assert fallback.generate({"name": name, "completion_pct": 50}).startswith(prefix)


def test_is_deterministic(fallback):
    learner = LearnerProfile(name="Maria", completion_pct=42, missed_sessions=1)
    assert fallback.generate(learner) == fallback.generate(learner)


def test_garbage_fields_do_not_raise(fallback):
    text = fallback.generate({"name": 42, "completion_pct": "lots", "missed_sessions": None})
    assert "Learner" in text
    assert "keep up the great work" in text.lower()


def test_huge_numbers_do_not_raise(fallback):
    learner = LearnerProfile(name="Ana", completion_pct=10, missed_sessions=10**400)
    text = fallback.generate(learner)
    assert "Ana" in text
    assert "start with one 5-minute lesson" in text


class ExplodingLearner:
    @property
    def name(self):
        raise RuntimeError("lazy load failed")


def test_any_failure_yields_generic_message(fallback):
    text = fallback.generate(ExplodingLearner())
    assert text == fallback.generate(None)
    assert "Learner" in text
