# Ensure backend is at sys.path[0] when pytest runs (from repo root or from backend dir)
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List

import pytest

_tests_dir = Path(__file__).resolve().parent
_backend = _tests_dir.parent
_str_backend = str(_backend)
if sys.path[0:1] != [_str_backend]:
    sys.path.insert(0, _str_backend)

from engagement_core.config import ConfigProvider, CoreConfig  # noqa: E402


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class ManualClock:
    """Float clock that only moves when a test says so."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingSleep:
    """Async sleep stand-in: records delays and advances the clock instead of waiting."""

    def __init__(self, clock: ManualClock):
        self.clock = clock
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        self.clock.advance(seconds)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def sleep(clock: ManualClock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def core_config() -> CoreConfig:
    """Defaults only, never the process environment."""
    return CoreConfig()


@pytest.fixture
def provider(core_config: CoreConfig) -> ConfigProvider:
    return ConfigProvider(config=core_config, env={})


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)
