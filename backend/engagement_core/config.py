"""
Engagement Core Configuration
==============================
Centralized configuration with environment variable overrides.
Risk weights, admission limits, breaker and retry knobs all live here.

The config is built once and injected. Weights are the only hot-reloadable
part: `ConfigProvider.reload()` swaps the active config and the next
scoring call observes it.
"""

import logging
import math
import os
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

_TRUTHY = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class RiskWeights:
    """Weights for the four risk components. Expected (not forced) to sum to 1.0."""
    completion: float = 0.40
    quiz: float = 0.35
    missed: float = 0.15
    login: float = 0.10

    @property
    def total(self) -> float:
        return self.completion + self.quiz + self.missed + self.login

    def to_dict(self) -> Dict[str, float]:
        return {
            "completion": self.completion,
            "quiz": self.quiz,
            "missed": self.missed,
            "login": self.login,
        }


@dataclass(frozen=True)
class CoreConfig:
    """Tuning knobs for the decision-and-resilience core."""

    # Risk scoring
    weights: RiskWeights = field(default_factory=RiskWeights)
    missed_sessions_cap: int = 10
    login_recency_cap_days: float = 30.0

    # Admission control (fixed window)
    rate_limit_per_window: int = 5
    rate_limit_window_s: float = 60.0
    rate_limit_sweep_interval_s: float = 300.0   # Floor between opportunistic sweeps

    # Circuit breaker
    cb_failure_threshold: int = 3
    cb_cooldown_s: float = 30.0

    # Retry
    retry_max_attempts: int = 3
    retry_base_delay_s: float = 1.0
    retry_backoff_factor: float = 2.0
    retry_max_delay_s: float = 30.0

    # External generator (Groq, OpenAI-compatible)
    llm_timeout_seconds: float = 8.0
    llm_max_tokens: int = 256
    llm_temperature: float = 0.7
    groq_api_key: str = ""
    groq_model: str = "llama-3.3-70b-versatile"

    # Persistence collaborator
    db_url: str = ""

    # Disables admission control and swaps in a canned generator.
    # Never on unless explicitly set.
    test_mode: bool = False


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in _TRUTHY


# env var → (field name, cast)
ENV_MAP: Dict[str, Tuple[str, Callable[[str], object]]] = {
    "RATE_LIMIT_PER_MINUTE": ("rate_limit_per_window", int),
    "RATE_LIMIT_WINDOW_SECONDS": ("rate_limit_window_s", float),
    "RATE_LIMIT_SWEEP_INTERVAL_SECONDS": ("rate_limit_sweep_interval_s", float),
    "CIRCUIT_BREAKER_THRESHOLD": ("cb_failure_threshold", int),
    "CIRCUIT_BREAKER_COOLDOWN_SECONDS": ("cb_cooldown_s", float),
    "RETRY_MAX_ATTEMPTS": ("retry_max_attempts", int),
    "RETRY_BASE_DELAY_SECONDS": ("retry_base_delay_s", float),
    "RETRY_BACKOFF_FACTOR": ("retry_backoff_factor", float),
    "RETRY_MAX_DELAY_SECONDS": ("retry_max_delay_s", float),
    "LLM_TIMEOUT_SECONDS": ("llm_timeout_seconds", float),
    "LLM_MAX_TOKENS": ("llm_max_tokens", int),
    "LLM_TEMPERATURE": ("llm_temperature", float),
    "GROQ_API_KEY": ("groq_api_key", str),
    "GROQ_MODEL": ("groq_model", str),
    "SUPABASE_DB_URL": ("db_url", str),
    "TEST_MODE": ("test_mode", _parse_bool),
}

WEIGHT_ENV_MAP: Dict[str, str] = {
    "RISK_WEIGHT_COMPLETION": "completion",
    "RISK_WEIGHT_QUIZ": "quiz",
    "RISK_WEIGHT_MISSED": "missed",
    "RISK_WEIGHT_LOGIN": "login",
}


def load_weights(env: Optional[Mapping[str, str]] = None) -> RiskWeights:
    """Read risk weights from the environment, warning on suspicious values."""
    env = os.environ if env is None else env
    defaults = RiskWeights().to_dict()
    values: Dict[str, float] = {}

    for env_key, name in WEIGHT_ENV_MAP.items():
        raw = env.get(env_key)
        value = defaults[name]
        if raw is not None and raw.strip():
            try:
                parsed = float(raw)
            except ValueError:
                logger.warning(f"Ignoring non-numeric {env_key}={raw!r}")
            else:
                if math.isfinite(parsed):
                    value = parsed
                else:
                    logger.warning(f"Ignoring non-finite {env_key}={raw!r}")
        if value < 0:
            logger.warning(f"Negative risk weight for {name} ({value}), clamping to 0")
            value = 0.0
        elif value > 1:
            logger.warning(f"Risk weight for {name} is above 1 ({value})")
        values[name] = value

    weights = RiskWeights(**values)
    if abs(weights.total - 1.0) > 0.001:
        logger.warning(
            f"Risk weights do not sum to 1.0 (sum={weights.total:.3f}, weights={weights.to_dict()})"
        )
    return weights


def load_config(env: Optional[Mapping[str, str]] = None) -> CoreConfig:
    """Load config with environment variable overrides."""
    env = os.environ if env is None else env
    overrides: Dict[str, object] = {"weights": load_weights(env)}
    for env_key, (field_name, cast_fn) in ENV_MAP.items():
        val = env.get(env_key)
        if val is None:
            continue
        try:
            overrides[field_name] = cast_fn(val)
        except (ValueError, TypeError):
            logger.warning(f"Ignoring invalid {env_key}={val!r}, keeping default")
    return CoreConfig(**overrides)


class ConfigProvider:
    """
    Holds the active CoreConfig and swaps it on reload.

    Readers never see a half-applied config: the whole object is replaced
    under a lock.
    """

    def __init__(
        self,
        config: Optional[CoreConfig] = None,
        env: Optional[Mapping[str, str]] = None,
    ):
        self._env = env
        self._lock = threading.Lock()
        self._config = config if config is not None else load_config(env)

    @property
    def config(self) -> CoreConfig:
        with self._lock:
            return self._config

    def weights(self) -> RiskWeights:
        return self.config.weights

    def reload(self) -> CoreConfig:
        """Re-read the environment and make the result active."""
        fresh = load_config(self._env)
        with self._lock:
            self._config = fresh
        logger.info(f"🔄 Config reloaded (weights={fresh.weights.to_dict()})")
        return fresh
