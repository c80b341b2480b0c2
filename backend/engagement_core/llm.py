"""
External Nudge Generator (Groq)
================================
One attempt = one chat-completion call. Failures are tagged here, at the
call site, so the retry layer never inspects messages:

  timeout / transport error / 429 / 5xx / malformed body → TransientExternalError
  other 4xx / missing API key                            → PermanentExternalError
"""

import logging
from typing import Any, Awaitable, Dict, Optional, Protocol

import httpx

from .config import CoreConfig
from .errors import PermanentExternalError, TransientExternalError
from .models import LearnerProfile

logger = logging.getLogger(__name__)

GROQ_URL = "https://api.groq.com/openai/v1/chat/completions"
SERVICE_NAME = "groq"


class NudgeGenerator(Protocol):
    """Accepts a prompt and learner context, returns text or raises a tagged error."""

    def __call__(self, prompt: str, learner: Optional[LearnerProfile]) -> Awaitable[str]: ...


def build_nudge_prompt(learner: LearnerProfile) -> str:
    """Prompt asking for a short, personalized nudge with one micro-step."""
    risk_context = f" Risk level: {learner.risk_label.value}." if learner.risk_label else ""

    return f"""You are a friendly, encouraging educational coach. Generate a personalized nudge for this learner:

Learner: {learner.name}
Progress: {learner.completion_pct:g}% complete
Quiz Performance: {learner.quiz_avg:g}% average
Missed Sessions: {learner.missed_sessions}{risk_context}

Requirements:
- Write a short, encouraging message (20-160 characters)
- Include exactly ONE clear, actionable micro-step
- Use an upbeat, supportive tone
- Personalize using the learner's name
- Focus on small, achievable actions

Examples of good micro-steps:
- "Complete one 5-minute lesson"
- "Take a quick practice quiz"
- "Review yesterday's notes"
- "Watch one short video"

Generate only the nudge text, no explanations or formatting."""


class GroqNudgeGenerator:
    """
    Nudge generation through Groq's OpenAI-compatible endpoint.

    Pass `client` to reuse a connection pool (or a mock transport in tests);
    otherwise each call opens a short-lived AsyncClient.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "llama-3.3-70b-versatile",
        url: str = GROQ_URL,
        timeout_s: float = 8.0,
        max_tokens: int = 256,
        temperature: float = 0.7,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.url = url
        self.timeout_s = timeout_s
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client

    @classmethod
    def from_config(cls, config: CoreConfig, client: Optional[httpx.AsyncClient] = None):
        return cls(
            api_key=config.groq_api_key,
            model=config.groq_model,
            timeout_s=config.llm_timeout_seconds,
            max_tokens=config.llm_max_tokens,
            temperature=config.llm_temperature,
            client=client,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def __call__(self, prompt: str, learner: Optional[LearnerProfile] = None) -> str:
        if not self.api_key:
            raise PermanentExternalError(SERVICE_NAME, "GROQ_API_KEY not configured")

        try:
            if self._client is not None:
                resp = await self._post(self._client, prompt)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                    resp = await self._post(client, prompt)
        except httpx.TimeoutException as e:
            raise TransientExternalError(SERVICE_NAME, "request timed out") from e
        except httpx.TransportError as e:
            raise TransientExternalError(SERVICE_NAME, f"network failure: {e}") from e

        status = resp.status_code
        if status == 429 or status >= 500:
            raise TransientExternalError(SERVICE_NAME, f"HTTP {status}", status_code=status)
        if status >= 400:
            raise PermanentExternalError(
                SERVICE_NAME, f"HTTP {status}: {resp.text[:200]}", status_code=status
            )

        content = self._extract_content(resp)
        logger.info(f"LLM nudge generated ({len(content)} chars, model={self.model})")
        return content

    async def _post(self, client: httpx.AsyncClient, prompt: str) -> httpx.Response:
        return await client.post(
            self.url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": self.temperature,
                "max_tokens": self.max_tokens,
            },
            timeout=self.timeout_s,
        )

    @staticmethod
    def _extract_content(resp: httpx.Response) -> str:
        try:
            data: Dict[str, Any] = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise TransientExternalError(SERVICE_NAME, "malformed response body") from e
        if not isinstance(content, str) or not content.strip():
            raise TransientExternalError(SERVICE_NAME, "empty completion")
        return content.strip()


class CannedNudgeGenerator:
    """Test-mode stand-in: always succeeds with a fixed message."""

    async def __call__(self, prompt: str, learner: Optional[LearnerProfile] = None) -> str:
        learner_id = learner.id if learner is not None and learner.id is not None else "anon"
        return f"TEST NUDGE: Quick reminder - keep going! ({learner_id})"
