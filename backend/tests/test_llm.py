"""
Unit tests for the Groq generator's error tagging, using httpx.MockTransport.
"""

import json

import httpx
import pytest

from engagement_core.config import CoreConfig
from engagement_core.errors import PermanentExternalError, TransientExternalError
from engagement_core.llm import (
    GROQ_URL,
    CannedNudgeGenerator,
    GroqNudgeGenerator,
    build_nudge_prompt,
)
from engagement_core.models import LearnerProfile, RiskLabel


def completion_body(text: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


def make_generator(handler, api_key="gsk-test") -> GroqNudgeGenerator:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GroqNudgeGenerator(api_key=api_key, client=client)


@pytest.mark.asyncio
async def test_success_returns_stripped_content_and_sends_expected_request():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion_body("  Hey Ana, one quiz today? 🎯  "))

    generator = make_generator(handler)
    text = await generator("prompt text", LearnerProfile(name="Ana"))

    assert text == "Hey Ana, one quiz today? 🎯"
    assert seen["url"] == GROQ_URL
    assert seen["auth"] == "Bearer gsk-test"
    assert seen["body"]["messages"] == [{"role": "user", "content": "prompt text"}]
    assert seen["body"]["max_tokens"] == 256


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [429, 500, 502, 503])
async def test_retryable_statuses_are_transient(status):
    generator = make_generator(lambda request: httpx.Response(status, text="busy"))
    with pytest.raises(TransientExternalError) as exc_info:
        await generator("p")
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 403, 404])
async def test_client_errors_are_permanent(status):
    generator = make_generator(lambda request: httpx.Response(status, text="nope"))
    with pytest.raises(PermanentExternalError) as exc_info:
        await generator("p")
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
async def test_transport_failure_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientExternalError):
        await make_generator(handler)("p")


@pytest.mark.asyncio
async def test_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(TransientExternalError, match="timed out"):
        await make_generator(handler)("p")


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{"choices": []}, {"unexpected": True}, completion_body("   ")])
async def test_malformed_or_empty_body_is_transient(body):
    generator = make_generator(lambda request: httpx.Response(200, json=body))
    with pytest.raises(TransientExternalError):
        await generator("p")


@pytest.mark.asyncio
async def test_missing_api_key_is_permanent_without_calling_out():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=completion_body("x"))

    generator = make_generator(handler, api_key="")
    assert not generator.is_configured
    with pytest.raises(PermanentExternalError):
        await generator("p")
    assert calls == []


def test_from_config_copies_llm_settings():
    config = CoreConfig(groq_api_key="k", groq_model="m", llm_max_tokens=64, llm_temperature=0.2)
    generator = GroqNudgeGenerator.from_config(config)
    assert (generator.api_key, generator.model) == ("k", "m")
    assert generator.max_tokens == 64
    assert generator.temperature == 0.2


def test_prompt_mentions_learner_context():
    prompt = build_nudge_prompt(LearnerProfile(
        name="Ana", completion_pct=42, quiz_avg=77.5, missed_sessions=2, risk_label=RiskLabel.HIGH,
    ))
    assert "Learner: Ana" in prompt
    assert "Progress: 42% complete" in prompt
    assert "Quiz Performance: 77.5% average" in prompt
    assert "Risk level: high." in prompt
    assert "ONE clear, actionable micro-step" in prompt


@pytest.mark.asyncio
async def test_canned_generator():
    canned = CannedNudgeGenerator()
    assert await canned("p", LearnerProfile(id=7)) == "TEST NUDGE: Quick reminder - keep going! (7)"
    assert await canned("p", None) == "TEST NUDGE: Quick reminder - keep going! (anon)"
