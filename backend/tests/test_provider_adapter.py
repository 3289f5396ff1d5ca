from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from errors import ProviderError, ProviderErrorKind
from providers.adapter import ProviderAdapter, build_adapters, classify_exception
from providers.models import LLMProvider, ModelStep, ProviderConfig


class ScriptedLLM:
    """Pops one scripted result per invoke: an exception to raise or text to return."""

    def __init__(self, script: list):
        self.script = script

    def invoke(self, messages):
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return SimpleNamespace(content=step)


def make_adapter(scripts: dict, models=("small", "large"), attempts=2):
    config = ProviderConfig(
        provider=LLMProvider.GROQ,
        api_key="test-key",
        models=tuple(ModelStep(m, max_attempts=attempts, backoff_seconds=0.5) for m in models),
    )
    invoked = []
    sleeps = []

    def factory(cfg, model):
        invoked.append(model)
        return ScriptedLLM(scripts[model])

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    adapter = ProviderAdapter(config, llm_factory=factory, sleep=fake_sleep)
    return adapter, invoked, sleeps


def test_first_model_answers() -> None:
    adapter, invoked, sleeps = make_adapter({"small": ['{"outcome": "YES"}']})

    reply = asyncio.run(adapter.call("prompt", "system"))

    assert reply.text == '{"outcome": "YES"}'
    assert reply.model_used == "small"
    assert invoked == ["small"]
    assert sleeps == []


def test_transient_failure_retries_same_model_with_backoff() -> None:
    adapter, invoked, sleeps = make_adapter({
        "small": [TimeoutError("request timed out"), "NO"],
    })

    reply = asyncio.run(adapter.call("prompt"))

    assert reply.model_used == "small"
    assert invoked == ["small", "small"]
    assert sleeps == [0.5]


def test_permanent_failure_advances_to_next_model() -> None:
    adapter, invoked, sleeps = make_adapter({
        "small": [ValueError("model_not_found: small")],
        "large": ["INVALID"],
    })

    reply = asyncio.run(adapter.call("prompt"))

    assert reply.model_used == "large"
    assert invoked == ["small", "large"]
    assert sleeps == []


def test_exhausted_chain_raises_permanent_error() -> None:
    adapter, invoked, sleeps = make_adapter({
        "small": [Exception("503 unavailable"), Exception("503 unavailable")],
        "large": [Exception("invalid api key")],
    })

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(adapter.call("prompt"))

    assert exc_info.value.kind == ProviderErrorKind.PERMANENT
    assert exc_info.value.provider == "groq"
    assert invoked == ["small", "small", "large"]
    assert sleeps == [0.5]


def test_rate_limited_provider_cools_down() -> None:
    adapter, invoked, _ = make_adapter(
        {"small": [Exception("429 rate limit exceeded")], "large": [Exception("429 rate limit exceeded")]},
        attempts=1,
    )

    with pytest.raises(ProviderError):
        asyncio.run(adapter.call("prompt"))
    assert adapter.is_rate_limited()

    with pytest.raises(ProviderError, match="cooling down"):
        asyncio.run(adapter.call("prompt"))
    assert invoked == ["small", "large"]
    assert adapter.status()["rate_limited"] is True


@pytest.mark.parametrize(
    "exc, kind",
    [
        (TimeoutError(), ProviderErrorKind.TRANSIENT),
        (ConnectionError("reset"), ProviderErrorKind.TRANSIENT),
        (Exception("Error code: 502"), ProviderErrorKind.TRANSIENT),
        (Exception("Invalid API key provided"), ProviderErrorKind.PERMANENT),
    ],
)
def test_classify_exception(exc, kind) -> None:
    assert classify_exception(exc) == kind


def test_build_adapters_skips_disabled_providers() -> None:
    enabled = ProviderConfig(LLMProvider.OPENAI, "k", (ModelStep("gpt-4o-mini"),))
    disabled = ProviderConfig(LLMProvider.ANTHROPIC, None, (ModelStep("claude"),), enabled=False)

    adapters = build_adapters([enabled, disabled])

    assert [a.provider_id for a in adapters] == ["openai"]


def test_empty_model_chain_is_rejected() -> None:
    with pytest.raises(ValueError):
        ProviderAdapter(ProviderConfig(LLMProvider.GROQ, "k", ()))
