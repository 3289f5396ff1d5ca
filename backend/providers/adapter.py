"""
AI Provider Adapter - Oraculum

Wraps one LLM provider behind a uniform call(prompt) -> ProviderReply contract.

Each provider walks an ordered fallback chain of (model, max_attempts, backoff):
1. Transient failures (timeout, rate limit, 5xx) retry the same model with backoff
2. Permanent failures (auth, bad request) advance to the next model immediately
3. An exhausted chain raises ProviderError(PERMANENT)

Supported providers:
- Groq (llama-3.1-8b-instant -> llama-3.3-70b-versatile)
- OpenAI (gpt-4o-mini -> gpt-4o)
- Anthropic (claude-3-haiku -> claude-3-5-sonnet)
- Together AI (mixtral-8x7b)
- OpenRouter (free-tier models through the OpenAI-compatible endpoint)
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from errors import ProviderError, ProviderErrorKind
from providers.models import LLMProvider, ProviderConfig, ProviderReply

logger = logging.getLogger(__name__)


TRANSIENT_MARKERS = (
    "429", "rate", "quota", "timeout", "timed out", "overloaded",
    "500", "502", "503", "504", "temporarily", "unavailable", "connection",
)


def get_llm(config: ProviderConfig, model: str):
    """Get an LLM instance for a provider and model."""
    if config.provider == LLMProvider.GROQ:
        from langchain_groq import ChatGroq
        return ChatGroq(
            model=model,
            api_key=config.api_key,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )

    elif config.provider == LLMProvider.OPENAI:
        from langchain_openai import ChatOpenAI
        return ChatOpenAI(
            model=model,
            api_key=config.api_key,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )

    elif config.provider == LLMProvider.ANTHROPIC:
        from langchain_anthropic import ChatAnthropic
        return ChatAnthropic(
            model=model,
            api_key=config.api_key,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )

    elif config.provider == LLMProvider.TOGETHER:
        from langchain_together import ChatTogether
        return ChatTogether(
            model=model,
            api_key=config.api_key,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )

    elif config.provider == LLMProvider.OPENROUTER:
        from langchain_openai import ChatOpenAI
        return ChatOpenAI(
            model=model,
            api_key=config.api_key,
            base_url=config.base_url,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )

    raise ValueError(f"Unknown provider: {config.provider}")


def classify_exception(exc: BaseException) -> ProviderErrorKind:
    """Decide whether a failed call is worth retrying on the same model."""
    if isinstance(exc, ProviderError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ProviderErrorKind.TRANSIENT

    error_str = str(exc).lower()
    if any(marker in error_str for marker in TRANSIENT_MARKERS):
        return ProviderErrorKind.TRANSIENT
    return ProviderErrorKind.PERMANENT


def _content_to_text(content: Any) -> str:
    # Anthropic may return a list of content blocks
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict):
                parts.append(block.get("text", ""))
            else:
                parts.append(str(block))
        return "".join(parts)
    return str(content)


class ProviderAdapter:
    """
    One provider with its model fallback chain.

    The per-call loop is a small state machine over the chain:
    (step, attempt) -> reply | retry same step | next step | ProviderError.
    """

    def __init__(
        self,
        config: ProviderConfig,
        llm_factory: Callable[[ProviderConfig, str], Any] = get_llm,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        if not config.models:
            raise ValueError(f"Provider {config.provider_id} has an empty model chain")

        self.config = config
        self._llm_factory = llm_factory
        self._sleep = sleep
        self._rate_limited_until: float = 0.0

    @property
    def provider_id(self) -> str:
        return self.config.provider_id

    def is_rate_limited(self) -> bool:
        """Check if this provider is currently cooling down."""
        return time.time() < self._rate_limited_until

    def _mark_rate_limited(self):
        self._rate_limited_until = time.time() + self.config.rate_limit_cooldown
        logger.warning(f"{self.provider_id} rate-limited for {self.config.rate_limit_cooldown}s")

    def _build_messages(self, prompt: str, system_prompt: Optional[str]) -> List[BaseMessage]:
        messages: List[BaseMessage] = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=prompt))
        return messages

    async def _invoke(self, model: str, messages: List[BaseMessage]) -> str:
        llm = self._llm_factory(self.config, model)
        response = await asyncio.to_thread(llm.invoke, messages)
        return _content_to_text(getattr(response, "content", response))

    async def call(self, prompt: str, system_prompt: Optional[str] = None) -> ProviderReply:
        """
        Invoke the provider, walking its fallback chain.

        Returns: ProviderReply(text, model_used)
        Raises: ProviderError(PERMANENT) once the chain is exhausted
        """
        if self.is_rate_limited():
            raise ProviderError(
                f"{self.provider_id} is cooling down after rate limits",
                kind=ProviderErrorKind.PERMANENT,
                provider=self.provider_id,
            )

        messages = self._build_messages(prompt, system_prompt)
        errors: List[str] = []
        all_rate_limited = True

        for step in self.config.models:
            for attempt in range(step.max_attempts):
                try:
                    text = await self._invoke(step.model, messages)
                    return ProviderReply(text=text, model_used=step.model)

                except asyncio.CancelledError:
                    raise

                except Exception as e:
                    kind = classify_exception(e)
                    errors.append(f"{step.model}#{attempt + 1}: {str(e)[:100]}")

                    if "429" not in str(e) and "rate" not in str(e).lower():
                        all_rate_limited = False

                    if kind == ProviderErrorKind.PERMANENT:
                        logger.warning(f"{self.provider_id}/{step.model} failed permanently: {str(e)[:100]}")
                        break

                    if attempt + 1 < step.max_attempts:
                        delay = step.backoff_seconds * (2 ** attempt)
                        logger.warning(
                            f"{self.provider_id}/{step.model} transient failure, "
                            f"retrying in {delay:.1f}s ({attempt + 1}/{step.max_attempts})"
                        )
                        await self._sleep(delay)
                    else:
                        logger.warning(f"{self.provider_id}/{step.model} exhausted retries, advancing")

        if errors and all_rate_limited:
            self._mark_rate_limited()

        raise ProviderError(
            f"All models failed for {self.provider_id}: {'; '.join(errors)}",
            kind=ProviderErrorKind.PERMANENT,
            provider=self.provider_id,
        )

    def status(self) -> Dict[str, Any]:
        """Get status of this provider."""
        return {
            "enabled": self.config.enabled,
            "models": [s.model for s in self.config.models],
            "rate_limited": self.is_rate_limited(),
            "rate_limit_expires": self._rate_limited_until - time.time()
                if self.is_rate_limited() else None,
        }


def build_adapters(configs: List[ProviderConfig]) -> List[ProviderAdapter]:
    """Create adapters for every enabled provider."""
    adapters = [ProviderAdapter(c) for c in configs if c.enabled]
    logger.info(f"Built {len(adapters)} provider adapter(s): {[a.provider_id for a in adapters]}")
    return adapters
