"""
Provider Models - Oraculum

Configuration and reply types for the AI provider adapters.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple


class LLMProvider(Enum):
    GROQ = "groq"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    TOGETHER = "together"
    OPENROUTER = "openrouter"


@dataclass(frozen=True)
class ModelStep:
    """One link of a provider's fallback chain."""
    model: str
    max_attempts: int = 2
    backoff_seconds: float = 1.0  # Doubled after each transient failure


@dataclass(frozen=True)
class ProviderConfig:
    """Configuration for an LLM provider."""
    provider: LLMProvider
    api_key: Optional[str]
    models: Tuple[ModelStep, ...]
    temperature: float = 0.1
    max_tokens: int = 512
    base_url: Optional[str] = None
    enabled: bool = True
    rate_limit_cooldown: int = 60  # Seconds a fully rate-limited provider is skipped

    @property
    def provider_id(self) -> str:
        return self.provider.value


@dataclass(frozen=True)
class ProviderReply:
    """Uniform reply from any provider."""
    text: str
    model_used: str


# Cheap model first, stronger model on failure
DEFAULT_MODEL_CHAINS: Dict[LLMProvider, Tuple[ModelStep, ...]] = {
    LLMProvider.GROQ: (
        ModelStep("llama-3.1-8b-instant"),
        ModelStep("llama-3.3-70b-versatile"),
    ),
    LLMProvider.OPENAI: (
        ModelStep("gpt-4o-mini"),
        ModelStep("gpt-4o"),
    ),
    LLMProvider.ANTHROPIC: (
        ModelStep("claude-3-haiku-20240307"),
        ModelStep("claude-3-5-sonnet-20241022"),
    ),
    LLMProvider.TOGETHER: (
        ModelStep("mistralai/Mixtral-8x7B-Instruct-v0.1"),
    ),
    LLMProvider.OPENROUTER: (
        ModelStep("mistralai/mistral-7b-instruct:free"),
        ModelStep("meta-llama/llama-3.2-3b-instruct:free"),
        ModelStep("google/gemini-2.0-flash-exp:free"),
    ),
}

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
