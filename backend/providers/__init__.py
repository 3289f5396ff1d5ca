"""
AI Provider Adapters - Oraculum

Uniform call(prompt) -> {text, model_used} wrapper per LLM provider,
each with an ordered model fallback chain.
"""

from providers.models import (
    LLMProvider,
    ModelStep,
    ProviderConfig,
    ProviderReply,
    DEFAULT_MODEL_CHAINS,
    OPENROUTER_BASE_URL,
)
from providers.adapter import ProviderAdapter, build_adapters, classify_exception, get_llm

__all__ = [
    "LLMProvider",
    "ModelStep",
    "ProviderConfig",
    "ProviderReply",
    "DEFAULT_MODEL_CHAINS",
    "OPENROUTER_BASE_URL",
    "ProviderAdapter",
    "build_adapters",
    "classify_exception",
    "get_llm",
]
