"""
Configuration - Oraculum

Reads the environment once (after load_dotenv) into a frozen OracleConfig.
Components receive their slice of it at construction and never read the
environment themselves.

Placeholder values such as "your_groq_api_key" count as unset.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from dotenv import load_dotenv

from chain.models import ChainSettings, RelaySettings, SubmissionMode
from consensus.models import ConsensusSettings
from dispute.models import DisputeConfig
from providers.models import (
    DEFAULT_MODEL_CHAINS,
    OPENROUTER_BASE_URL,
    LLMProvider,
    ProviderConfig,
)

logger = logging.getLogger(__name__)

PROVIDER_KEY_ENV = {
    LLMProvider.GROQ: "GROQ_API_KEY",
    LLMProvider.OPENAI: "OPENAI_API_KEY",
    LLMProvider.ANTHROPIC: "ANTHROPIC_API_KEY",
    LLMProvider.TOGETHER: "TOGETHER_API_KEY",
    LLMProvider.OPENROUTER: "OPENROUTER_API_KEY",
}


# ==================== ENV HELPERS ====================

def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    if not value or value.lower().startswith("your_"):
        return default
    return value


def env_int(name: str, default: int) -> int:
    value = env_str(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={value!r}, using {default}")
        return default


def env_float(name: str, default: float) -> float:
    value = env_str(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={value!r}, using {default}")
        return default


def env_bool(name: str, default: bool) -> bool:
    value = env_str(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


# ==================== SETTINGS ====================

@dataclass(frozen=True)
class AuthSettings:
    oracle_secret: Optional[str] = None
    require_auth: bool = True
    cron_secret: Optional[str] = None
    admin_api_key: Optional[str] = None
    max_signature_age: int = 300  # Seconds of allowed clock skew for signed requests


@dataclass(frozen=True)
class SchedulerSettings:
    enabled: bool = False
    oracle_check_interval: int = 300
    dispute_check_interval: int = 600
    max_concurrent_markets: int = 4


@dataclass(frozen=True)
class OracleConfig:
    providers: Tuple[ProviderConfig, ...] = ()
    consensus: ConsensusSettings = field(default_factory=ConsensusSettings)
    chain: ChainSettings = field(default_factory=ChainSettings)
    relay: RelaySettings = field(default_factory=RelaySettings)
    dispute: DisputeConfig = field(default_factory=DisputeConfig)
    auth: AuthSettings = field(default_factory=AuthSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)

    @property
    def enabled_providers(self) -> List[ProviderConfig]:
        return [p for p in self.providers if p.enabled]


def _load_providers() -> Tuple[ProviderConfig, ...]:
    requested = env_str("ORACLE_PROVIDERS")
    if requested:
        names = [n.strip().lower() for n in requested.split(",") if n.strip()]
    else:
        names = [p.value for p in LLMProvider]

    configs = []
    for name in names:
        try:
            provider = LLMProvider(name)
        except ValueError:
            logger.warning(f"Unknown provider {name!r} in ORACLE_PROVIDERS, skipping")
            continue
        api_key = env_str(PROVIDER_KEY_ENV[provider])
        configs.append(ProviderConfig(
            provider=provider,
            api_key=api_key,
            models=DEFAULT_MODEL_CHAINS[provider],
            temperature=env_float("ORACLE_TEMPERATURE", 0.1),
            base_url=OPENROUTER_BASE_URL if provider == LLMProvider.OPENROUTER else None,
            enabled=bool(api_key),
        ))
    return tuple(configs)


def _load_submission_mode() -> SubmissionMode:
    value = (env_str("SUBMISSION_MODE", "direct") or "direct").lower()
    try:
        return SubmissionMode(value)
    except ValueError:
        logger.warning(f"Unknown SUBMISSION_MODE={value!r}, using direct")
        return SubmissionMode.DIRECT


def _load_consensus() -> ConsensusSettings:
    defaults = ConsensusSettings()

    threshold = env_float("AGREEMENT_THRESHOLD", defaults.agreement_threshold)
    if not 0.0 < threshold <= 1.0:
        logger.warning(f"AGREEMENT_THRESHOLD={threshold} is outside (0, 1], using {defaults.agreement_threshold}")
        threshold = defaults.agreement_threshold

    quorum = env_int("MIN_QUORUM", defaults.min_quorum)
    if quorum < 1:
        logger.warning(f"MIN_QUORUM={quorum} must be at least 1, using {defaults.min_quorum}")
        quorum = defaults.min_quorum

    provider_timeout = env_float("PROVIDER_TIMEOUT", defaults.provider_timeout)
    if provider_timeout <= 0:
        logger.warning(f"PROVIDER_TIMEOUT={provider_timeout} must be positive, using {defaults.provider_timeout}")
        provider_timeout = defaults.provider_timeout

    round_timeout = env_float("ROUND_TIMEOUT", defaults.round_timeout)
    if round_timeout <= 0:
        logger.warning(f"ROUND_TIMEOUT={round_timeout} must be positive, using {defaults.round_timeout}")
        round_timeout = defaults.round_timeout

    return ConsensusSettings(
        agreement_threshold=threshold,
        min_quorum=quorum,
        provider_timeout=provider_timeout,
        round_timeout=round_timeout,
    )


def load_config() -> OracleConfig:
    """Build the immutable configuration from the environment."""
    load_dotenv()

    config = OracleConfig(
        providers=_load_providers(),
        consensus=_load_consensus(),
        chain=ChainSettings(
            rpc_url=env_str("RPC_URL", ChainSettings.rpc_url),
            chain_id=env_int("CHAIN_ID", 5611),
            core_address=env_str("CORE_CONTRACT_ADDRESS", ""),
            oracle_address=env_str("AI_ORACLE_ADDRESS", ""),
            staking_address=env_str("REPUTATION_STAKING_ADDRESS", ""),
            private_key=env_str("ORACLE_PRIVATE_KEY"),
            submission_mode=_load_submission_mode(),
            max_submit_attempts=env_int("SUBMIT_MAX_ATTEMPTS", 3),
            submit_backoff=env_float("SUBMIT_BACKOFF_SECONDS", 2.0),
            gas_limit=env_int("SUBMIT_GAS_LIMIT", 500000),
        ),
        relay=RelaySettings(
            api_key=env_str("GELATO_RELAY_API_KEY", ""),
            base_url=env_str("GELATO_RELAY_URL", RelaySettings.base_url),
        ),
        dispute=DisputeConfig(
            slash_percentage=env_float("SLASH_PERCENTAGE", 0.20),
            window_hours=env_float("DISPUTE_WINDOW_HOURS", 48.0),
        ),
        auth=AuthSettings(
            oracle_secret=env_str("ORACLE_SECRET"),
            require_auth=env_bool("ORACLE_REQUIRE_AUTH", True),
            cron_secret=env_str("CRON_SECRET"),
            admin_api_key=env_str("ADMIN_API_KEY"),
        ),
        scheduler=SchedulerSettings(
            enabled=env_bool("ORACLE_SCHEDULER_ENABLED", False),
            oracle_check_interval=env_int("ORACLE_CHECK_INTERVAL", 300),
            dispute_check_interval=env_int("DISPUTE_CHECK_INTERVAL", 600),
            max_concurrent_markets=env_int("MAX_CONCURRENT_MARKETS", 4),
        ),
    )

    enabled = [p.provider_id for p in config.enabled_providers]
    logger.info(f"Loaded config: providers={enabled}, mode={config.chain.submission_mode.value}")
    if len(enabled) < config.consensus.min_quorum:
        logger.warning(
            f"Only {len(enabled)} provider(s) configured; consensus needs {config.consensus.min_quorum}"
        )
    return config
