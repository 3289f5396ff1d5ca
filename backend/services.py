"""
Service Wiring - Oraculum

Builds the pipeline once from an OracleConfig:
providers -> consensus engine -> submitter -> watcher, plus the dispute
manager and resolution history.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from chain import ChainClient, GelatoRelayClient
from config import OracleConfig, load_config
from consensus import ConsensusEngine
from dispute import DisputeManager
from providers import build_adapters
from resolution import ChainEventWatcher, ResolutionHistoryDB, ResolutionSubmitter, build_submitter

logger = logging.getLogger(__name__)


@dataclass
class OracleServices:
    config: OracleConfig
    engine: ConsensusEngine
    chain: ChainClient
    relay: GelatoRelayClient
    submitter: ResolutionSubmitter
    watcher: ChainEventWatcher
    history: ResolutionHistoryDB
    disputes: DisputeManager


def build_services(config: OracleConfig) -> OracleServices:
    engine = ConsensusEngine(build_adapters(config.enabled_providers), config.consensus)
    chain = ChainClient(config.chain)
    relay = GelatoRelayClient(config.relay)
    submitter = build_submitter(chain, relay, config.chain)
    history = ResolutionHistoryDB()
    watcher = ChainEventWatcher(
        chain,
        engine,
        submitter,
        history=history,
        round_timeout=config.consensus.round_timeout,
        max_concurrent_markets=config.scheduler.max_concurrent_markets,
    )
    disputes = DisputeManager(config.dispute)

    logger.info(
        f"Oracle services ready: {len(engine.adapters)} provider(s), "
        f"submission via {submitter.mode.value}"
    )
    return OracleServices(
        config=config,
        engine=engine,
        chain=chain,
        relay=relay,
        submitter=submitter,
        watcher=watcher,
        history=history,
        disputes=disputes,
    )


# Singleton instance
_services: Optional[OracleServices] = None


def get_services() -> OracleServices:
    """Get the singleton service container, built from the environment."""
    global _services
    if _services is None:
        _services = build_services(load_config())
    return _services
