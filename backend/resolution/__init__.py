"""
Resolution Pipeline - Oraculum

Watcher, submitter and audit history for on-chain market resolution.
"""

from resolution.submitter import (
    DirectStrategy,
    RelayStrategy,
    ResolutionSubmitter,
    build_submitter,
    to_chain_confidence,
)
from resolution.watcher import ChainEventWatcher, WatcherTickResult
from resolution.history import ResolutionRecord, ResolutionHistoryDB

__all__ = [
    "DirectStrategy",
    "RelayStrategy",
    "ResolutionSubmitter",
    "build_submitter",
    "to_chain_confidence",
    "ChainEventWatcher",
    "WatcherTickResult",
    "ResolutionRecord",
    "ResolutionHistoryDB",
]
