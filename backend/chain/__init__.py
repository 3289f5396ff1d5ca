"""
Chain Bindings - Oraculum

Contract reads/writes over web3 and gas-abstracted submission over Gelato.
"""

from chain.models import (
    MarketStatus,
    SubmissionMode,
    RelayStatus,
    ChainSettings,
    RelaySettings,
    RelayTask,
    TxReceipt,
)
from chain.client import ChainClient, classify_submission_error
from chain.relay import GelatoRelayClient

__all__ = [
    "MarketStatus",
    "SubmissionMode",
    "RelayStatus",
    "ChainSettings",
    "RelaySettings",
    "RelayTask",
    "TxReceipt",
    "ChainClient",
    "classify_submission_error",
    "GelatoRelayClient",
]
