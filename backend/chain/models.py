"""
Chain Models - Oraculum

On-chain state consumed by the pipeline and the records produced by
submitting a resolution.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class MarketStatus(Enum):
    """Market lifecycle status, as stored by the core contract."""
    ACTIVE = 0
    RESOLVING = 1
    RESOLVED = 2
    DISPUTED = 3
    CANCELLED = 4


class SubmissionMode(Enum):
    DIRECT = "direct"   # Signed transaction from the oracle key
    RELAY = "relay"     # Gas-abstracted sponsored call


class RelayStatus(Enum):
    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self != RelayStatus.PENDING


@dataclass(frozen=True)
class ChainSettings:
    """Connection and submission settings for the target chain."""
    rpc_url: str = "https://opbnb-testnet-rpc.bnbchain.org"
    chain_id: int = 5611
    core_address: str = ""
    oracle_address: str = ""
    staking_address: str = ""
    private_key: Optional[str] = None
    submission_mode: SubmissionMode = SubmissionMode.DIRECT
    max_submit_attempts: int = 3
    submit_backoff: float = 2.0
    gas_limit: int = 500000
    receipt_timeout: int = 120


@dataclass(frozen=True)
class RelaySettings:
    """Gelato relay settings."""
    api_key: str = ""
    base_url: str = "https://api.gelato.digital"
    request_timeout: float = 30.0
    poll_interval: float = 5.0
    poll_timeout: float = 180.0

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


@dataclass
class RelayTask:
    """A gas-abstracted submission tracked until it reaches a terminal state."""
    task_id: str
    target_contract: str
    payload: str
    status: RelayStatus = RelayStatus.PENDING
    tx_hash: Optional[str] = None
    last_check_message: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "target_contract": self.target_contract,
            "status": self.status.value,
            "tx_hash": self.tx_hash,
            "last_check_message": self.last_check_message,
            "created_at": self.created_at,
        }


@dataclass
class TxReceipt:
    """The durable effect of a successful resolution submission."""
    market_id: int
    tx_hash: Optional[str]
    strategy: SubmissionMode
    task_id: Optional[str] = None
    block_number: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "market_id": self.market_id,
            "tx_hash": self.tx_hash,
            "strategy": self.strategy.value,
            "task_id": self.task_id,
            "block_number": self.block_number,
        }
