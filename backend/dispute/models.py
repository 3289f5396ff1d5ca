"""
Dispute Data Models - Oraculum

Data models for stake-weighted arbitration of contested resolutions.
Stakers vote on the correct outcome during a fixed window; the weighted
majority wins and voters on the losing side are slashed.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from consensus.models import Outcome


# ==================== ENUMS ====================

class DisputeStatus(Enum):
    """Dispute lifecycle status."""
    OPEN = "open"              # Voting window running or awaiting finalization
    FINALIZED = "finalized"    # Outcome decided, stakes settled
    ESCALATED = "escalated"    # Weighted tie, waiting on governance


class StakeTier(Enum):
    """Reputation tier by staked BNB."""
    NONE = 0
    BRONZE = 1
    SILVER = 2
    GOLD = 3
    PLATINUM = 4
    DIAMOND = 5


# Minimum stake (BNB) for each tier, highest first
TIER_THRESHOLDS = [
    (StakeTier.DIAMOND, 100.0),
    (StakeTier.PLATINUM, 50.0),
    (StakeTier.GOLD, 10.0),
    (StakeTier.SILVER, 1.0),
    (StakeTier.BRONZE, 0.1),
]


def tier_for_stake(staked_amount: float) -> StakeTier:
    for tier, minimum in TIER_THRESHOLDS:
        if staked_amount >= minimum:
            return tier
    return StakeTier.NONE


def stake_weight(staked_amount: float) -> float:
    """Quadratic voting weight: sqrt of stake."""
    return math.sqrt(max(0.0, staked_amount))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_vote_id() -> str:
    return f"dv_{uuid.uuid4().hex[:12]}"


# ==================== CONFIG ====================

@dataclass(frozen=True)
class DisputeConfig:
    """Configuration for dispute arbitration."""
    slash_percentage: float = 0.20   # Share of a losing voter's stake
    window_hours: float = 48.0       # Voting window length
    min_stake_to_vote: float = 0.0   # Stake must exceed this to vote


# ==================== DATA MODELS ====================

@dataclass
class Dispute:
    """A contested resolution. At most one per market."""
    market_id: int
    original_outcome: Outcome
    challenger: str
    opened_at: datetime
    window_ends_at: datetime
    status: DisputeStatus = DisputeStatus.OPEN
    final_outcome: Optional[Outcome] = None
    resolution_reason: Optional[str] = None
    finalized_at: Optional[datetime] = None

    @classmethod
    def open(cls, market_id: int, original_outcome: Outcome, challenger: str,
             window_hours: float, now: datetime) -> "Dispute":
        return cls(
            market_id=market_id,
            original_outcome=original_outcome,
            challenger=challenger,
            opened_at=now,
            window_ends_at=now + timedelta(hours=window_hours),
        )

    def is_window_open(self, now: datetime) -> bool:
        return now < self.window_ends_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "market_id": self.market_id,
            "original_outcome": self.original_outcome.name,
            "challenger": self.challenger,
            "status": self.status.value,
            "opened_at": self.opened_at.isoformat(),
            "window_ends_at": self.window_ends_at.isoformat(),
            "final_outcome": self.final_outcome.name if self.final_outcome else None,
            "resolution_reason": self.resolution_reason,
            "finalized_at": self.finalized_at.isoformat() if self.finalized_at else None,
        }


@dataclass
class DisputeVote:
    """One staker's vote. Weight is snapshotted when the vote is cast."""
    vote_id: str
    market_id: int
    voter: str
    choice: Outcome
    staked_amount: float
    stake_weight: float
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vote_id": self.vote_id,
            "market_id": self.market_id,
            "voter": self.voter,
            "choice": self.choice.name,
            "staked_amount": self.staked_amount,
            "stake_weight": round(self.stake_weight, 6),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class TallyResult:
    """Weighted tally. outcome is None when the top weights tie or nobody voted."""
    outcome: Optional[Outcome]
    total_weight: float
    weights: Dict[str, float]
    tied: bool = False
    voter_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.name if self.outcome else None,
            "total_weight": round(self.total_weight, 6),
            "weights": {k: round(v, 6) for k, v in self.weights.items()},
            "tied": self.tied,
            "voter_count": self.voter_count,
        }


@dataclass
class DisputeSettlement:
    """Stake movements produced by finalizing a dispute."""
    market_id: int
    status: DisputeStatus
    outcome: Optional[Outcome]
    tally: Optional[TallyResult] = None
    slashed: Dict[str, float] = field(default_factory=dict)
    rewards: Dict[str, float] = field(default_factory=dict)
    correct_voters: List[str] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def slash_pool(self) -> float:
        return sum(self.slashed.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "market_id": self.market_id,
            "status": self.status.value,
            "outcome": self.outcome.name if self.outcome else None,
            "tally": self.tally.to_dict() if self.tally else None,
            "slashed": self.slashed,
            "rewards": self.rewards,
            "slash_pool": self.slash_pool,
            "correct_voters": self.correct_voters,
            "reason": self.reason,
        }
