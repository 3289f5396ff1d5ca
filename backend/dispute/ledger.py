"""
Stake Ledger - Oraculum

Staker balances, accuracy and tiers. Arbitration reads stakes from here
and hands settlements back; deposits and chain sync write to it.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from dispute import database as db
from dispute.models import StakeTier, tier_for_stake

logger = logging.getLogger(__name__)


def normalize_address(address: str) -> str:
    return address.strip().lower()


@dataclass
class StakePosition:
    voter: str
    staked_amount: float = 0.0
    correct_votes: int = 0
    total_votes: int = 0
    slashed_total: float = 0.0
    rewarded_total: float = 0.0

    @property
    def tier(self) -> StakeTier:
        return tier_for_stake(self.staked_amount)

    @property
    def accuracy(self) -> float:
        if self.total_votes == 0:
            return 0.0
        return self.correct_votes / self.total_votes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "voter": self.voter,
            "staked_amount": self.staked_amount,
            "tier": self.tier.name,
            "correct_votes": self.correct_votes,
            "total_votes": self.total_votes,
            "accuracy": round(self.accuracy, 4),
            "slashed_total": self.slashed_total,
            "rewarded_total": self.rewarded_total,
        }


class StakeLedger:
    """SQLite-backed view of staker positions."""

    def get_position(self, voter: str) -> StakePosition:
        voter = normalize_address(voter)
        row = db.get_stake_position(voter)
        if row is None:
            return StakePosition(voter=voter)
        return StakePosition(
            voter=voter,
            staked_amount=row["staked_amount"],
            correct_votes=row["correct_votes"],
            total_votes=row["total_votes"],
            slashed_total=row["slashed_total"],
            rewarded_total=row["rewarded_total"],
        )

    def get_stake(self, voter: str) -> float:
        return self.get_position(voter).staked_amount

    def set_stake(self, voter: str, amount: float) -> StakePosition:
        if amount < 0:
            raise ValueError("Stake cannot be negative")
        voter = normalize_address(voter)
        db.upsert_stake(voter, amount, tier_for_stake(amount).value)
        return self.get_position(voter)

    def deposit(self, voter: str, amount: float) -> StakePosition:
        if amount <= 0:
            raise ValueError("Deposit must be positive")
        return self.set_stake(voter, self.get_stake(voter) + amount)

    def apply_settlement(self, market_id: int, updates: List[Dict[str, Any]],
                         dispute_updates: Dict[str, Any], from_statuses: Sequence[str]) -> bool:
        """Close the dispute and write stake movements atomically. False if already settled."""
        return db.apply_settlement(
            market_id, updates, dispute_updates, from_statuses,
            tier_for=lambda amount: tier_for_stake(amount).value,
        )

    async def sync_from_chain(self, voter: str, chain: Any) -> StakePosition:
        """Refresh a staker's balance from the ReputationStaking contract."""
        staker = await asyncio.to_thread(chain.get_staker, voter)
        position = self.set_stake(voter, staker["staked_amount"])
        logger.info(f"Synced stake for {position.voter}: {position.staked_amount} BNB ({position.tier.name})")
        return position
