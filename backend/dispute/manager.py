"""
Dispute Manager - Oraculum

Core operations for stake-weighted arbitration:
- Open disputes against a submitted resolution
- Cast votes (quadratic weight, one per voter, window only)
- Tally and finalize (slash losers, redistribute to winners)
- Governance tie-break for escalated disputes

Persistence is SQLite (dispute.database); stake balances live in the ledger.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from consensus.models import Outcome
from dispute import database as db
from dispute.ledger import StakeLedger, normalize_address
from dispute.models import (
    Dispute,
    DisputeConfig,
    DisputeSettlement,
    DisputeStatus,
    DisputeVote,
    TallyResult,
    generate_vote_id,
    stake_weight,
    utc_now,
)
from errors import DisputeError

logger = logging.getLogger(__name__)

_WEIGHT_EPSILON = 1e-9


def tally_weighted_votes(votes: List[DisputeVote]) -> TallyResult:
    """Sum snapshotted weights per outcome. Equal top weights leave the dispute unresolved."""
    weights = {o.name: 0.0 for o in Outcome}
    for vote in votes:
        weights[vote.choice.name] += vote.stake_weight
    total = sum(weights.values())

    if total <= 0:
        return TallyResult(outcome=None, total_weight=0.0, weights=weights, voter_count=len(votes))

    top = max(weights.values())
    leaders = [name for name, w in weights.items() if abs(w - top) <= _WEIGHT_EPSILON]
    if len(leaders) > 1:
        return TallyResult(outcome=None, total_weight=total, weights=weights, tied=True,
                           voter_count=len(votes))

    return TallyResult(outcome=Outcome[leaders[0]], total_weight=total, weights=weights,
                       voter_count=len(votes))


def compute_settlement(
    market_id: int,
    votes: List[DisputeVote],
    outcome: Outcome,
    current_stakes: Dict[str, float],
    slash_percentage: float,
) -> DisputeSettlement:
    """
    Slash every voter who chose differently from outcome and split the pool
    among correct voters pro-rata by stake weight.

    A voter is never slashed for more than they currently hold.
    """
    slashed: Dict[str, float] = {}
    for vote in votes:
        if vote.choice != outcome:
            base = min(vote.staked_amount, current_stakes.get(vote.voter, 0.0))
            slashed[vote.voter] = base * slash_percentage

    winners = [v for v in votes if v.choice == outcome]
    winner_weight = sum(v.stake_weight for v in winners)
    pool = sum(slashed.values())

    rewards: Dict[str, float] = {}
    if winner_weight > 0 and pool > 0:
        for vote in winners:
            rewards[vote.voter] = pool * vote.stake_weight / winner_weight

    return DisputeSettlement(
        market_id=market_id,
        status=DisputeStatus.FINALIZED,
        outcome=outcome,
        slashed=slashed,
        rewards=rewards,
        correct_voters=[v.voter for v in winners],
    )


class DisputeManager:
    """
    Manages dispute arbitration.
    Uses SQLite for persistent storage.
    """

    def __init__(
        self,
        config: DisputeConfig = None,
        ledger: Optional[StakeLedger] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.config = config or DisputeConfig()
        self.ledger = ledger or StakeLedger()
        self._now = now

        db.init_database()
        logger.info(
            f"Dispute manager initialized (slash={self.config.slash_percentage:.0%}, "
            f"window={self.config.window_hours}h)"
        )

    # ==================== DISPUTES ====================

    def open_dispute(
        self,
        market_id: int,
        original_outcome: Outcome,
        challenger: str,
        window_hours: Optional[float] = None,
    ) -> Dispute:
        """Open a dispute on a market's resolution. One dispute per market."""
        hours = window_hours if window_hours is not None else self.config.window_hours
        if hours <= 0:
            raise DisputeError("Dispute window must be positive")

        dispute = Dispute.open(market_id, original_outcome, normalize_address(challenger), hours, self._now())
        try:
            db.create_dispute({
                "market_id": dispute.market_id,
                "original_outcome": dispute.original_outcome.value,
                "challenger": dispute.challenger,
                "opened_at": dispute.opened_at.isoformat(),
                "window_ends_at": dispute.window_ends_at.isoformat(),
            })
        except sqlite3.IntegrityError:
            raise DisputeError(f"Market {market_id} already has a dispute")

        logger.info(f"Dispute opened on market {market_id} by {dispute.challenger}, closes {dispute.window_ends_at}")
        return dispute

    def get_dispute(self, market_id: int) -> Dispute:
        row = db.get_dispute(market_id)
        if row is None:
            raise DisputeError(f"No dispute for market {market_id}", not_found=True)
        return self._row_to_dispute(row)

    def get_votes(self, market_id: int) -> List[DisputeVote]:
        return [self._row_to_vote(row) for row in db.get_votes_for_dispute(market_id)]

    # ==================== VOTING ====================

    def cast_vote(self, market_id: int, voter_address: str, choice: Outcome) -> DisputeVote:
        """Record a stake-weighted vote. The weight is fixed at cast time."""
        dispute = self.get_dispute(market_id)
        if dispute.status != DisputeStatus.OPEN:
            raise DisputeError(f"Dispute on market {market_id} is {dispute.status.value}")

        now = self._now()
        if not dispute.is_window_open(now):
            raise DisputeError(f"Voting window for market {market_id} closed at {dispute.window_ends_at}")

        voter = normalize_address(voter_address)
        staked = self.ledger.get_stake(voter)
        if staked <= self.config.min_stake_to_vote:
            raise DisputeError(f"{voter} has no stake to vote with")

        vote = DisputeVote(
            vote_id=generate_vote_id(),
            market_id=market_id,
            voter=voter,
            choice=choice,
            staked_amount=staked,
            stake_weight=stake_weight(staked),
            created_at=now,
        )
        try:
            db.create_vote({
                "vote_id": vote.vote_id,
                "market_id": market_id,
                "voter": voter,
                "choice": choice.value,
                "staked_amount": staked,
                "stake_weight": vote.stake_weight,
                "created_at": now.isoformat(),
            })
        except sqlite3.IntegrityError:
            raise DisputeError(f"{voter} has already voted on market {market_id}")

        logger.info(f"Vote on market {market_id}: {voter} -> {choice.name} (weight {vote.stake_weight:.3f})")
        return vote

    # ==================== TALLY & FINALIZATION ====================

    def tally_dispute_votes(self, market_id: int) -> TallyResult:
        """Weighted tally. Refused while the voting window is open."""
        dispute = self.get_dispute(market_id)
        if dispute.is_window_open(self._now()):
            raise DisputeError(f"Voting window for market {market_id} is still open")
        return tally_weighted_votes(self.get_votes(market_id))

    def finalize_dispute(self, market_id: int) -> DisputeSettlement:
        """
        Tally and settle a dispute whose window has closed.

        A weighted tie (or no votes) escalates the dispute to governance
        without moving any stake.
        """
        dispute = self.get_dispute(market_id)
        if dispute.status != DisputeStatus.OPEN:
            raise DisputeError(f"Dispute on market {market_id} is already {dispute.status.value}")

        tally = self.tally_dispute_votes(market_id)
        if tally.outcome is None:
            reason = "Weighted tie" if tally.tied else "No votes cast"
            escalated = db.update_dispute(market_id, {
                "status": DisputeStatus.ESCALATED.value,
                "resolution_reason": f"{reason}, escalated to governance",
            }, from_statuses=(DisputeStatus.OPEN.value,))
            if not escalated:
                raise DisputeError(f"Dispute on market {market_id} was settled concurrently")
            logger.warning(f"Dispute on market {market_id} escalated: {reason}")
            return DisputeSettlement(
                market_id=market_id,
                status=DisputeStatus.ESCALATED,
                outcome=None,
                tally=tally,
                reason=reason,
            )

        settlement = self._settle(
            market_id, tally.outcome, reason="Stake-weighted vote",
            from_statuses=(DisputeStatus.OPEN.value,),
        )
        settlement.tally = tally
        return settlement

    def force_finalize(self, market_id: int, outcome: Outcome, reason: str) -> DisputeSettlement:
        """Governance decision for an escalated (or stalled) dispute."""
        dispute = self.get_dispute(market_id)
        if dispute.status == DisputeStatus.FINALIZED:
            raise DisputeError(f"Dispute on market {market_id} is already finalized")
        if dispute.is_window_open(self._now()):
            raise DisputeError(f"Voting window for market {market_id} is still open")

        settlement = self._settle(
            market_id, outcome, reason=f"Governance: {reason}",
            from_statuses=(DisputeStatus.OPEN.value, DisputeStatus.ESCALATED.value),
        )
        settlement.tally = tally_weighted_votes(self.get_votes(market_id))
        logger.info(f"Dispute on market {market_id} force-finalized to {outcome.name}: {reason}")
        return settlement

    def finalize_expired_disputes(self) -> List[DisputeSettlement]:
        """Finalize every open dispute whose window has closed."""
        now = self._now()
        settlements = []
        for row in db.get_disputes_by_status(DisputeStatus.OPEN.value):
            dispute = self._row_to_dispute(row)
            if dispute.is_window_open(now):
                continue
            try:
                settlements.append(self.finalize_dispute(dispute.market_id))
            except DisputeError as e:
                logger.error(f"Failed to finalize dispute on market {dispute.market_id}: {e}")
        return settlements

    def _settle(
        self,
        market_id: int,
        outcome: Outcome,
        reason: str,
        from_statuses: Tuple[str, ...],
    ) -> DisputeSettlement:
        votes = self.get_votes(market_id)
        stakes = {v.voter: self.ledger.get_stake(v.voter) for v in votes}
        settlement = compute_settlement(
            market_id, votes, outcome, stakes, self.config.slash_percentage
        )
        settlement.reason = reason

        updates = []
        for vote in votes:
            slashed = settlement.slashed.get(vote.voter, 0.0)
            rewarded = settlement.rewards.get(vote.voter, 0.0)
            updates.append({
                "voter": vote.voter,
                "correct": vote.choice == outcome,
                "slashed": slashed,
                "rewarded": rewarded,
            })

        applied = self.ledger.apply_settlement(market_id, updates, {
            "status": DisputeStatus.FINALIZED.value,
            "final_outcome": outcome.value,
            "resolution_reason": reason,
            "finalized_at": self._now().isoformat(),
        }, from_statuses)
        if not applied:
            raise DisputeError(f"Dispute on market {market_id} was settled concurrently")

        logger.info(
            f"Dispute on market {market_id} finalized to {outcome.name}: "
            f"{len(settlement.slashed)} slashed, pool {settlement.slash_pool:.4f}"
        )
        return settlement

    # ==================== ROW MAPPING ====================

    def _row_to_dispute(self, row: Dict) -> Dispute:
        return Dispute(
            market_id=row["market_id"],
            original_outcome=Outcome(row["original_outcome"]),
            challenger=row["challenger"],
            opened_at=datetime.fromisoformat(row["opened_at"]),
            window_ends_at=datetime.fromisoformat(row["window_ends_at"]),
            status=DisputeStatus(row["status"]),
            final_outcome=Outcome(row["final_outcome"]) if row["final_outcome"] else None,
            resolution_reason=row["resolution_reason"],
            finalized_at=datetime.fromisoformat(row["finalized_at"]) if row["finalized_at"] else None,
        )

    def _row_to_vote(self, row: Dict) -> DisputeVote:
        return DisputeVote(
            vote_id=row["vote_id"],
            market_id=row["market_id"],
            voter=row["voter"],
            choice=Outcome(row["choice"]),
            staked_amount=row["staked_amount"],
            stake_weight=row["stake_weight"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
