"""
Dispute Arbitration - Oraculum

Stake-weighted community arbitration of contested resolutions.
"""

from dispute.models import (
    DisputeStatus,
    StakeTier,
    DisputeConfig,
    Dispute,
    DisputeVote,
    TallyResult,
    DisputeSettlement,
    stake_weight,
    tier_for_stake,
)
from dispute.ledger import StakeLedger, StakePosition
from dispute.manager import (
    DisputeManager,
    compute_settlement,
    tally_weighted_votes,
)

__all__ = [
    "DisputeStatus",
    "StakeTier",
    "DisputeConfig",
    "Dispute",
    "DisputeVote",
    "TallyResult",
    "DisputeSettlement",
    "stake_weight",
    "tier_for_stake",
    "StakeLedger",
    "StakePosition",
    "DisputeManager",
    "compute_settlement",
    "tally_weighted_votes",
]
