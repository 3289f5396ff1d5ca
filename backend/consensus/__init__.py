"""
Consensus Engine - Oraculum

Threshold-gated multi-model consensus for market resolution.
"""

from consensus.models import (
    Outcome,
    ConsensusSettings,
    ResolutionRequest,
    ProviderVote,
    VoteTally,
    ConsensusResult,
)
from consensus.parser import parse_vote
from consensus.engine import ConsensusEngine, tally_votes

__all__ = [
    "Outcome",
    "ConsensusSettings",
    "ResolutionRequest",
    "ProviderVote",
    "VoteTally",
    "ConsensusResult",
    "parse_vote",
    "ConsensusEngine",
    "tally_votes",
]
