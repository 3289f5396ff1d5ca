"""
Consensus Models - Oraculum

Data models for one consensus round: the request, each provider's vote
(or abstention) and the accepted result.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Outcome(Enum):
    """Market outcomes, valued as the contract's uint8 encoding."""
    YES = 1
    NO = 2
    INVALID = 3

    @classmethod
    def from_label(cls, label: str) -> Optional["Outcome"]:
        """Map free-form labels ("yes", "TRUE", "3"...) to an outcome."""
        if label is None:
            return None
        normalized = str(label).strip().upper()
        aliases = {
            "YES": cls.YES, "Y": cls.YES, "TRUE": cls.YES, "1": cls.YES,
            "NO": cls.NO, "N": cls.NO, "FALSE": cls.NO, "2": cls.NO,
            "INVALID": cls.INVALID, "UNCERTAIN": cls.INVALID, "UNKNOWN": cls.INVALID,
            "UNDETERMINED": cls.INVALID, "3": cls.INVALID,
        }
        return aliases.get(normalized)


@dataclass(frozen=True)
class ConsensusSettings:
    """Policy parameters for a consensus round."""
    agreement_threshold: float = 0.8
    min_quorum: int = 3
    provider_timeout: float = 45.0   # Per-provider budget, whole fallback chain included
    round_timeout: float = 120.0     # Outer ceiling for one round


@dataclass
class ResolutionRequest:
    """A market found in Resolving state, consumed once per pipeline run."""
    market_id: int
    question: str
    context: Optional[str] = None
    price_context: Optional[str] = None
    requested_at: datetime = field(default_factory=utc_now)


@dataclass
class ProviderVote:
    """
    One provider's answer for a round.

    Either a vote (outcome set) or an abstention (outcome None, abstain_reason set).
    """
    provider_id: str
    model_used: Optional[str]
    outcome: Optional[Outcome]
    confidence: float = 0.0
    raw_text: str = ""
    abstain_reason: Optional[str] = None

    @classmethod
    def abstain(
        cls,
        provider_id: str,
        reason: str,
        model_used: Optional[str] = None,
        raw_text: str = "",
    ) -> "ProviderVote":
        return cls(
            provider_id=provider_id,
            model_used=model_used,
            outcome=None,
            confidence=0.0,
            raw_text=raw_text,
            abstain_reason=reason,
        )

    @property
    def is_abstention(self) -> bool:
        return self.outcome is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "providerId": self.provider_id,
            "modelUsed": self.model_used,
            "outcome": self.outcome.name if self.outcome else "ABSTAIN",
            "confidence": self.confidence,
            "abstainReason": self.abstain_reason,
            "rawText": self.raw_text[:500],
        }


@dataclass
class VoteTally:
    """Pure reduction of a round's votes."""
    outcome: Outcome
    consensus_count: int
    total_models: int
    breakdown: Dict[str, int]

    @property
    def agreement_ratio(self) -> float:
        if self.total_models == 0:
            return 0.0
        return self.consensus_count / self.total_models


@dataclass
class ConsensusResult:
    """An accepted consensus outcome for a market."""
    market_id: Optional[int]
    outcome: Outcome
    confidence: float
    consensus_count: int
    total_models: int
    votes: List[ProviderVote]
    computed_at: datetime = field(default_factory=utc_now)

    @property
    def agreement_ratio(self) -> float:
        return self.consensus_count / self.total_models

    @property
    def abstentions(self) -> List[ProviderVote]:
        return [v for v in self.votes if v.is_abstention]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "marketId": self.market_id,
            "outcome": self.outcome.value,
            "outcomeLabel": self.outcome.name,
            "confidence": round(self.confidence, 2),
            "consensusCount": self.consensus_count,
            "totalModels": self.total_models,
            "votes": [v.to_dict() for v in self.votes],
            "computedAt": self.computed_at.isoformat(),
        }
