"""
Error Taxonomy - Oraculum

Every failure the resolution pipeline can raise:
- ProviderError: one AI provider failed (recovered locally as an abstention)
- NoQuorumError: not enough agreeing votes, market stays in Resolving
- SubmissionError: on-chain write failed (retryable or fatal)
- AuthenticationError: inbound request rejected
- DisputeError: invalid dispute operation
- ChainError: RPC/contract read failed
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class OracleError(Exception):
    """Base class for all pipeline errors."""


class ProviderErrorKind(Enum):
    TRANSIENT = "transient"   # timeout, rate limit, 5xx
    PERMANENT = "permanent"   # auth, malformed request, chain exhausted


class ProviderError(OracleError):
    """An AI provider call failed."""

    def __init__(self, message: str, kind: ProviderErrorKind = ProviderErrorKind.PERMANENT,
                 provider: Optional[str] = None, model: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.provider = provider
        self.model = model


class NoQuorumError(OracleError):
    """
    Raised when a consensus round cannot reach a decision.

    Carries the round's tally so callers can log and audit it. The market
    must be left untouched for a later retry.
    """

    def __init__(
        self,
        message: str,
        consensus_count: int = 0,
        total_models: int = 0,
        votes: Optional[List[Any]] = None,
    ):
        super().__init__(message)
        self.consensus_count = consensus_count
        self.total_models = total_models
        self.votes = votes or []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reason": str(self),
            "consensusCount": self.consensus_count,
            "totalModels": self.total_models,
            "votes": [v.to_dict() for v in self.votes],
        }


class SubmissionError(OracleError):
    """An on-chain resolution write failed."""

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        market_id: Optional[int] = None,
        outcome_unknown: bool = False,
    ):
        super().__init__(message)
        self.retryable = retryable
        self.market_id = market_id
        # The request may have been accepted before the failure surfaced
        self.outcome_unknown = outcome_unknown

    @property
    def is_fatal(self) -> bool:
        return not self.retryable


class AuthenticationError(OracleError):
    """Inbound request failed authentication."""


class DisputeError(OracleError):
    """Invalid dispute operation (closed window, duplicate vote, unknown dispute...)."""

    def __init__(self, message: str, not_found: bool = False):
        super().__init__(message)
        self.not_found = not_found


class ChainError(OracleError):
    """Reading on-chain state failed."""
