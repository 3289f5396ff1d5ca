"""
Consensus Engine - Oraculum

Fans a resolution prompt out to every configured provider and reduces the
replies into one threshold-gated outcome.

Round algorithm:
1. One concurrent call per provider, each under its own timeout
2. Parse every reply into (outcome, confidence); failures become abstentions
3. total_models = non-abstaining votes
4. Plurality among YES/NO/INVALID, ties resolve to INVALID
5. agreement_ratio = consensus_count / total_models
6. Accept iff agreement_ratio >= threshold AND total_models >= min_quorum
7. Otherwise raise NoQuorumError (the market is retried on a later tick)

A single provider failure never fails a round; only systemic insufficiency does.
"""

import asyncio
import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

from consensus.models import (
    ConsensusResult,
    ConsensusSettings,
    Outcome,
    ProviderVote,
    VoteTally,
)
from consensus.parser import parse_vote
from consensus.prompts import RESOLUTION_SYSTEM_PROMPT, build_resolution_prompt
from errors import NoQuorumError, ProviderError

logger = logging.getLogger(__name__)

# Float slack so 4/5 compares equal to a 0.8 threshold
_RATIO_EPSILON = 1e-9


def tally_votes(votes: Sequence[ProviderVote]) -> VoteTally:
    """
    Reduce a round's votes. Abstentions are excluded from the denominator.

    Ties for the plurality resolve to INVALID.
    """
    counted = [v for v in votes if not v.is_abstention]
    counts = Counter(v.outcome for v in counted)
    breakdown = {o.name: counts.get(o, 0) for o in Outcome}

    if not counted:
        return VoteTally(Outcome.INVALID, 0, 0, breakdown)

    top = max(counts.values())
    leaders = [o for o, c in counts.items() if c == top]
    majority = leaders[0] if len(leaders) == 1 else Outcome.INVALID

    return VoteTally(
        outcome=majority,
        consensus_count=counts.get(majority, 0),
        total_models=len(counted),
        breakdown=breakdown,
    )


class ConsensusEngine:
    """
    Multi-provider consensus for market resolution.

    Takes an immutable ConsensusSettings and a list of provider adapters
    (anything with provider_id and async call(prompt, system_prompt)).
    """

    def __init__(self, adapters: List[Any], settings: Optional[ConsensusSettings] = None):
        self.adapters = list(adapters)
        self.settings = settings or ConsensusSettings()
        logger.info(
            f"ConsensusEngine initialized with {len(self.adapters)} providers "
            f"(threshold={self.settings.agreement_threshold}, quorum={self.settings.min_quorum})"
        )

    async def _collect_vote(self, adapter: Any, prompt: str) -> ProviderVote:
        provider_id = adapter.provider_id
        try:
            reply = await asyncio.wait_for(
                adapter.call(prompt, RESOLUTION_SYSTEM_PROMPT),
                timeout=self.settings.provider_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Consensus: {provider_id} timed out after {self.settings.provider_timeout}s")
            return ProviderVote.abstain(provider_id, "timeout")
        except ProviderError as e:
            logger.warning(f"Consensus: {provider_id} abstained ({e.kind.value}): {str(e)[:150]}")
            return ProviderVote.abstain(provider_id, f"provider_error: {str(e)[:200]}")
        except Exception as e:
            logger.warning(f"Consensus: {provider_id} failed unexpectedly: {e}")
            return ProviderVote.abstain(provider_id, f"unexpected_error: {str(e)[:200]}")

        parsed = parse_vote(reply.text)
        if parsed is None:
            logger.warning(f"Consensus: {provider_id}/{reply.model_used} reply unparsable")
            return ProviderVote.abstain(
                provider_id, "unparsable_response", model_used=reply.model_used, raw_text=reply.text
            )

        outcome, confidence = parsed
        logger.info(f"Consensus: {provider_id}/{reply.model_used} voted {outcome.name} ({confidence:.0f})")
        return ProviderVote(
            provider_id=provider_id,
            model_used=reply.model_used,
            outcome=outcome,
            confidence=confidence,
            raw_text=reply.text,
        )

    async def collect_votes(self, prompt: str) -> List[ProviderVote]:
        """Query every provider in parallel; per-provider failures become abstentions."""
        return list(await asyncio.gather(*[
            self._collect_vote(adapter, prompt) for adapter in self.adapters
        ]))

    def decide(
        self,
        votes: List[ProviderVote],
        agreement_threshold: float,
        market_id: Optional[int] = None,
    ) -> ConsensusResult:
        """Apply the threshold and quorum gates to a set of votes."""
        tally = tally_votes(votes)
        min_quorum = self.settings.min_quorum

        if tally.total_models < min_quorum:
            raise NoQuorumError(
                f"Quorum not met: {tally.total_models} valid vote(s) < {min_quorum}",
                consensus_count=tally.consensus_count,
                total_models=tally.total_models,
                votes=votes,
            )

        ratio = tally.agreement_ratio
        if ratio + _RATIO_EPSILON < agreement_threshold:
            raise NoQuorumError(
                f"Agreement {ratio:.3f} below threshold {agreement_threshold} "
                f"({tally.consensus_count}/{tally.total_models} for {tally.outcome.name})",
                consensus_count=tally.consensus_count,
                total_models=tally.total_models,
                votes=votes,
            )

        majority_votes = [v for v in votes if v.outcome == tally.outcome]
        mean_confidence = (
            sum(v.confidence for v in majority_votes) / len(majority_votes) if majority_votes else 0.0
        )
        confidence = (ratio * 100 + mean_confidence) / 2

        return ConsensusResult(
            market_id=market_id,
            outcome=tally.outcome,
            confidence=confidence,
            consensus_count=tally.consensus_count,
            total_models=tally.total_models,
            votes=votes,
        )

    async def get_consensus(
        self,
        question: str,
        context: Optional[str] = None,
        agreement_threshold: Optional[float] = None,
        market_id: Optional[int] = None,
        price_context: Optional[str] = None,
    ) -> ConsensusResult:
        """
        Run one consensus round.

        Raises NoQuorumError when the votes are insufficient to decide.
        """
        threshold = agreement_threshold if agreement_threshold is not None \
            else self.settings.agreement_threshold
        prompt = build_resolution_prompt(question, context, price_context)

        votes = await self.collect_votes(prompt)
        abstained = sum(1 for v in votes if v.is_abstention)
        if abstained:
            logger.info(f"Consensus round for market {market_id}: {abstained}/{len(votes)} abstention(s)")

        result = self.decide(votes, threshold, market_id=market_id)
        logger.info(
            f"Consensus reached for market {market_id}: {result.outcome.name} "
            f"({result.consensus_count}/{result.total_models}, confidence {result.confidence:.1f})"
        )
        return result

    def get_provider_status(self) -> Dict[str, Any]:
        """Get status of all configured providers."""
        status = {}
        for adapter in self.adapters:
            status[adapter.provider_id] = adapter.status() if hasattr(adapter, "status") else {}
        return status
