from __future__ import annotations

import asyncio

import pytest

from consensus.engine import ConsensusEngine, tally_votes
from consensus.models import ConsensusSettings, Outcome, ProviderVote
from errors import NoQuorumError, ProviderError, ProviderErrorKind
from fakes import FakeAdapter, adapters_for, vote_json


def run(coro):
    return asyncio.run(coro)


def test_two_of_three_is_below_threshold() -> None:
    engine = ConsensusEngine(adapters_for(("YES", 90), ("YES", 70), ("NO", 60)))

    with pytest.raises(NoQuorumError) as exc_info:
        run(engine.get_consensus("Will it rain in Paris on 1 June?"))

    err = exc_info.value
    assert err.consensus_count == 2
    assert err.total_models == 3
    assert len(err.votes) == 3


def test_four_of_five_meets_threshold() -> None:
    engine = ConsensusEngine(adapters_for(
        ("YES", 90), ("YES", 80), ("YES", 70), ("YES", 60), ("NO", 95),
    ))

    result = run(engine.get_consensus("Did the ETF get approved?", market_id=7))

    assert result.outcome == Outcome.YES
    assert result.market_id == 7
    assert result.consensus_count == 4
    assert result.total_models == 5
    assert result.agreement_ratio == pytest.approx(0.8)
    # mean(80, mean(90, 80, 70, 60))
    assert result.confidence == pytest.approx((80 + 75) / 2)


def test_unanimous_confidence() -> None:
    engine = ConsensusEngine(adapters_for(("NO", 100), ("NO", 80), ("NO", 90)))
    result = run(engine.get_consensus("Q"))
    assert result.outcome == Outcome.NO
    assert result.confidence == pytest.approx((100 + 90) / 2)


def test_provider_failure_below_quorum() -> None:
    adapters = adapters_for(("YES", 90), ("YES", 90))
    adapters.append(FakeAdapter("broken", error=ProviderError("401 unauthorized", ProviderErrorKind.PERMANENT)))
    engine = ConsensusEngine(adapters)

    with pytest.raises(NoQuorumError) as exc_info:
        run(engine.get_consensus("Q"))

    assert exc_info.value.total_models == 2
    abstained = [v for v in exc_info.value.votes if v.is_abstention]
    assert [v.provider_id for v in abstained] == ["broken"]


def test_abstentions_do_not_count_against_agreement() -> None:
    adapters = adapters_for(("YES", 80), ("YES", 80), ("YES", 80))
    adapters.append(FakeAdapter("garbled", text="I am not sure what you mean."))
    adapters.append(FakeAdapter("crashed", error=RuntimeError("boom")))
    engine = ConsensusEngine(adapters)

    result = run(engine.get_consensus("Q"))

    assert result.outcome == Outcome.YES
    assert result.total_models == 3
    assert result.agreement_ratio == pytest.approx(1.0)
    assert {v.provider_id for v in result.abstentions} == {"garbled", "crashed"}


def test_slow_provider_times_out_as_abstention() -> None:
    class SlowAdapter(FakeAdapter):
        async def call(self, prompt, system_prompt=None):
            await asyncio.sleep(5)
            return await super().call(prompt, system_prompt)

    adapters = adapters_for(("NO", 70), ("NO", 70), ("NO", 70))
    adapters.append(SlowAdapter("slow", vote_json("YES", 99)))
    engine = ConsensusEngine(adapters, ConsensusSettings(provider_timeout=0.05))

    result = run(engine.get_consensus("Q"))

    assert result.outcome == Outcome.NO
    assert result.total_models == 3
    slow_vote = next(v for v in result.votes if v.provider_id == "slow")
    assert slow_vote.abstain_reason == "timeout"


def test_tie_resolves_to_invalid() -> None:
    votes = [
        ProviderVote("a", "m", Outcome.YES, 90),
        ProviderVote("b", "m", Outcome.NO, 90),
    ]
    tally = tally_votes(votes)
    assert tally.outcome == Outcome.INVALID
    assert tally.consensus_count == 0
    assert tally.total_models == 2


def test_tie_with_invalid_votes_decides_invalid() -> None:
    votes = [
        ProviderVote("a", "m", Outcome.YES, 90),
        ProviderVote("b", "m", Outcome.NO, 90),
        ProviderVote("c", "m", Outcome.INVALID, 60),
        ProviderVote("d", "m", Outcome.INVALID, 40),
        ProviderVote("e", "m", Outcome.YES, 70),
        ProviderVote("f", "m", Outcome.NO, 70),
    ]
    engine = ConsensusEngine([], ConsensusSettings(agreement_threshold=0.3))

    result = engine.decide(votes, 0.3)

    assert result.outcome == Outcome.INVALID
    assert result.consensus_count == 2
    assert result.confidence == pytest.approx((2 / 6 * 100 + 50) / 2)


def test_custom_threshold_per_call() -> None:
    engine = ConsensusEngine(adapters_for(("YES", 90), ("YES", 70), ("NO", 60)))
    result = run(engine.get_consensus("Q", agreement_threshold=0.6))
    assert result.outcome == Outcome.YES
    assert result.consensus_count == 2


def test_result_serialization() -> None:
    engine = ConsensusEngine(adapters_for(("YES", 90), ("YES", 90), ("YES", 90)))
    payload = run(engine.get_consensus("Q", market_id=3)).to_dict()
    assert payload["outcome"] == 1
    assert payload["outcomeLabel"] == "YES"
    assert payload["consensusCount"] == 3
    assert payload["totalModels"] == 3
    assert len(payload["votes"]) == 3
