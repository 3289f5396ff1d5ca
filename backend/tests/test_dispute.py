from __future__ import annotations

import asyncio
import threading

import pytest

from consensus.models import Outcome
from dispute.database import get_slash_events
from dispute.manager import compute_settlement, tally_weighted_votes
from dispute.models import DisputeStatus, DisputeVote, StakeTier, stake_weight, tier_for_stake
from errors import DisputeError
from fakes import FakeChain

ALICE = "0xAlice"
BOB = "0xBob"
CAROL = "0xCarol"


def open_with_stakes(manager, stakes, market_id=1):
    for voter, amount in stakes.items():
        manager.ledger.set_stake(voter, amount)
    return manager.open_dispute(market_id, Outcome.YES, challenger=BOB)


def test_quadratic_weights_decide_against_headcount(dispute_manager, clock) -> None:
    open_with_stakes(dispute_manager, {ALICE: 100, BOB: 400, CAROL: 25})
    dispute_manager.cast_vote(1, ALICE, Outcome.YES)
    dispute_manager.cast_vote(1, BOB, Outcome.NO)
    dispute_manager.cast_vote(1, CAROL, Outcome.YES)
    clock.advance(hours=49)

    tally = dispute_manager.tally_dispute_votes(1)

    assert tally.weights["YES"] == pytest.approx(15.0)
    assert tally.weights["NO"] == pytest.approx(20.0)
    assert tally.outcome == Outcome.NO
    assert not tally.tied


def test_finalize_slashes_losers_and_pays_winners(dispute_manager, clock) -> None:
    open_with_stakes(dispute_manager, {ALICE: 100, BOB: 400, CAROL: 25})
    dispute_manager.cast_vote(1, ALICE, Outcome.YES)
    dispute_manager.cast_vote(1, BOB, Outcome.NO)
    dispute_manager.cast_vote(1, CAROL, Outcome.YES)
    clock.advance(hours=49)

    settlement = dispute_manager.finalize_dispute(1)

    assert settlement.status == DisputeStatus.FINALIZED
    assert settlement.outcome == Outcome.NO
    assert settlement.slashed == pytest.approx({"0xalice": 20.0, "0xcarol": 5.0})
    assert settlement.rewards == pytest.approx({"0xbob": 25.0})

    ledger = dispute_manager.ledger
    assert ledger.get_stake(ALICE) == pytest.approx(80.0)
    assert ledger.get_stake(CAROL) == pytest.approx(20.0)
    assert ledger.get_stake(BOB) == pytest.approx(425.0)

    bob = ledger.get_position(BOB)
    assert bob.correct_votes == 1
    assert bob.total_votes == 1
    assert bob.accuracy == 1.0
    assert ledger.get_position(ALICE).accuracy == 0.0

    dispute = dispute_manager.get_dispute(1)
    assert dispute.status == DisputeStatus.FINALIZED
    assert dispute.final_outcome == Outcome.NO
    assert len(get_slash_events(market_id=1)) == 3


def test_rewards_split_by_stake_weight(dispute_manager, clock) -> None:
    open_with_stakes(dispute_manager, {ALICE: 100, BOB: 400, CAROL: 900})
    dispute_manager.cast_vote(1, ALICE, Outcome.YES)
    dispute_manager.cast_vote(1, BOB, Outcome.NO)
    dispute_manager.cast_vote(1, CAROL, Outcome.NO)
    clock.advance(hours=49)

    settlement = dispute_manager.finalize_dispute(1)

    # Pool 20 split 20:30 between Bob and Carol
    assert settlement.rewards["0xbob"] == pytest.approx(8.0)
    assert settlement.rewards["0xcarol"] == pytest.approx(12.0)


def test_concurrent_finalize_settles_once(dispute_manager, clock, monkeypatch) -> None:
    open_with_stakes(dispute_manager, {ALICE: 100, BOB: 400, CAROL: 25})
    dispute_manager.cast_vote(1, ALICE, Outcome.YES)
    dispute_manager.cast_vote(1, BOB, Outcome.NO)
    dispute_manager.cast_vote(1, CAROL, Outcome.YES)
    clock.advance(hours=49)

    # Both callers pass the status check before either one settles
    barrier = threading.Barrier(2, timeout=5)
    tally = dispute_manager.tally_dispute_votes

    def tally_together(market_id):
        result = tally(market_id)
        barrier.wait()
        return result

    monkeypatch.setattr(dispute_manager, "tally_dispute_votes", tally_together)
    settled, rejected = [], []

    def finalize():
        try:
            settled.append(dispute_manager.finalize_dispute(1))
        except DisputeError as e:
            rejected.append(e)

    threads = [threading.Thread(target=finalize) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=15)

    assert len(settled) == 1
    assert len(rejected) == 1
    assert "concurrently" in str(rejected[0])

    ledger = dispute_manager.ledger
    assert ledger.get_stake(ALICE) == pytest.approx(80.0)
    assert ledger.get_stake(BOB) == pytest.approx(425.0)
    assert ledger.get_stake(CAROL) == pytest.approx(20.0)
    assert ledger.get_position(BOB).total_votes == 1
    assert len(get_slash_events(market_id=1)) == 3


def test_force_finalize_after_settlement_is_rejected(dispute_manager, clock) -> None:
    open_with_stakes(dispute_manager, {ALICE: 100, BOB: 400})
    dispute_manager.cast_vote(1, ALICE, Outcome.YES)
    dispute_manager.cast_vote(1, BOB, Outcome.NO)
    clock.advance(hours=49)
    stale = dispute_manager.get_dispute(1)
    dispute_manager.finalize_dispute(1)

    # A caller that read the dispute before it was settled
    dispute_manager.get_dispute = lambda market_id: stale

    with pytest.raises(DisputeError, match="concurrently"):
        dispute_manager.force_finalize(1, Outcome.YES, "Governance reviewed the sources")
    assert dispute_manager.ledger.get_stake(ALICE) == pytest.approx(80.0)
    assert dispute_manager.ledger.get_stake(BOB) == pytest.approx(420.0)


def test_weighted_tie_escalates_without_slashing(dispute_manager, clock) -> None:
    open_with_stakes(dispute_manager, {ALICE: 100, BOB: 100})
    dispute_manager.cast_vote(1, ALICE, Outcome.YES)
    dispute_manager.cast_vote(1, BOB, Outcome.NO)
    clock.advance(hours=49)

    settlement = dispute_manager.finalize_dispute(1)

    assert settlement.status == DisputeStatus.ESCALATED
    assert settlement.outcome is None
    assert settlement.tally.tied
    assert settlement.slashed == {}
    assert dispute_manager.ledger.get_stake(ALICE) == 100
    assert dispute_manager.get_dispute(1).status == DisputeStatus.ESCALATED


def test_force_finalize_settles_escalated_dispute(dispute_manager, clock) -> None:
    open_with_stakes(dispute_manager, {ALICE: 100, BOB: 100})
    dispute_manager.cast_vote(1, ALICE, Outcome.YES)
    dispute_manager.cast_vote(1, BOB, Outcome.NO)
    clock.advance(hours=49)
    dispute_manager.finalize_dispute(1)

    settlement = dispute_manager.force_finalize(1, Outcome.YES, "Governance reviewed the sources")

    assert settlement.outcome == Outcome.YES
    assert dispute_manager.ledger.get_stake(BOB) == pytest.approx(80.0)
    assert dispute_manager.ledger.get_stake(ALICE) == pytest.approx(120.0)
    with pytest.raises(DisputeError, match="already finalized"):
        dispute_manager.force_finalize(1, Outcome.NO, "Second thoughts on this one")


def test_tally_refused_while_window_open(dispute_manager, clock) -> None:
    open_with_stakes(dispute_manager, {ALICE: 4})
    dispute_manager.cast_vote(1, ALICE, Outcome.YES)
    clock.advance(hours=47)

    with pytest.raises(DisputeError, match="still open"):
        dispute_manager.tally_dispute_votes(1)
    with pytest.raises(DisputeError, match="still open"):
        dispute_manager.finalize_dispute(1)


def test_vote_after_window_is_rejected(dispute_manager, clock) -> None:
    open_with_stakes(dispute_manager, {ALICE: 4})
    clock.advance(hours=48)

    with pytest.raises(DisputeError, match="closed"):
        dispute_manager.cast_vote(1, ALICE, Outcome.YES)


def test_one_vote_per_voter(dispute_manager) -> None:
    open_with_stakes(dispute_manager, {ALICE: 4})
    dispute_manager.cast_vote(1, ALICE, Outcome.YES)

    with pytest.raises(DisputeError, match="already voted"):
        dispute_manager.cast_vote(1, ALICE.upper(), Outcome.NO)
    assert len(dispute_manager.get_votes(1)) == 1


def test_voter_without_stake_is_rejected(dispute_manager) -> None:
    open_with_stakes(dispute_manager, {})

    with pytest.raises(DisputeError, match="no stake"):
        dispute_manager.cast_vote(1, ALICE, Outcome.YES)


def test_weight_is_snapshotted_at_cast_time(dispute_manager, clock) -> None:
    open_with_stakes(dispute_manager, {ALICE: 100, BOB: 400})
    dispute_manager.cast_vote(1, ALICE, Outcome.YES)
    dispute_manager.cast_vote(1, BOB, Outcome.NO)
    dispute_manager.ledger.deposit(ALICE, 900)
    clock.advance(hours=49)

    tally = dispute_manager.tally_dispute_votes(1)

    assert tally.weights["YES"] == pytest.approx(10.0)
    assert tally.outcome == Outcome.NO


def test_one_dispute_per_market(dispute_manager) -> None:
    dispute_manager.open_dispute(1, Outcome.YES, challenger=BOB)

    with pytest.raises(DisputeError, match="already has a dispute"):
        dispute_manager.open_dispute(1, Outcome.NO, challenger=CAROL)


def test_unknown_dispute_is_not_found(dispute_manager) -> None:
    with pytest.raises(DisputeError) as exc_info:
        dispute_manager.get_dispute(404)
    assert exc_info.value.not_found


def test_finalize_expired_disputes(dispute_manager, clock) -> None:
    open_with_stakes(dispute_manager, {ALICE: 9, BOB: 1}, market_id=1)
    dispute_manager.cast_vote(1, ALICE, Outcome.YES)
    dispute_manager.cast_vote(1, BOB, Outcome.NO)
    clock.advance(hours=24)
    dispute_manager.open_dispute(2, Outcome.NO, challenger=CAROL)
    clock.advance(hours=25)

    settlements = dispute_manager.finalize_expired_disputes()

    assert [s.market_id for s in settlements] == [1]
    assert settlements[0].outcome == Outcome.YES
    assert dispute_manager.get_dispute(2).status == DisputeStatus.OPEN


def test_sync_stake_from_chain(dispute_manager) -> None:
    chain = FakeChain()
    chain.stakers[ALICE] = {"staked_amount": 12.5}

    position = asyncio.run(dispute_manager.ledger.sync_from_chain(ALICE, chain))

    assert position.staked_amount == 12.5
    assert position.tier == StakeTier.GOLD


def test_slash_never_exceeds_current_stake() -> None:
    votes = [
        DisputeVote("v1", 1, "a", Outcome.YES, staked_amount=100, stake_weight=10),
        DisputeVote("v2", 1, "b", Outcome.NO, staked_amount=400, stake_weight=20),
    ]

    settlement = compute_settlement(1, votes, Outcome.NO, {"a": 50, "b": 400}, 0.2)

    assert settlement.slashed == {"a": pytest.approx(10.0)}
    assert settlement.rewards == {"b": pytest.approx(10.0)}


def test_empty_tally_is_unresolved() -> None:
    tally = tally_weighted_votes([])
    assert tally.outcome is None
    assert not tally.tied
    assert tally.total_weight == 0


@pytest.mark.parametrize(
    "stake, tier",
    [(0, StakeTier.NONE), (0.1, StakeTier.BRONZE), (1, StakeTier.SILVER), (10, StakeTier.GOLD),
     (50, StakeTier.PLATINUM), (100, StakeTier.DIAMOND)],
)
def test_tiers(stake, tier) -> None:
    assert tier_for_stake(stake) == tier


def test_stake_weight_is_square_root() -> None:
    assert stake_weight(25) == 5
    assert stake_weight(-1) == 0
