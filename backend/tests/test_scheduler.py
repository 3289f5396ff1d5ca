from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

import scheduler as scheduler_module
from chain.models import MarketStatus
from config import SchedulerSettings
from consensus.engine import ConsensusEngine
from fakes import FakeChain, adapters_for, no_sleep
from resolution.submitter import DirectStrategy, ResolutionSubmitter
from resolution.watcher import ChainEventWatcher
from scheduler import BackgroundScheduler, setup_scheduler, shutdown_scheduler


def test_job_repeats_until_stopped() -> None:
    calls = []

    async def job():
        calls.append(1)

    async def scenario():
        sched = BackgroundScheduler()
        await sched.start()
        sched.schedule_periodic("tick", job, interval_seconds=0.01, run_immediately=True)
        await asyncio.sleep(0.1)
        await sched.stop()
        return sched

    sched = asyncio.run(scenario())

    assert len(calls) >= 2
    assert sched.status()["running"] is False
    assert sched.stats["tick"].runs == len(calls)


def test_failing_job_is_recorded_and_keeps_running() -> None:
    async def job():
        raise RuntimeError("rpc down")

    async def scenario():
        sched = BackgroundScheduler()
        await sched.start()
        sched.schedule_periodic("broken", job, interval_seconds=0.01, run_immediately=True)
        await asyncio.sleep(0.05)
        status = sched.status()
        await sched.stop()
        return status

    status = asyncio.run(scenario())

    job_status = status["jobs"]["broken"]
    assert job_status["failures"] >= 2
    assert job_status["last_error"] == "rpc down"
    assert job_status["active"] is True


def test_delayed_job_does_not_run_before_interval() -> None:
    calls = []

    async def job():
        calls.append(1)

    async def scenario():
        sched = BackgroundScheduler()
        await sched.start()
        sched.schedule_periodic("later", job, interval_seconds=60)
        await asyncio.sleep(0.02)
        await sched.stop()

    asyncio.run(scenario())

    assert calls == []


def test_schedule_requires_started_scheduler() -> None:
    async def job():
        return None

    with pytest.raises(RuntimeError):
        BackgroundScheduler().schedule_periodic("tick", job, interval_seconds=1)


def test_setup_runs_oracle_check_immediately(monkeypatch, dispute_manager) -> None:
    monkeypatch.setattr(scheduler_module, "_scheduler", None)
    chain = FakeChain({4: "Will it happen?"})
    engine = ConsensusEngine(adapters_for(("YES", 90), ("YES", 90), ("YES", 90)))
    submitter = ResolutionSubmitter(chain, DirectStrategy(chain), sleep=no_sleep)
    services = SimpleNamespace(
        watcher=ChainEventWatcher(chain, engine, submitter),
        disputes=dispute_manager,
    )
    settings = SchedulerSettings(enabled=True, oracle_check_interval=60, dispute_check_interval=60)

    async def scenario():
        sched = await setup_scheduler(services, settings)
        for _ in range(50):
            if chain.statuses[4] == MarketStatus.RESOLVED:
                break
            await asyncio.sleep(0.01)
        status = sched.status()
        await shutdown_scheduler()
        return status

    status = asyncio.run(scenario())

    assert chain.statuses[4] == MarketStatus.RESOLVED
    assert status["jobs"]["oracle_check"]["runs"] == 1
    assert status["jobs"]["finalize_disputes"]["runs"] == 0
