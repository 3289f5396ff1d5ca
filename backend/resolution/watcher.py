"""
Chain Event Watcher - Oraculum

Poll-and-diff driver for the resolution pipeline. Each tick:
1. List markets whose on-chain status is RESOLVING
2. Re-check each market's status right before acting
3. Run a consensus round under the round timeout
4. Re-check status again, then hand the outcome to the submitter

No quorum and round timeouts defer the market to the next tick. Markets
are processed concurrently up to max_concurrent_markets.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from chain.models import MarketStatus
from consensus.models import ConsensusResult, ResolutionRequest
from errors import ChainError, NoQuorumError, SubmissionError
from resolution.history import (
    STATUS_DEFERRED,
    STATUS_FAILED,
    STATUS_SUBMITTED,
    ResolutionRecord,
    generate_record_id,
)

logger = logging.getLogger(__name__)

PROCESSED = "processed"
DEFERRED = "deferred"
SKIPPED = "skipped"
ERROR = "error"


@dataclass
class WatcherTickResult:
    checked: int = 0
    processed: int = 0
    errors: int = 0
    deferred: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class ChainEventWatcher:
    """Finds markets awaiting resolution and drives them through consensus and submission."""

    def __init__(
        self,
        chain: Any,
        engine: Any,
        submitter: Any,
        history: Optional[Any] = None,
        round_timeout: float = 120.0,
        max_concurrent_markets: int = 4,
    ):
        self.chain = chain
        self.engine = engine
        self.submitter = submitter
        self.history = history
        self.round_timeout = round_timeout
        self.max_concurrent_markets = max(1, max_concurrent_markets)
        self._initialized = False
        self.last_tick: Optional[WatcherTickResult] = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Bind to the contracts. Calling it again is a no-op."""
        if self._initialized:
            return
        await asyncio.to_thread(self.chain.connect)
        self._initialized = True
        logger.info("Chain event watcher initialized")

    async def check_pending_resolutions(self) -> WatcherTickResult:
        """Run one tick over every market currently in RESOLVING."""
        await self.initialize()
        result = WatcherTickResult()

        try:
            pending = await asyncio.to_thread(self.chain.get_resolving_markets)
        except ChainError as e:
            logger.error(f"Failed to list resolving markets: {e}")
            result.errors += 1
            self.last_tick = result
            return result

        result.checked = len(pending)
        if not pending:
            logger.info("No markets awaiting resolution")
            self.last_tick = result
            return result

        semaphore = asyncio.Semaphore(self.max_concurrent_markets)

        async def run(request: ResolutionRequest) -> str:
            async with semaphore:
                try:
                    return await self._process_market(request)
                except Exception as e:
                    logger.error(f"Market {request.market_id} failed unexpectedly: {e}", exc_info=True)
                    return ERROR

        for state in await asyncio.gather(*[run(r) for r in pending]):
            if state == PROCESSED:
                result.processed += 1
            elif state == DEFERRED:
                result.deferred += 1
            elif state == SKIPPED:
                result.skipped += 1
            else:
                result.errors += 1

        logger.info(
            f"Watcher tick: checked={result.checked} processed={result.processed} "
            f"deferred={result.deferred} skipped={result.skipped} errors={result.errors}"
        )
        self.last_tick = result
        return result

    async def _is_resolving(self, market_id: int) -> bool:
        status = await asyncio.to_thread(self.chain.get_market_status, market_id)
        if status != MarketStatus.RESOLVING:
            logger.info(f"Market {market_id} is now {status.name}, skipping")
            return False
        return True

    async def _process_market(self, request: ResolutionRequest) -> str:
        market_id = request.market_id
        started = time.monotonic()

        try:
            if not await self._is_resolving(market_id):
                return SKIPPED
        except ChainError as e:
            logger.error(f"Status check failed for market {market_id}: {e}")
            return ERROR

        if self.submitter.in_flight(market_id):
            logger.info(f"Market {market_id} already has a submission in flight")
            return SKIPPED

        try:
            consensus = await asyncio.wait_for(
                self.engine.get_consensus(
                    request.question,
                    context=request.context,
                    market_id=market_id,
                    price_context=request.price_context,
                ),
                timeout=self.round_timeout,
            )
        except NoQuorumError as e:
            logger.info(f"Market {market_id} deferred: {e}")
            self._record(ResolutionRecord(
                id=generate_record_id(market_id),
                market_id=market_id,
                status=STATUS_DEFERRED,
                question=request.question,
                consensus_count=e.consensus_count,
                total_models=e.total_models,
                votes=[v.to_dict() for v in e.votes],
                error=str(e),
                duration_seconds=time.monotonic() - started,
            ))
            return DEFERRED
        except asyncio.TimeoutError:
            logger.warning(f"Consensus round for market {market_id} exceeded {self.round_timeout}s, deferring")
            self._record(ResolutionRecord(
                id=generate_record_id(market_id),
                market_id=market_id,
                status=STATUS_DEFERRED,
                question=request.question,
                error="round_timeout",
                duration_seconds=time.monotonic() - started,
            ))
            return DEFERRED

        try:
            if not await self._is_resolving(market_id):
                return SKIPPED
        except ChainError as e:
            logger.error(f"Status re-check failed for market {market_id}: {e}")
            return ERROR

        try:
            receipt = await self.submitter.submit(market_id, consensus.outcome, consensus.confidence)
        except SubmissionError as e:
            self._record(self._consensus_record(
                request, consensus, STATUS_FAILED, started, error=str(e)
            ))
            return ERROR

        self._record(self._consensus_record(
            request, consensus, STATUS_SUBMITTED, started,
            strategy=receipt.strategy.value, tx_hash=receipt.tx_hash, task_id=receipt.task_id,
        ))
        return PROCESSED

    def _consensus_record(
        self,
        request: ResolutionRequest,
        consensus: ConsensusResult,
        status: str,
        started: float,
        **extra: Any,
    ) -> ResolutionRecord:
        return ResolutionRecord(
            id=generate_record_id(request.market_id),
            market_id=request.market_id,
            status=status,
            question=request.question,
            outcome=consensus.outcome.name,
            confidence=round(consensus.confidence, 2),
            consensus_count=consensus.consensus_count,
            total_models=consensus.total_models,
            votes=[v.to_dict() for v in consensus.votes],
            duration_seconds=time.monotonic() - started,
            **extra,
        )

    def _record(self, record: ResolutionRecord) -> None:
        if self.history is None:
            return
        try:
            self.history.save(record)
        except Exception as e:
            logger.warning(f"Failed to save resolution history for market {record.market_id}: {e}")

    def get_status(self) -> Dict[str, Any]:
        return {
            "initialized": self._initialized,
            "submission_mode": self.submitter.mode.value,
            "last_tick": self.last_tick.to_dict() if self.last_tick else None,
        }
