"""
Resolution Submitter - Oraculum

Writes an accepted outcome to the AI oracle contract.

Two strategies share the same call, fulfillResolutionManual(marketId, outcome, confidence):
- DirectStrategy: signed transaction from the oracle key (web3)
- RelayStrategy: Gelato sponsored call, tracked as a RelayTask

Retry rules:
1. The market status is re-read before every attempt; anything but
   RESOLVING is fatal unless a transaction or relay task for the market
   is still outstanding
2. Retryable SubmissionErrors back off exponentially up to max_attempts
3. Fatal SubmissionErrors surface immediately
4. A broadcast tx hash or relay task id, once obtained, is awaited again
   rather than resent

Only one submission per market runs at a time; concurrent callers share it.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Set

from chain.models import MarketStatus, RelayStatus, RelayTask, SubmissionMode, TxReceipt
from consensus.models import Outcome
from errors import ChainError, SubmissionError

logger = logging.getLogger(__name__)


def to_chain_confidence(confidence: float) -> int:
    """Round and clamp a confidence to the contract's uint8 0-100 range."""
    return max(0, min(100, int(round(confidence))))


class DirectStrategy:
    """
    Submit with a transaction signed by the oracle key.

    The broadcast hash is kept per market until the transaction is mined or
    fails fatally, so a retry after a receipt timeout waits on the same
    transaction instead of sending a second one.
    """

    mode = SubmissionMode.DIRECT

    def __init__(self, chain: Any):
        self.chain = chain
        self._sent: Dict[int, str] = {}

    def has_pending(self, market_id: int) -> bool:
        return market_id in self._sent

    async def submit(self, market_id: int, outcome: Outcome, confidence: int) -> TxReceipt:
        tx_hash = self._sent.get(market_id)
        if tx_hash is None:
            tx_hash = await asyncio.to_thread(self.chain.send_fulfillment, market_id, outcome, confidence)
            self._sent[market_id] = tx_hash
        else:
            logger.info(f"Waiting again on tx {tx_hash} for market {market_id}")

        try:
            receipt = await asyncio.to_thread(self.chain.wait_for_fulfillment, market_id, tx_hash)
        except SubmissionError as e:
            if e.is_fatal or not await self._still_known(tx_hash):
                self._sent.pop(market_id, None)
            raise

        self._sent.pop(market_id, None)
        return receipt

    async def _still_known(self, tx_hash: str) -> bool:
        try:
            known = await asyncio.to_thread(self.chain.is_transaction_known, tx_hash)
        except ChainError as e:
            logger.warning(f"Could not look up tx {tx_hash}, keeping it: {e}")
            return True
        if not known:
            logger.warning(f"Tx {tx_hash} was dropped by the node; next attempt sends a new one")
        return known


class RelayStrategy:
    """
    Submit through a gas-abstracted relay, keeping one task per market.

    A sponsored call that went unanswered may still have been accepted, so
    before creating another task the market status is re-read; if the market
    already left RESOLVING the earlier request is taken as the one that landed.
    """

    mode = SubmissionMode.RELAY

    def __init__(self, chain: Any, relay: Any, chain_id: int, oracle_address: str):
        self.chain = chain
        self.relay = relay
        self.chain_id = chain_id
        self.oracle_address = oracle_address
        self._tasks: Dict[int, RelayTask] = {}
        self._unconfirmed: Set[int] = set()

    def has_pending(self, market_id: int) -> bool:
        task = self._tasks.get(market_id)
        if task is not None and task.status == RelayStatus.PENDING:
            return True
        return market_id in self._unconfirmed

    async def _landed_earlier(self, market_id: int) -> bool:
        if market_id not in self._unconfirmed:
            return False
        try:
            status = await asyncio.to_thread(self.chain.get_market_status, market_id)
        except ChainError as e:
            raise SubmissionError(str(e), retryable=True, market_id=market_id) from e
        if status == MarketStatus.RESOLVING:
            return False
        self._unconfirmed.discard(market_id)
        logger.info(f"Market {market_id} is {status.name}; the unanswered relay request landed")
        return True

    async def submit(self, market_id: int, outcome: Outcome, confidence: int) -> TxReceipt:
        task = self._tasks.get(market_id)
        if task is None:
            if await self._landed_earlier(market_id):
                return TxReceipt(market_id=market_id, tx_hash=None, strategy=SubmissionMode.RELAY)
            data = await asyncio.to_thread(self.chain.encode_fulfillment, market_id, outcome, confidence)
            try:
                task = await self.relay.create_task(self.chain_id, self.oracle_address, data, market_id)
            except SubmissionError as e:
                if e.outcome_unknown:
                    self._unconfirmed.add(market_id)
                raise
            self._tasks[market_id] = task
        else:
            logger.info(f"Resuming relay task {task.task_id} for market {market_id}")

        task = await self.relay.wait_for_task(task, market_id)

        # Terminal from here on; a retry must create a fresh task
        self._tasks.pop(market_id, None)
        if task.status == RelayStatus.EXECUTED:
            self._unconfirmed.discard(market_id)
            return TxReceipt(
                market_id=market_id,
                tx_hash=task.tx_hash,
                strategy=SubmissionMode.RELAY,
                task_id=task.task_id,
            )
        if await self._landed_earlier(market_id):
            return TxReceipt(market_id=market_id, tx_hash=None, strategy=SubmissionMode.RELAY)
        raise SubmissionError(
            f"Relay task {task.task_id} ended {task.status.value}: {task.last_check_message}",
            retryable=task.status == RelayStatus.CANCELLED,
            market_id=market_id,
        )


class ResolutionSubmitter:
    """Bounded-retry submission with one in-flight attempt per market."""

    def __init__(
        self,
        chain: Any,
        strategy: Any,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        sleep: Callable = asyncio.sleep,
    ):
        self.chain = chain
        self.strategy = strategy
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._in_flight: Dict[int, asyncio.Task] = {}

    @property
    def mode(self) -> SubmissionMode:
        return self.strategy.mode

    def in_flight(self, market_id: int) -> bool:
        return market_id in self._in_flight

    async def submit(self, market_id: int, outcome: Outcome, confidence: float) -> TxReceipt:
        """
        Submit a resolution. Returns the receipt or raises SubmissionError.

        A second call for a market that is already being submitted awaits
        the running attempt instead of starting another one.
        """
        existing = self._in_flight.get(market_id)
        if existing is not None:
            logger.info(f"Submission for market {market_id} already in flight, joining it")
            return await existing

        task = asyncio.ensure_future(
            self._submit_with_retry(market_id, outcome, to_chain_confidence(confidence))
        )
        self._in_flight[market_id] = task
        try:
            return await task
        finally:
            self._in_flight.pop(market_id, None)

    async def _read_status(self, market_id: int) -> MarketStatus:
        try:
            return await asyncio.to_thread(self.chain.get_market_status, market_id)
        except ChainError as e:
            raise SubmissionError(str(e), retryable=True, market_id=market_id) from e

    async def _submit_with_retry(self, market_id: int, outcome: Outcome, confidence: int) -> TxReceipt:
        last_error: Optional[SubmissionError] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                status = await self._read_status(market_id)
                if status != MarketStatus.RESOLVING and not self.strategy.has_pending(market_id):
                    raise SubmissionError(
                        f"Market {market_id} is {status.name}, not RESOLVING",
                        retryable=False,
                        market_id=market_id,
                    )

                receipt = await self.strategy.submit(market_id, outcome, confidence)
                logger.info(
                    f"Market {market_id} resolved to {outcome.name} ({confidence}) "
                    f"via {self.mode.value} on attempt {attempt}"
                )
                return receipt

            except SubmissionError as e:
                if e.market_id is None:
                    e.market_id = market_id
                if e.is_fatal:
                    logger.error(f"Submission for market {market_id} failed fatally: {e}")
                    raise
                last_error = e
                if attempt == self.max_attempts:
                    break
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f"Submission for market {market_id} attempt {attempt}/{self.max_attempts} "
                    f"failed: {e}. Retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

        logger.error(f"Submission for market {market_id} exhausted {self.max_attempts} attempts: {last_error}")
        raise last_error


def build_submitter(chain: Any, relay: Any, settings: Any, sleep: Callable = asyncio.sleep) -> ResolutionSubmitter:
    """Pick the strategy named by ChainSettings.submission_mode."""
    if settings.submission_mode == SubmissionMode.RELAY:
        strategy = RelayStrategy(chain, relay, settings.chain_id, settings.oracle_address)
    else:
        strategy = DirectStrategy(chain)
    return ResolutionSubmitter(
        chain,
        strategy,
        max_attempts=settings.max_submit_attempts,
        backoff_seconds=settings.submit_backoff,
        sleep=sleep,
    )
