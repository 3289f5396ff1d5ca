"""
Chain Client - Oraculum

Synchronous web3 bindings for the prediction market contracts:
- PredictionMarketCore: market enumeration and status reads
- AIOracle: resolution fulfillment (direct transactions)
- ReputationStaking: staker reads used by dispute arbitration

Callers on the event loop wrap these methods in asyncio.to_thread.
"""

import logging
from typing import Any, Dict, List, Optional

from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from chain.abi import AI_ORACLE_ABI, PREDICTION_MARKET_CORE_ABI, REPUTATION_STAKING_ABI
from chain.models import ChainSettings, MarketStatus, SubmissionMode, TxReceipt
from consensus.models import Outcome, ResolutionRequest
from errors import ChainError, SubmissionError

logger = logging.getLogger(__name__)

WEI_PER_BNB = 10 ** 18

# Failure text that means "try again later"
RETRYABLE_MARKERS = (
    "nonce too low",
    "replacement transaction underpriced",
    "already known",
    "timeout",
    "timed out",
    "connection",
    "header not found",
    "429",
    "502",
    "503",
)

# Failure text that no retry will fix
FATAL_MARKERS = (
    "already resolved",
    "not resolving",
    "invalid status",
    "invalid outcome",
    "unauthorized",
    "not authorized",
    "caller is not",
    "only oracle",
    "onlyowner",
)


def classify_submission_error(exc: Exception, market_id: Optional[int] = None) -> SubmissionError:
    """Map a web3/RPC failure to a retryable or fatal SubmissionError."""
    if isinstance(exc, SubmissionError):
        return exc
    message = str(exc)
    lowered = message.lower()

    if any(marker in lowered for marker in FATAL_MARKERS):
        return SubmissionError(message, retryable=False, market_id=market_id)
    if isinstance(exc, ContractLogicError):
        # Reverts are deterministic for the same state
        return SubmissionError(f"Transaction reverted: {message}", retryable=False, market_id=market_id)
    if isinstance(exc, TimeExhausted) or any(marker in lowered for marker in RETRYABLE_MARKERS):
        return SubmissionError(message, retryable=True, market_id=market_id)
    return SubmissionError(message, retryable=True, market_id=market_id)


class ChainClient:
    """Read market state and write resolutions through a web3 HTTP provider."""

    def __init__(self, settings: ChainSettings, w3: Optional[Web3] = None):
        self.settings = settings
        self.w3 = w3
        self.core = None
        self.oracle = None
        self.staking = None
        self.account = None

    @property
    def connected(self) -> bool:
        return self.core is not None

    def connect(self) -> None:
        """Build the provider, contract handles and signer. Safe to call twice."""
        if self.connected:
            return
        if not self.settings.core_address:
            raise ChainError("CORE_CONTRACT_ADDRESS is not configured")

        if self.w3 is None:
            self.w3 = Web3(Web3.HTTPProvider(self.settings.rpc_url))
        if not self.w3.is_connected():
            raise ChainError(f"Cannot connect to {self.settings.rpc_url}")

        self.core = self.w3.eth.contract(
            address=Web3.to_checksum_address(self.settings.core_address),
            abi=PREDICTION_MARKET_CORE_ABI,
        )
        if self.settings.oracle_address:
            self.oracle = self.w3.eth.contract(
                address=Web3.to_checksum_address(self.settings.oracle_address),
                abi=AI_ORACLE_ABI,
            )
        if self.settings.staking_address:
            self.staking = self.w3.eth.contract(
                address=Web3.to_checksum_address(self.settings.staking_address),
                abi=REPUTATION_STAKING_ABI,
            )
        if self.settings.private_key:
            self.account = self.w3.eth.account.from_key(self.settings.private_key)

        logger.info(
            f"Chain client connected to chain {self.settings.chain_id} "
            f"(core={self.settings.core_address}, signer={self.account.address if self.account else None})"
        )

    def _require_connected(self) -> None:
        if not self.connected:
            self.connect()

    # ==================== Market Reads ====================

    def get_market_count(self) -> int:
        self._require_connected()
        return int(self.core.functions.marketCounter().call())

    def get_market(self, market_id: int) -> Dict[str, Any]:
        self._require_connected()
        try:
            raw = self.core.functions.markets(market_id).call()
        except Exception as e:
            raise ChainError(f"Failed to read market {market_id}: {e}") from e
        return {
            "id": int(raw[0]),
            "market_type": int(raw[1]),
            "status": MarketStatus(int(raw[2])),
            "resolution_time": int(raw[3]),
            "question": raw[4],
        }

    def get_market_status(self, market_id: int) -> MarketStatus:
        return self.get_market(market_id)["status"]

    def get_resolving_markets(self) -> List[ResolutionRequest]:
        """Scan every market id and return those currently in RESOLVING."""
        count = self.get_market_count()
        pending = []
        for market_id in range(count):
            try:
                market = self.get_market(market_id)
            except ChainError as e:
                logger.warning(f"Skipping market {market_id}: {e}")
                continue
            if market["status"] == MarketStatus.RESOLVING:
                pending.append(ResolutionRequest(market_id=market_id, question=market["question"]))
        return pending

    # ==================== Resolution Writes ====================

    def _require_oracle(self) -> None:
        self._require_connected()
        if self.oracle is None:
            raise SubmissionError("AI_ORACLE_ADDRESS is not configured", retryable=False)

    def encode_fulfillment(self, market_id: int, outcome: Outcome, confidence: int) -> str:
        """ABI-encode fulfillResolutionManual calldata for a relayed submission."""
        self._require_oracle()
        return self.oracle.encode_abi(
            "fulfillResolutionManual", args=[market_id, outcome.value, confidence]
        )

    def send_fulfillment(self, market_id: int, outcome: Outcome, confidence: int) -> str:
        """Sign and broadcast fulfillResolutionManual. Returns the tx hash."""
        self._require_oracle()
        if self.account is None:
            raise SubmissionError(
                "ORACLE_PRIVATE_KEY is not configured", retryable=False, market_id=market_id
            )

        try:
            tx = self.oracle.functions.fulfillResolutionManual(
                market_id, outcome.value, confidence
            ).build_transaction({
                "from": self.account.address,
                "nonce": self.w3.eth.get_transaction_count(self.account.address, "pending"),
                "chainId": self.settings.chain_id,
                "gas": self.settings.gas_limit,
                "gasPrice": self.w3.eth.gas_price,
            })
            signed = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            raise classify_submission_error(e, market_id) from e

        hex_hash = Web3.to_hex(tx_hash)
        logger.info(f"Market {market_id} fulfillment broadcast in tx {hex_hash}")
        return hex_hash

    def wait_for_fulfillment(self, market_id: int, tx_hash: str) -> TxReceipt:
        """Wait for a broadcast fulfillment to be mined."""
        self._require_connected()
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.settings.receipt_timeout
            )
        except Exception as e:
            raise classify_submission_error(e, market_id) from e

        if receipt.get("status", 1) == 0:
            raise SubmissionError(
                f"Transaction {tx_hash} reverted", retryable=False, market_id=market_id
            )

        logger.info(f"Market {market_id} fulfilled in tx {tx_hash}")
        return TxReceipt(
            market_id=market_id,
            tx_hash=tx_hash,
            strategy=SubmissionMode.DIRECT,
            block_number=receipt.get("blockNumber"),
        )

    def is_transaction_known(self, tx_hash: str) -> bool:
        """False once the node has dropped a transaction from its pool."""
        self._require_connected()
        try:
            self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return False
        except Exception as e:
            raise ChainError(f"Failed to look up tx {tx_hash}: {e}") from e
        return True

    # ==================== Staking Reads ====================

    def get_staker(self, address: str) -> Dict[str, Any]:
        """Read a staker's position. Amounts are converted from wei to BNB."""
        self._require_connected()
        if self.staking is None:
            raise ChainError("REPUTATION_STAKING_ADDRESS is not configured")
        try:
            raw = self.staking.functions.getStaker(Web3.to_checksum_address(address)).call()
        except Exception as e:
            raise ChainError(f"Failed to read staker {address}: {e}") from e
        return {
            "staked_amount": raw[0] / WEI_PER_BNB,
            "reputation_score": int(raw[1]),
            "tier": int(raw[2]),
            "correct_votes": int(raw[3]),
            "total_votes": int(raw[4]),
            "slashed_amount": raw[5] / WEI_PER_BNB,
            "last_update_time": int(raw[6]),
            "has_nft": bool(raw[7]),
        }
