"""
Gelato Relay Client - Oraculum

Gas-abstracted submission through Gelato's sponsored-call API:
1. POST /relays/v2/sponsored-call with {chainId, target, data, sponsorApiKey}
2. Poll GET /tasks/status/{taskId} until the task reaches a terminal state

Network failures and 5xx/429 responses are retryable; bad keys and
rejected payloads are fatal.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

import httpx

from chain.models import RelaySettings, RelayStatus, RelayTask
from errors import SubmissionError

logger = logging.getLogger(__name__)

# Gelato task states -> our RelayStatus
TASK_STATE_MAP = {
    "ExecSuccess": RelayStatus.EXECUTED,
    "ExecReverted": RelayStatus.FAILED,
    "Blacklisted": RelayStatus.FAILED,
    "Cancelled": RelayStatus.CANCELLED,
    "NotFound": RelayStatus.PENDING,
    "CheckPending": RelayStatus.PENDING,
    "ExecPending": RelayStatus.PENDING,
    "WaitingForConfirmation": RelayStatus.PENDING,
}


def _http_error(response: httpx.Response, market_id: Optional[int]) -> SubmissionError:
    code = response.status_code
    body = response.text[:200]
    if code in (401, 403):
        return SubmissionError(
            f"Gelato API key invalid or unauthorized ({code})", retryable=False, market_id=market_id
        )
    if code == 400:
        return SubmissionError(f"Gelato rejected the request: {body}", retryable=False, market_id=market_id)
    if code == 429 or code >= 500:
        return SubmissionError(f"Gelato unavailable ({code}): {body}", retryable=True, market_id=market_id)
    return SubmissionError(f"Gelato request failed ({code}): {body}", retryable=False, market_id=market_id)


class GelatoRelayClient:
    """Creates and tracks sponsored calls."""

    def __init__(
        self,
        settings: RelaySettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable = asyncio.sleep,
    ):
        self.settings = settings
        self._transport = transport
        self._sleep = sleep

    def check_configuration(self) -> Dict[str, Any]:
        return {
            "configured": self.settings.configured,
            "base_url": self.settings.base_url,
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.base_url,
            timeout=self.settings.request_timeout,
            transport=self._transport,
        )

    async def create_task(
        self,
        chain_id: int,
        target: str,
        data: str,
        market_id: Optional[int] = None,
    ) -> RelayTask:
        """Submit a sponsored call. Returns the pending task."""
        if not self.settings.configured:
            raise SubmissionError("GELATO_RELAY_API_KEY is not configured", retryable=False, market_id=market_id)

        payload = {
            "chainId": chain_id,
            "target": target,
            "data": data,
            "sponsorApiKey": self.settings.api_key,
        }
        try:
            async with self._client() as client:
                response = await client.post(
                    "/relays/v2/sponsored-call",
                    json=payload,
                    headers={"X-API-KEY": self.settings.api_key},
                )
        except (httpx.ReadTimeout, httpx.WriteTimeout, httpx.RemoteProtocolError) as e:
            logger.warning(f"Gelato sponsored call for market {market_id} sent but unanswered: {e}")
            raise SubmissionError(
                f"Gelato request outcome unknown: {e}",
                retryable=True,
                market_id=market_id,
                outcome_unknown=True,
            ) from e
        except httpx.HTTPError as e:
            raise SubmissionError(f"Gelato request error: {e}", retryable=True, market_id=market_id) from e

        if response.status_code >= 400:
            raise _http_error(response, market_id)

        task_id = response.json().get("taskId")
        if not task_id:
            raise SubmissionError("Gelato response missing taskId", retryable=True, market_id=market_id)

        logger.info(f"Gelato task {task_id} created for market {market_id}")
        return RelayTask(task_id=task_id, target_contract=target, payload=data)

    async def refresh(self, task: RelayTask, market_id: Optional[int] = None) -> RelayTask:
        """Update a task's status in place from the status endpoint."""
        try:
            async with self._client() as client:
                response = await client.get(f"/tasks/status/{task.task_id}")
        except httpx.HTTPError as e:
            raise SubmissionError(f"Gelato status error: {e}", retryable=True, market_id=market_id) from e

        if response.status_code == 404:
            task.status = RelayStatus.PENDING
            return task
        if response.status_code >= 400:
            raise _http_error(response, market_id)

        info = response.json().get("task", {})
        state = info.get("taskState", "")
        task.status = TASK_STATE_MAP.get(state, RelayStatus.PENDING)
        task.tx_hash = info.get("transactionHash") or task.tx_hash
        task.last_check_message = info.get("lastCheckMessage")
        return task

    async def wait_for_task(self, task: RelayTask, market_id: Optional[int] = None) -> RelayTask:
        """
        Poll until the task is terminal.

        Raises a retryable SubmissionError if polling outlasts poll_timeout;
        the task keeps its id so the caller can resume polling it.
        """
        waited = 0.0
        while True:
            await self.refresh(task, market_id)
            if task.status.is_terminal:
                logger.info(f"Gelato task {task.task_id} finished: {task.status.value}")
                return task
            if waited >= self.settings.poll_timeout:
                raise SubmissionError(
                    f"Gelato task {task.task_id} still pending after {waited:.0f}s",
                    retryable=True,
                    market_id=market_id,
                )
            await self._sleep(self.settings.poll_interval)
            waited += self.settings.poll_interval
