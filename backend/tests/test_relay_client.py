from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from chain.models import RelaySettings, RelayStatus, RelayTask
from chain.relay import GelatoRelayClient
from errors import SubmissionError
from fakes import no_sleep


def client_with(handler, **settings) -> GelatoRelayClient:
    config = RelaySettings(api_key="gelato-key", base_url="https://relay.test", **settings)
    return GelatoRelayClient(config, transport=httpx.MockTransport(handler), sleep=no_sleep)


def test_create_task_posts_sponsored_call() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"taskId": "0xtask"})

    relay = client_with(handler)
    task = asyncio.run(relay.create_task(5611, "0xOracle", "0xdeadbeef", market_id=3))

    assert task.task_id == "0xtask"
    assert task.status == RelayStatus.PENDING
    assert seen["path"] == "/relays/v2/sponsored-call"
    assert seen["headers"]["X-API-KEY"] == "gelato-key"
    assert seen["body"] == {
        "chainId": 5611,
        "target": "0xOracle",
        "data": "0xdeadbeef",
        "sponsorApiKey": "gelato-key",
    }


@pytest.mark.parametrize("status, retryable", [(401, False), (403, False), (400, False),
                                               (429, True), (503, True)])
def test_http_errors_are_classified(status, retryable) -> None:
    relay = client_with(lambda request: httpx.Response(status, text="nope"))

    with pytest.raises(SubmissionError) as exc_info:
        asyncio.run(relay.create_task(5611, "0xOracle", "0x", market_id=1))

    assert exc_info.value.retryable is retryable


def test_network_error_is_retryable() -> None:
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    relay = client_with(handler)

    with pytest.raises(SubmissionError) as exc_info:
        asyncio.run(relay.create_task(5611, "0xOracle", "0x"))

    assert exc_info.value.retryable
    assert not exc_info.value.outcome_unknown


def test_read_timeout_marks_request_outcome_unknown() -> None:
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    relay = client_with(handler)

    with pytest.raises(SubmissionError) as exc_info:
        asyncio.run(relay.create_task(5611, "0xOracle", "0x", market_id=7))

    assert exc_info.value.retryable
    assert exc_info.value.outcome_unknown
    assert exc_info.value.market_id == 7


def test_missing_api_key_is_fatal() -> None:
    relay = GelatoRelayClient(RelaySettings(api_key=""))

    with pytest.raises(SubmissionError) as exc_info:
        asyncio.run(relay.create_task(5611, "0xOracle", "0x"))

    assert exc_info.value.is_fatal
    assert relay.check_configuration()["configured"] is False


def test_wait_for_task_polls_until_executed() -> None:
    states = iter(["CheckPending", "ExecPending", "ExecSuccess"])

    def handler(request):
        assert request.url.path == "/tasks/status/0xtask"
        state = next(states)
        body = {"task": {"taskState": state}}
        if state == "ExecSuccess":
            body["task"]["transactionHash"] = "0xhash"
        return httpx.Response(200, json=body)

    relay = client_with(handler)
    task = RelayTask(task_id="0xtask", target_contract="0xOracle", payload="0x")

    result = asyncio.run(relay.wait_for_task(task))

    assert result.status == RelayStatus.EXECUTED
    assert result.tx_hash == "0xhash"


def test_reverted_task_is_terminal() -> None:
    relay = client_with(lambda request: httpx.Response(
        200, json={"task": {"taskState": "ExecReverted", "lastCheckMessage": "already resolved"}}
    ))
    task = RelayTask(task_id="0xtask", target_contract="0xOracle", payload="0x")

    result = asyncio.run(relay.wait_for_task(task))

    assert result.status == RelayStatus.FAILED
    assert result.last_check_message == "already resolved"


def test_poll_timeout_keeps_task_pending() -> None:
    relay = client_with(
        lambda request: httpx.Response(200, json={"task": {"taskState": "ExecPending"}}),
        poll_interval=1.0,
        poll_timeout=3.0,
    )
    task = RelayTask(task_id="0xtask", target_contract="0xOracle", payload="0x")

    with pytest.raises(SubmissionError) as exc_info:
        asyncio.run(relay.wait_for_task(task, market_id=8))

    assert exc_info.value.retryable
    assert task.status == RelayStatus.PENDING
    assert task.task_id == "0xtask"
