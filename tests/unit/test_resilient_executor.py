import asyncio

import httpx
import pytest

from edge_gateway.core.errors import ErrorKind, GatewayError, validation_error
from edge_gateway.executor.resilient import ExecutorState, ResilientExecutor, RetryState


class _RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def test_success_on_first_attempt() -> None:
    executor = ResilientExecutor(sleep=_RecordingSleep())

    async def call() -> str:
        return "ok"

    result = asyncio.run(executor.run(call))
    assert result.value == "ok"
    assert result.attempts == 1


def test_validation_error_is_not_retried() -> None:
    sleep = _RecordingSleep()
    executor = ResilientExecutor(max_attempts=3, sleep=sleep)
    attempts = 0

    async def call() -> None:
        nonlocal attempts
        attempts += 1
        raise validation_error("bad")

    state = RetryState()
    with pytest.raises(GatewayError):
        asyncio.run(executor.run(call, state=state))
    assert attempts == 1
    assert sleep.delays == []
    assert state.state is ExecutorState.FAILED
    assert state.classification == "terminal"


def test_network_failure_retries_with_increasing_delays() -> None:
    sleep = _RecordingSleep()
    executor = ResilientExecutor(max_attempts=4, base_delay_s=1.0, sleep=sleep)
    attempts = 0

    async def call() -> None:
        nonlocal attempts
        attempts += 1
        raise httpx.ConnectError("refused")

    with pytest.raises(GatewayError) as excinfo:
        asyncio.run(executor.run(call))
    assert excinfo.value.kind is ErrorKind.NETWORK
    assert attempts == 4
    assert sleep.delays == [1.0, 2.0, 4.0]


def test_constant_delay_without_backoff_and_cap() -> None:
    assert ResilientExecutor(base_delay_s=0.5, backoff=False).delay_for(3) == 0.5
    assert ResilientExecutor(base_delay_s=1.0, max_delay_s=3.0).delay_for(5) == 3.0


def test_upstream_server_error_recovers() -> None:
    sleep = _RecordingSleep()
    executor = ResilientExecutor(max_attempts=3, sleep=sleep)
    replies = [GatewayError(ErrorKind.UPSTREAM_SERVER, "busy", status_code=503), "done"]

    async def call() -> str:
        reply = replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    result = asyncio.run(executor.run(call))
    assert result.value == "done"
    assert result.attempts == 2
    assert sleep.delays == [1.0]


def test_attempt_timeout_is_classified() -> None:
    executor = ResilientExecutor(max_attempts=2, timeout_s=0.01, sleep=_RecordingSleep())

    async def call() -> None:
        await asyncio.sleep(1)

    state = RetryState()
    with pytest.raises(GatewayError) as excinfo:
        asyncio.run(executor.run(call, state=state))
    assert excinfo.value.kind is ErrorKind.TIMEOUT
    assert state.attempt == 2


def test_unknown_exception_propagates() -> None:
    executor = ResilientExecutor(sleep=_RecordingSleep())

    async def call() -> None:
        raise KeyError("boom")

    with pytest.raises(KeyError):
        asyncio.run(executor.run(call))


def test_cancel_event_aborts_in_flight_attempt() -> None:
    executor = ResilientExecutor(max_attempts=3)

    async def scenario() -> RetryState:
        cancel = asyncio.Event()
        state = RetryState()

        async def call() -> None:
            await asyncio.sleep(5)

        asyncio.get_running_loop().call_later(0.01, cancel.set)
        with pytest.raises(GatewayError) as excinfo:
            await executor.run(call, cancel_event=cancel, state=state)
        assert excinfo.value.kind is ErrorKind.CANCELLED
        assert excinfo.value.status_code == 499
        return state

    state = asyncio.run(scenario())
    assert state.attempt == 1
    assert state.state is ExecutorState.CANCELLED


def test_cancel_event_aborts_backoff_sleep() -> None:
    executor = ResilientExecutor(max_attempts=3, base_delay_s=5.0)

    async def scenario() -> int:
        cancel = asyncio.Event()
        attempts = 0

        async def call() -> None:
            nonlocal attempts
            attempts += 1
            asyncio.get_running_loop().call_later(0.01, cancel.set)
            raise httpx.ConnectError("refused")

        with pytest.raises(GatewayError) as excinfo:
            await executor.run(call, cancel_event=cancel)
        assert excinfo.value.kind is ErrorKind.CANCELLED
        return attempts

    assert asyncio.run(scenario()) == 1
