"""Bounded retry for downstream calls.

The executor is the only component that retries. Each attempt runs under a
timeout; failures are classified through ``classify_exception`` and only
retryable kinds (network, timeout, upstream 5xx/429) are attempted again.
A caller-supplied ``asyncio.Event`` cancels the in-flight attempt or the
backoff sleep and ends the run with a ``cancelled`` error.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar

from edge_gateway.core.errors import ErrorKind, GatewayError, classify_exception

logger = logging.getLogger("edge.executor")

T = TypeVar("T")


class ExecutorState(Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RetryState:
    attempt: int = 0
    delay_s: float = 0.0
    classification: str | None = None
    state: ExecutorState = ExecutorState.IDLE
    delays: list[float] = field(default_factory=list)


@dataclass
class ExecutionResult(Generic[T]):
    value: T
    attempts: int


class ResilientExecutor:
    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_s: float = 1.0,
        backoff: bool = True,
        max_delay_s: float | None = None,
        timeout_s: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._max_attempts = max(max_attempts, 1)
        self._base_delay_s = max(base_delay_s, 0.0)
        self._backoff = backoff
        self._max_delay_s = max_delay_s
        self._timeout_s = timeout_s
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def delay_for(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        delay = self._base_delay_s * (2 ** (attempt - 1)) if self._backoff else self._base_delay_s
        if self._max_delay_s is not None:
            delay = min(delay, self._max_delay_s)
        return delay

    async def run(
        self,
        call: Callable[[], Awaitable[T]],
        cancel_event: asyncio.Event | None = None,
        trace_id: str | None = None,
        state: RetryState | None = None,
    ) -> ExecutionResult[T]:
        state = state if state is not None else RetryState()
        while True:
            state.attempt += 1
            state.state = ExecutorState.ATTEMPTING
            try:
                value = await self._attempt(call, cancel_event)
            except GatewayError as exc:
                error = exc
            except Exception as exc:
                classified = classify_exception(exc)
                if classified is None:
                    state.state = ExecutorState.FAILED
                    raise
                error = classified
                error.__cause__ = exc
            else:
                state.state = ExecutorState.SUCCEEDED
                return ExecutionResult(value=value, attempts=state.attempt)

            if error.kind is ErrorKind.CANCELLED:
                state.state = ExecutorState.CANCELLED
                raise error

            state.classification = "retryable" if error.retryable else "terminal"
            if not error.retryable or state.attempt >= self._max_attempts:
                state.state = ExecutorState.FAILED
                logger.warning(
                    "upstream_call_failed",
                    extra={
                        "trace_id": trace_id,
                        "attempt": state.attempt,
                        "max_attempts": self._max_attempts,
                        "error_kind": error.kind.value,
                        "status_code": error.status_code,
                    },
                )
                raise error

            state.state = ExecutorState.RETRYING
            state.delay_s = self.delay_for(state.attempt)
            state.delays.append(state.delay_s)
            logger.info(
                "upstream_call_retrying",
                extra={
                    "trace_id": trace_id,
                    "attempt": state.attempt,
                    "max_attempts": self._max_attempts,
                    "delay_s": state.delay_s,
                    "error_kind": error.kind.value,
                },
            )
            try:
                await self._cancellable(lambda: self._sleep(state.delay_s), cancel_event)
            except GatewayError:
                state.state = ExecutorState.CANCELLED
                raise

    async def _attempt(
        self,
        call: Callable[[], Awaitable[T]],
        cancel_event: asyncio.Event | None,
    ) -> T:
        return await self._cancellable(
            lambda: asyncio.wait_for(call(), timeout=self._timeout_s), cancel_event
        )

    @staticmethod
    async def _cancellable(
        start: Callable[[], Awaitable[T]],
        cancel_event: asyncio.Event | None,
    ) -> T:
        if cancel_event is None:
            return await start()
        if cancel_event.is_set():
            raise GatewayError(ErrorKind.CANCELLED, "Request cancelled by client")

        work = asyncio.ensure_future(start())
        watcher = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            watcher.cancel()
        if not work.done():
            work.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await work
            raise GatewayError(ErrorKind.CANCELLED, "Request cancelled by client")
        return work.result()
