"""
Request coordination for an editing session: monotonic request ids,
per-request cancellation tokens and retry-with-backoff for remote calls.

Every continuation re-checks is_current() before touching shared state, so
a response that arrives after a newer submission is dropped regardless of
completion order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import NamedTuple, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from infraflow.config import Settings
from infraflow.errors import ModifyError, NetworkError, RequestCancelled, to_modify_error
from infraflow.spec import ModifyResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Cancellation signal for one request; cancel() is idempotent."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelled("request was superseded")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, abandoning it with RequestCancelled as soon as cancel() is called."""
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task in done:
            return task.result()
        task.cancel()
        # Let the abandoned call unwind; its outcome is irrelevant now
        await asyncio.gather(task, return_exceptions=True)
        raise RequestCancelled("request was superseded")

    async def sleep(self, seconds: float) -> None:
        await self.run(asyncio.sleep(seconds))


class Ticket(NamedTuple):
    request_id: int
    token: CancellationToken


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    initial: float = 1.0
    maximum: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(settings.retry_attempts, settings.retry_initial, settings.retry_max)


def is_transient(error: BaseException) -> bool:
    return isinstance(error, NetworkError) and error.transient


def modify_failure(error: BaseException, reasoning: str | None = None) -> ModifyResult:
    """Structured failure for the modify path; keeps the model's reasoning when there is one."""
    detail = to_modify_error(error)
    return ModifyResult(
        success=False,
        reasoning=reasoning,
        error=detail.user_message,
        error_detail=detail.to_detail(),
    )


class RequestCoordinator:
    """Single-writer request sequencing for one editing session."""

    def __init__(self, policy: RetryPolicy | None = None):
        self.policy = policy or RetryPolicy()
        self._latest_id = 0
        self._token: CancellationToken | None = None

    @property
    def latest_id(self) -> int:
        return self._latest_id

    def begin(self) -> Ticket:
        """Supersede whatever is in flight and issue the next request id."""
        if self._token is not None and not self._token.cancelled:
            logger.info("Request %d superseded", self._latest_id)
            self._token.cancel()
        self._latest_id += 1
        self._token = CancellationToken()
        return Ticket(self._latest_id, self._token)

    def is_current(self, ticket: Ticket | int) -> bool:
        request_id = ticket.request_id if isinstance(ticket, Ticket) else ticket
        return request_id == self._latest_id and not (self._token is not None and self._token.cancelled)

    def cancel(self) -> None:
        """Cancel the in-flight request without starting a new one."""
        if self._token is not None:
            self._token.cancel()

    async def call_with_retry(
        self,
        call: Callable[[], Awaitable[T]],
        token: CancellationToken,
    ) -> T:
        """
        Run call() with exponential backoff on transient network errors.
        Cancellation and fatal errors propagate immediately; the last
        transient error is re-raised once attempts are exhausted.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.attempts),
            wait=wait_exponential(multiplier=self.policy.initial, max=self.policy.maximum),
            retry=retry_if_exception(is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=token.sleep,
            reraise=True,
        )
        result = None
        async for attempt in retrying:
            with attempt:
                result = await token.run(call())
        return result

    async def modify(
        self,
        send: Callable[[], Awaitable[ModifyResult]],
        ticket: Ticket,
    ) -> ModifyResult:
        """Remote modify with retries; failures come back as ModifyResult, cancellation raises."""
        try:
            return await self.call_with_retry(send, ticket.token)
        except RequestCancelled:
            raise
        except (NetworkError, ModifyError) as e:
            logger.warning("Modify request %d failed: %s", ticket.request_id, e)
            return modify_failure(e)
