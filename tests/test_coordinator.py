"""
Tests for request sequencing, cancellation and retry-with-backoff.
"""

import asyncio

import pytest

from infraflow.coordinator import CancellationToken, RequestCoordinator, RetryPolicy
from infraflow.errors import (
    FatalNetworkError,
    ModifyErrorCode,
    RequestCancelled,
    TransientNetworkError,
)
from infraflow.spec import ModifyResult

NO_WAIT = RetryPolicy(attempts=3, initial=0, maximum=0)


def test_begin_issues_monotonic_ids():
    coord = RequestCoordinator()
    first = coord.begin()
    second = coord.begin()
    assert second.request_id == first.request_id + 1
    assert coord.latest_id == second.request_id


def test_begin_cancels_previous_token():
    coord = RequestCoordinator()
    first = coord.begin()
    second = coord.begin()
    assert first.token.cancelled
    assert not second.token.cancelled
    assert not coord.is_current(first)
    assert coord.is_current(second)
    assert coord.is_current(second.request_id)


def test_cancel_without_new_request():
    coord = RequestCoordinator()
    ticket = coord.begin()
    coord.cancel()
    assert ticket.token.cancelled
    assert not coord.is_current(ticket)


def test_token_run_abandons_on_cancel():
    async def main():
        token = CancellationToken()
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(10)

        task = asyncio.ensure_future(token.run(slow()))
        await started.wait()
        token.cancel()
        with pytest.raises(RequestCancelled):
            await task

    asyncio.run(main())


def test_token_run_returns_value():
    async def main():
        token = CancellationToken()

        async def value():
            return 7

        return await token.run(value())

    assert asyncio.run(main()) == 7


def test_retry_recovers_from_transient_errors():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise TransientNetworkError("503", 503)
        return "ok"

    async def main():
        coord = RequestCoordinator(NO_WAIT)
        return await coord.call_with_retry(flaky, coord.begin().token)

    assert asyncio.run(main()) == "ok"
    assert len(calls) == 3


def test_retry_gives_up_after_attempts():
    calls = []

    async def down():
        calls.append(1)
        raise TransientNetworkError("timed out")

    async def main():
        coord = RequestCoordinator(NO_WAIT)
        await coord.call_with_retry(down, coord.begin().token)

    with pytest.raises(TransientNetworkError):
        asyncio.run(main())
    assert len(calls) == 3


def test_fatal_error_is_not_retried():
    calls = []

    async def rejected():
        calls.append(1)
        raise FatalNetworkError("400", 400)

    async def main():
        coord = RequestCoordinator(NO_WAIT)
        await coord.call_with_retry(rejected, coord.begin().token)

    with pytest.raises(FatalNetworkError):
        asyncio.run(main())
    assert len(calls) == 1


def test_modify_converts_failures_to_result():
    async def limited():
        raise FatalNetworkError("429", 429)

    async def main():
        coord = RequestCoordinator(NO_WAIT)
        return await coord.modify(limited, coord.begin())

    result = asyncio.run(main())
    assert isinstance(result, ModifyResult)
    assert not result.success
    assert result.error_detail.code is ModifyErrorCode.API_RATE_LIMIT


def test_modify_propagates_cancellation():
    async def main():
        coord = RequestCoordinator(NO_WAIT)
        ticket = coord.begin()
        gate = asyncio.Event()

        async def hang():
            await gate.wait()
            return ModifyResult(success=True)

        task = asyncio.ensure_future(coord.modify(hang, ticket))
        await asyncio.sleep(0)
        coord.begin()
        with pytest.raises(RequestCancelled):
            await task

    asyncio.run(main())


class RecordingToken(CancellationToken):
    def __init__(self):
        super().__init__()
        self.waits = []

    async def sleep(self, seconds):
        self.waits.append(seconds)


def _backoff_schedule(policy):
    async def down():
        raise TransientNetworkError("503", 503)

    async def main():
        token = RecordingToken()
        with pytest.raises(TransientNetworkError):
            await RequestCoordinator(policy).call_with_retry(down, token)
        return token.waits

    return asyncio.run(main())


def test_default_backoff_waits_one_then_two_seconds():
    assert _backoff_schedule(RetryPolicy()) == [1.0, 2.0]


def test_backoff_is_capped():
    assert _backoff_schedule(RetryPolicy(attempts=6)) == [1.0, 2.0, 4.0, 5.0, 5.0]
