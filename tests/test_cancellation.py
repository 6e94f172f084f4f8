import asyncio

import pytest

from coalescer.cancellation import CancellationToken
from coalescer.exceptions import BatcherTimeoutError


@pytest.mark.asyncio
async def test_token_triggers_once():
    token = CancellationToken()
    reasons: list[BaseException | None] = []
    token.add_callback(reasons.append)
    error = BatcherTimeoutError("late")

    assert token.cancelled is False
    assert token.cancel(reason=error) is True
    assert token.cancel(reason=RuntimeError("again")) is False

    assert token.cancelled is True
    assert token.reason is error
    assert reasons == [error]


@pytest.mark.asyncio
async def test_callback_added_after_trigger_runs_immediately():
    token = CancellationToken()
    token.cancel()
    reasons: list[BaseException | None] = []

    token.add_callback(reasons.append)

    assert reasons == [None]


@pytest.mark.asyncio
async def test_wait_returns_reason():
    token = CancellationToken()
    error = BatcherTimeoutError("late")
    waiter = asyncio.create_task(token.wait())
    await asyncio.sleep(0)
    assert not waiter.done()

    token.cancel(reason=error)

    assert await waiter is error


@pytest.mark.asyncio
async def test_raise_if_cancelled():
    token = CancellationToken()
    token.raise_if_cancelled()

    token.cancel(reason=BatcherTimeoutError("late"))
    with pytest.raises(BatcherTimeoutError):
        token.raise_if_cancelled()

    bare = CancellationToken()
    bare.cancel()
    with pytest.raises(asyncio.CancelledError):
        bare.raise_if_cancelled()
