"""
Helpers for writing batch executors.
"""

from __future__ import annotations

import typing as t

if t.TYPE_CHECKING:
    from coalescer.core import PendingRequest


def fail_all(batch: t.Iterable["PendingRequest[t.Any, t.Any]"], error: BaseException) -> int:
    """
    Fail every request of a batch that has not been settled yet.

    Parameters
    ----------
    batch : typing.Iterable[PendingRequest]
        Requests to fail.
    error : BaseException
        Error shared by all failed requests.

    Returns
    -------
    int
        Number of requests this call failed.
    """
    return sum(1 for request in batch if request.fail(error))


def settle_from_mapping(
    batch: t.Iterable["PendingRequest[t.Any, t.Any]"],
    results: t.Mapping[t.Any, t.Any],
    missing: t.Callable[[t.Any], BaseException] | None = None,
) -> int:
    """
    Settle each request with the result stored under its content.

    Parameters
    ----------
    batch : typing.Iterable[PendingRequest]
        Requests to resolve.
    results : typing.Mapping[typing.Any, typing.Any]
        Results keyed by request content.
    missing : typing.Callable[[typing.Any], BaseException] | None, optional
        Build the error of a request whose content has no result. Defaults to
        ``KeyError(content)``.

    Returns
    -------
    int
        Number of requests this call settled.

    Examples
    --------
    >>> async def load_users(batch, token):
    ...     users = await select_users_many([request.content for request in batch])
    ...     settle_from_mapping(batch, {user.id: user for user in users})
    """
    settled = 0
    for request in batch:
        if request.done:
            continue
        if request.content in results:
            if request.settle(results[request.content]):
                settled += 1
            continue
        error = missing(request.content) if missing is not None else KeyError(request.content)
        request.fail(error)
    return settled
