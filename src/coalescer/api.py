"""
Main endpoint for users.
Exposes ``create_async_batcher`` and the ``batched`` decorator, which turn a
batch executor into a ``Batcher``.
"""

from __future__ import annotations

import typing as t

from coalescer.config import StopPolicy
from coalescer.core import BatchExecutor, Batcher

D = t.TypeVar(name="D")
R = t.TypeVar(name="R")


def create_async_batcher(
    executor: BatchExecutor[D, R],
    *,
    period_seconds: float,
    timeout_seconds: float | None = None,
    name: str | None = None,
    stop_policy: StopPolicy = StopPolicy.KEEP,
) -> Batcher[D, R]:
    """
    Create a running batcher around an executor.

    Parameters
    ----------
    executor : BatchExecutor[D, R]
        Function, or coroutine function, receiving ``(batch, token)``.
    period_seconds : float
        Duration of an accumulation window.
    timeout_seconds : float | None, optional
        Execution budget of a flush. ``None``, ``False`` or ``0`` disables it.
    name : str | None, optional
        Name used to tag diagnostic logs.
    stop_policy : StopPolicy, optional
        What ``stop`` does with pending requests.

    Returns
    -------
    Batcher[D, R]
        Batcher accepting requests through ``run``.
    """
    return Batcher(
        executor,
        period_seconds=period_seconds,
        timeout_seconds=timeout_seconds,
        name=name,
        stop_policy=stop_policy,
    )


def batched(
    *,
    period_seconds: float,
    timeout_seconds: float | None = None,
    name: str | None = None,
    stop_policy: StopPolicy = StopPolicy.KEEP,
) -> t.Callable[[BatchExecutor[D, R]], Batcher[D, R]]:
    """
    Decorate an executor so that it becomes a ``Batcher``.

    Parameters
    ----------
    period_seconds : float
        Duration of an accumulation window.
    timeout_seconds : float | None, optional
        Execution budget of a flush.
    name : str | None, optional
        Name used to tag diagnostic logs, defaults to the executor's qualified name.
    stop_policy : StopPolicy, optional
        What ``stop`` does with pending requests.

    Returns
    -------
    typing.Callable[[BatchExecutor[D, R]], Batcher[D, R]]
        Decorator.

    Notes
    -----
    >>> @batched(period_seconds=0.05, timeout_seconds=5)
    ... async def load_users(batch, token):
    ...     ...
    >>> user = await load_users.run("u1")
    """

    def decorator(executor: BatchExecutor[D, R]) -> Batcher[D, R]:
        return create_async_batcher(
            executor,
            period_seconds=period_seconds,
            timeout_seconds=timeout_seconds,
            name=name if name is not None else getattr(executor, "__qualname__", None),
            stop_policy=stop_policy,
        )

    return decorator
