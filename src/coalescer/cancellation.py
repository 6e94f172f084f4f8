"""
Advisory cancellation token handed to batch executors.
"""

from __future__ import annotations

import asyncio
import typing as t


class CancellationToken:
    """
    Cooperative cancellation signal scoped to a single flush.

    The batcher triggers the token at most once, when the flush exceeds its
    timeout. Triggering never interrupts the executor: executors are expected
    to check ``cancelled`` (or await ``wait``) and abandon their work.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: BaseException | None = None
        self._callbacks: list[t.Callable[[BaseException | None], t.Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> BaseException | None:
        """Error that caused the cancellation, if any."""
        return self._reason

    def cancel(self, reason: BaseException | None = None) -> bool:
        """
        Trigger the token.

        Parameters
        ----------
        reason : BaseException | None, optional
            Error describing why the work was cancelled.

        Returns
        -------
        bool
            ``True`` on the first call, ``False`` when already triggered.
        """
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(reason)
        return True

    def add_callback(self, callback: t.Callable[[BaseException | None], t.Any]) -> None:
        """
        Register a callable invoked with the reason once the token triggers.

        Registering on an already triggered token calls it immediately.
        """
        if self._event.is_set():
            callback(self._reason)
            return
        self._callbacks.append(callback)

    async def wait(self) -> BaseException | None:
        """Suspend until the token triggers and return its reason."""
        await self._event.wait()
        return self._reason

    def raise_if_cancelled(self) -> None:
        """
        Raise the cancellation reason when the token has been triggered.

        Raises
        ------
        BaseException
            The reason passed to ``cancel``, or ``asyncio.CancelledError`` when
            none was given.
        """
        if not self._event.is_set():
            return
        if self._reason is not None:
            raise self._reason
        raise asyncio.CancelledError()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"
