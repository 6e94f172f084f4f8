"""
Core engine containing the time-window batching mechanism.
Requests submitted through ``Batcher.run`` accumulate in a pending queue and are
handed to a user-supplied executor as one batch once the window elapses.
Each request is resolved independently of the others in its batch.
"""

from __future__ import annotations

import asyncio
import inspect
import time
import typing as t
import uuid

import structlog

from coalescer.batch_utils import fail_all
from coalescer.cancellation import CancellationToken
from coalescer.config import BatcherConfig, StopPolicy
from coalescer.exceptions import BatcherError, BatcherStoppedError, BatcherTimeoutError

log = structlog.get_logger(__name__)

D = t.TypeVar(name="D")
R = t.TypeVar(name="R")


class PendingRequest(t.Generic[D, R]):
    """
    A request waiting to be batched.

    Parameters
    ----------
    content : D
        Caller-supplied payload, e.g. a lookup key.
    future : asyncio.Future[R]
        Future returned to the caller by ``Batcher.run``.

    Notes
    -----
    ``settle`` and ``fail`` complete the caller's future at most once. Any later
    attempt, including one made by an executor after its batch timed out, is
    ignored and reported through the ``False`` return value.
    """

    __slots__ = ("content", "_future")

    def __init__(self, content: D, future: asyncio.Future[R]) -> None:
        self.content = content
        self._future = future

    @property
    def done(self) -> bool:
        """
        Whether the request already reached its terminal outcome.

        A request whose event loop was closed can no longer be completed and
        counts as done.
        """
        return self._future.done() or self._future.get_loop().is_closed()

    def settle(self, result: R) -> bool:
        """
        Complete the caller's future with a result.

        Parameters
        ----------
        result : R
            Value the caller's ``await`` returns.

        Returns
        -------
        bool
            ``True`` if this call completed the request.
        """
        if self.done:
            return False
        self._future.set_result(result)
        return True

    def fail(self, error: BaseException) -> bool:
        """
        Complete the caller's future with an error.

        Parameters
        ----------
        error : BaseException
            Error the caller's ``await`` raises.

        Returns
        -------
        bool
            ``True`` if this call completed the request.
        """
        if self.done:
            return False
        self._future.set_exception(error)
        return True

    def __repr__(self) -> str:
        return f"PendingRequest(content={self.content!r}, done={self.done})"


BatchExecutor = t.Callable[
    [list[PendingRequest[D, R]], CancellationToken],
    t.Awaitable[None] | None,
]


class Batcher(t.Generic[D, R]):
    """
    Accumulate requests over a time window and flush them as one batch.

    The first request of a window arms a single window timer; later requests of
    the same window join the pending queue without re-arming it. When the timer
    fires, the queue is swapped out and handed to the executor together with a
    ``CancellationToken``. Flushes run in their own task, so stopping the
    batcher never interrupts one.

    Parameters
    ----------
    executor : BatchExecutor
        Function, or coroutine function, receiving ``(batch, token)``. It settles
        or fails every request of the batch.
    period_seconds : float
        Duration of an accumulation window.
    timeout_seconds : float | None, optional
        Execution budget of a flush. ``None``, ``False`` or ``0`` disables it.
    name : str | None, optional
        Name used to tag diagnostic logs.
    stop_policy : StopPolicy, optional
        Whether ``stop`` keeps pending requests queued or fails them.
    """

    def __init__(
        self,
        executor: BatchExecutor[D, R],
        *,
        period_seconds: float,
        timeout_seconds: float | None = None,
        name: str | None = None,
        stop_policy: StopPolicy = StopPolicy.KEEP,
    ) -> None:
        self._config = BatcherConfig(
            period_seconds=period_seconds,
            timeout_seconds=timeout_seconds,
            name=name,
            stop_policy=stop_policy,
        )
        self._executor = executor
        self._period_seconds = self._config.period_seconds
        self._log = log.bind(batcher=self._config.name)

        # Request collection
        self._pending: list[PendingRequest[D, R]] = []
        self._running = True
        self._window_task: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

        # Flushes still executing, and executors still running past their timeout
        self._flush_tasks: set[asyncio.Task[None]] = set()
        self._overdue_tasks: set[asyncio.Future[t.Any]] = set()
        self._last_flush_at: float | None = None

        self._log.debug(
            event="Initialized Batcher",
            period_seconds=self._config.period_seconds,
            timeout_seconds=self._config.timeout_seconds,
            stop_policy=self._config.stop_policy.value,
        )

    @classmethod
    def from_config(cls, executor: BatchExecutor[D, R], config: BatcherConfig) -> "Batcher[D, R]":
        """
        Build a batcher from a validated configuration.

        Parameters
        ----------
        executor : BatchExecutor
            Batch executor.
        config : BatcherConfig
            Batcher configuration.

        Returns
        -------
        Batcher
            Configured batcher, running.
        """
        return cls(
            executor,
            period_seconds=config.period_seconds,
            timeout_seconds=config.timeout_seconds,
            name=config.name,
            stop_policy=config.stop_policy,
        )

    @property
    def name(self) -> str | None:
        return self._config.name

    @property
    def running(self) -> bool:
        return self._running

    @property
    def period_seconds(self) -> float:
        return self._period_seconds

    @property
    def timeout_seconds(self) -> float | None:
        return self._config.timeout_seconds

    @property
    def stop_policy(self) -> StopPolicy:
        return self._config.stop_policy

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def armed(self) -> bool:
        """Whether a window timer is scheduled and has not fired yet."""
        window_task = self._window_task
        return (
            window_task is not None
            and not window_task.done()
            and not window_task.get_loop().is_closed()
        )

    @property
    def inflight_count(self) -> int:
        return len(self._flush_tasks)

    @property
    def last_flush_at(self) -> float | None:
        """``time.monotonic()`` reading taken when the latest flush started."""
        return self._last_flush_at

    def run(self, data: D) -> asyncio.Future[R]:
        """
        Queue a request for batching.

        Parameters
        ----------
        data : D
            Payload handed to the executor as ``PendingRequest.content``.

        Returns
        -------
        asyncio.Future[R]
            Future completed by the flush that owns the request.

        Raises
        ------
        BatcherStoppedError
            If the batcher is stopped. Nothing is queued.
        """
        if not self._running:
            raise BatcherStoppedError(
                "batcher is stopped, call `start()` before submitting new requests"
            )
        loop = asyncio.get_running_loop()
        future: asyncio.Future[R] = loop.create_future()
        if self._loop is not loop:
            self._adopt_loop(loop=loop)
        self._pending.append(PendingRequest(content=data, future=future))
        self._log.debug(event="Queued request for batch", pending_count=len(self._pending))
        self._schedule()
        return future

    def start(self) -> None:
        """
        Accept requests again.

        Requests kept across a ``stop`` get a new window timer, so they do not
        wait for another ``run`` call to be flushed.
        """
        if not self._running:
            self._log.debug(event="Batcher started", pending_count=len(self._pending))
        self._running = True
        if self._pending:
            self._schedule()

    def stop(self) -> None:
        """
        Reject new requests and cancel the armed window timer.

        In-flight flushes keep running. Pending requests stay queued with
        ``StopPolicy.KEEP`` and fail with ``BatcherStoppedError`` with
        ``StopPolicy.FAIL``.
        """
        if self._running:
            self._log.debug(event="Batcher stopped", pending_count=len(self._pending))
        self._running = False
        self._cancel_window_timer()
        if self._config.stop_policy is StopPolicy.FAIL and self._pending:
            requests, self._pending = self._pending, []
            failed = fail_all(
                batch=requests,
                error=BatcherStoppedError("batcher was stopped before the request was flushed"),
            )
            self._log.debug(event="Failed pending requests on stop", failed_count=failed)

    def change_period(self, period_seconds: float) -> None:
        """
        Set the window duration used by the next armed timer.

        An already armed timer keeps the period it was armed with.
        """
        if period_seconds <= 0:
            raise ValueError("period_seconds must be greater than 0")
        self._log.debug(
            event="Batch period changed",
            previous_period_seconds=self._period_seconds,
            period_seconds=period_seconds,
        )
        self._period_seconds = period_seconds

    def flush(self) -> asyncio.Task[None] | None:
        """
        Flush pending requests now, regardless of the window timer.

        Returns
        -------
        asyncio.Task[None] | None
            Task executing the batch, or ``None`` when nothing is pending.
        """
        self._cancel_window_timer()
        if not self._pending:
            return None
        return self._start_flush()

    async def close(self) -> None:
        """
        Stop the batcher, flush pending requests and wait for in-flight flushes.
        """
        self._running = False
        self._cancel_window_timer()
        if self._pending:
            self._log.info(event="Submitting final batch on close", request_count=len(self._pending))
            self._start_flush()
        flush_tasks = [task for task in self._flush_tasks if not task.get_loop().is_closed()]
        if flush_tasks:
            await asyncio.gather(*flush_tasks, return_exceptions=True)
        if self._overdue_tasks:
            overdue = [task for task in self._overdue_tasks if not task.get_loop().is_closed()]
            self._log.info(event="Cancelling executors running past timeout", count=len(overdue))
            for task in overdue:
                task.cancel()
            await asyncio.gather(*overdue, return_exceptions=True)
        self._log.debug(event="Batcher closed")

    async def __aenter__(self) -> "Batcher[D, R]":
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        await self.close()

    def _schedule(self) -> None:
        """
        Arm the window timer unless stopped or already armed.

        Check and assignment happen without a suspension point in between, so
        concurrent callers of ``run`` cannot arm a second timer.
        """
        if not self._running or self.armed:
            return
        loop = self._event_loop()
        if loop is None:
            # the next ``run`` call arms the timer on its own loop
            return
        period_seconds = self._period_seconds
        self._window_task = loop.create_task(
            self._window_timer(period_seconds=period_seconds),
            name=f"batch_window_timer_{self._config.name or id(self)}",
        )
        self._log.debug(event="Starting batch window timer", period_seconds=period_seconds)

    def _adopt_loop(self, *, loop: asyncio.AbstractEventLoop) -> None:
        """
        Bind the batcher to a new event loop.

        Requests left behind by a closed loop are dropped, their callers are gone.
        """
        self._loop = loop
        stale = [request for request in self._pending if request.done]
        if stale:
            self._pending = [request for request in self._pending if not request.done]
            self._log.warning(
                event="Dropped requests of a closed event loop",
                dropped_count=len(stale),
            )

    def _event_loop(self) -> asyncio.AbstractEventLoop | None:
        """
        Return the running loop, else the loop of the latest ``run`` call if still open.
        """
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            if self._loop is not None and not self._loop.is_closed():
                return self._loop
            return None

    def _cancel_window_timer(self) -> None:
        window_task, self._window_task = self._window_task, None
        if window_task is not None and not window_task.done():
            window_task.cancel()

    async def _window_timer(self, *, period_seconds: float) -> None:
        """
        Trigger a flush after the window elapses.

        Parameters
        ----------
        period_seconds : float
            Window duration captured when the timer was armed.
        """
        try:
            await asyncio.sleep(period_seconds)
        except asyncio.CancelledError:
            self._log.debug(event="Window timer cancelled", pending_count=len(self._pending))
            raise
        finally:
            if self._window_task is asyncio.current_task():
                self._window_task = None
        self._start_flush()

    def _start_flush(self) -> asyncio.Task[None] | None:
        """
        Swap out the pending queue and execute it in its own task.

        Returns
        -------
        asyncio.Task[None] | None
            Flush task, or ``None`` when the queue was empty.
        """
        loop = self._event_loop()
        if loop is None:
            raise BatcherError("no open event loop to flush on, call `flush()` from a coroutine")
        self._last_flush_at = time.monotonic()
        batch, self._pending = self._pending, []
        if not batch:
            self._log.debug(event="Batch window elapsed with empty queue")
            return None
        self._log.debug(event="Flushing batch", request_count=len(batch))
        task = loop.create_task(
            self._process_batch(batch=batch),
            name=f"batch_flush_{self._config.name or id(self)}_{uuid.uuid4()}",
        )
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)
        return task

    async def _process_batch(self, *, batch: list[PendingRequest[D, R]]) -> None:
        """
        Run the executor over a batch and fail the batch on flush-level errors.

        Parameters
        ----------
        batch : list[PendingRequest[D, R]]
            Requests swapped out of the pending queue.
        """
        token = CancellationToken()
        execution: asyncio.Future[t.Any] | None = None
        try:
            outcome = self._executor(batch, token)
            if inspect.isawaitable(outcome):
                execution = asyncio.ensure_future(outcome)
                await self._await_execution(execution=execution, batch=batch, token=token)
        except asyncio.CancelledError:
            if execution is not None and not execution.done():
                execution.cancel()
            fail_all(batch=batch, error=BatcherError("batch flush was cancelled"))
            raise
        except Exception as e:
            self._log.error(
                event="Batch executor failed",
                request_count=len(batch),
                error=repr(e),
            )
            fail_all(batch=batch, error=e)
            return

        unsettled = sum(1 for request in batch if not request.done)
        if unsettled:
            self._log.warning(
                event="Batch executor returned with unsettled requests",
                request_count=len(batch),
                unsettled_count=unsettled,
            )

    async def _await_execution(
        self,
        *,
        execution: asyncio.Future[t.Any],
        batch: list[PendingRequest[D, R]],
        token: CancellationToken,
    ) -> None:
        """
        Wait for the executor, racing it against the flush timeout.

        An executor still running when the timeout elapses is kept in
        ``_overdue_tasks`` until it finishes or ``close`` cancels it.

        Parameters
        ----------
        execution : asyncio.Future[typing.Any]
            Task wrapping the awaitable returned by the executor.
        batch : list[PendingRequest[D, R]]
            Requests of the flush.
        token : CancellationToken
            Token triggered when the timeout elapses.
        """
        timeout_seconds = self._config.timeout_seconds
        if timeout_seconds is None:
            await execution
            return

        done, _ = await asyncio.wait({execution}, timeout=timeout_seconds)
        if execution in done:
            execution.result()
            return

        error = BatcherTimeoutError(
            f"batch executor did not complete within {timeout_seconds}s, cancellation requested"
        )
        token.cancel(reason=error)
        self._log.error(
            event="Batch execution timed out",
            request_count=len(batch),
            timeout_seconds=timeout_seconds,
        )
        fail_all(batch=batch, error=error)
        self._overdue_tasks.add(execution)
        execution.add_done_callback(self._overdue_tasks.discard)
        execution.add_done_callback(self._log_late_completion)

    def _log_late_completion(self, task: asyncio.Future[t.Any]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._log.debug(event="Batch executor failed after timeout", error=repr(error))
        else:
            self._log.debug(event="Batch executor completed after timeout")

    def __repr__(self) -> str:
        return (
            f"Batcher(name={self._config.name!r}, running={self._running}, "
            f"period_seconds={self._period_seconds}, pending={len(self._pending)})"
        )
