"""
Coalescer-specific runtime exceptions.
"""

from __future__ import annotations


class BatcherError(RuntimeError):
    """
    Base class for errors raised by the batching engine.
    """


class BatcherStoppedError(BatcherError):
    """
    Signal that a request was submitted to, or left pending in, a stopped batcher.

    Notes
    -----
    Raised synchronously by ``Batcher.run`` while the batcher is stopped. Call
    ``Batcher.start`` to accept requests again.
    """


class BatcherTimeoutError(BatcherError, TimeoutError):
    """
    Signal that a flush did not complete within the configured timeout.

    Every request of the timed-out batch that was not settled yet fails with
    the same instance of this error.
    """
