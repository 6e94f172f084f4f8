from .api import batched as batched
from .api import create_async_batcher as create_async_batcher
from .batch_utils import fail_all as fail_all
from .batch_utils import settle_from_mapping as settle_from_mapping
from .cancellation import CancellationToken as CancellationToken
from .config import BatcherConfig as BatcherConfig
from .config import BatcherSettings as BatcherSettings
from .config import StopPolicy as StopPolicy
from .core import Batcher as Batcher
from .core import PendingRequest as PendingRequest
from .exceptions import BatcherError as BatcherError
from .exceptions import BatcherStoppedError as BatcherStoppedError
from .exceptions import BatcherTimeoutError as BatcherTimeoutError

__all__ = [
    "Batcher",
    "BatcherConfig",
    "BatcherError",
    "BatcherSettings",
    "BatcherStoppedError",
    "BatcherTimeoutError",
    "CancellationToken",
    "PendingRequest",
    "StopPolicy",
    "batched",
    "create_async_batcher",
    "fail_all",
    "settle_from_mapping",
]
