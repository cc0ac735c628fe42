"""Shared HTTP infrastructure for OneBlink storage clients."""

from .clients import create_base_async_client, create_base_client
from .config import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_REGION,
    DEFAULT_TIMEOUT,
    RETRYABLE_STATUS_CODES,
    get_max_attempts,
    get_region,
    get_timeout,
)
from .transport import (
    AsyncTransport,
    BaseTransport,
    StorageRequest,
    SyncTransport,
    describe_request,
)

__all__ = [
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_REGION",
    "DEFAULT_TIMEOUT",
    "RETRYABLE_STATUS_CODES",
    "get_max_attempts",
    "get_region",
    "get_timeout",
    "BaseTransport",
    "SyncTransport",
    "AsyncTransport",
    "StorageRequest",
    "describe_request",
    "create_base_client",
    "create_base_async_client",
]
