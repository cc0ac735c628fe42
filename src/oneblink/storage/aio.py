from .._internal.http import AsyncTransport
from .._internal.storage.cancellation import CancellationToken
from .._internal.storage.errors import (
    InvalidResponseEnvelopeError,
    InvalidStorageResponseError,
    NoResponseFromServerError,
    StorageClientError,
    StorageConfigError,
    StorageError,
    StorageRequestAbortedError,
)
from .._internal.storage.handlers import (
    ConnectionAwareHttpHandler,
    ServerHttpHandler,
    StorageHttpHandler,
    create_async_server_handler as create_server_handler,
)
from .._internal.storage.kinds import generate_form_submission_tags
from .._internal.storage.types import ProgressEvent, ResponseEnvelope
from .client import AsyncStorageClient as StorageClient

__all__ = [
    "StorageClient",
    "CancellationToken",
    "StorageHttpHandler",
    "ServerHttpHandler",
    "ConnectionAwareHttpHandler",
    "AsyncTransport",
    "create_server_handler",
    "StorageError",
    "StorageClientError",
    "StorageConfigError",
    "InvalidResponseEnvelopeError",
    "InvalidStorageResponseError",
    "NoResponseFromServerError",
    "StorageRequestAbortedError",
    "generate_form_submission_tags",
    "ProgressEvent",
    "ResponseEnvelope",
]
