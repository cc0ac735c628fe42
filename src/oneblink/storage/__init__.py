from .._internal.http import AsyncTransport, SyncTransport
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
    create_async_server_handler,
    create_server_handler,
    determine_queue_size,
)
from .._internal.storage.kinds import (
    DOWNLOAD_KINDS,
    UPLOAD_KINDS,
    generate_form_submission_tags,
)
from .._internal.storage.multipart import determine_upload_progress_as_percentage
from .._internal.storage.types import (
    FailureRecord,
    OnProgressCallback,
    ProgressEvent,
    ResponseEnvelope,
    StorageLocator,
    TokenProvider,
    Visibility,
)
from .client import AsyncStorageClient, StorageClient

__all__ = [
    # clients
    "StorageClient",
    "AsyncStorageClient",
    "CancellationToken",
    # handlers
    "StorageHttpHandler",
    "ServerHttpHandler",
    "ConnectionAwareHttpHandler",
    "SyncTransport",
    "AsyncTransport",
    "create_server_handler",
    "create_async_server_handler",
    "determine_queue_size",
    # errors
    "StorageError",
    "StorageClientError",
    "StorageConfigError",
    "InvalidResponseEnvelopeError",
    "InvalidStorageResponseError",
    "NoResponseFromServerError",
    "StorageRequestAbortedError",
    # kinds
    "UPLOAD_KINDS",
    "DOWNLOAD_KINDS",
    "generate_form_submission_tags",
    # helpers
    "determine_upload_progress_as_percentage",
    # types
    "FailureRecord",
    "OnProgressCallback",
    "ProgressEvent",
    "ResponseEnvelope",
    "StorageLocator",
    "TokenProvider",
    "Visibility",
]
