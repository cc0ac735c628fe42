from __future__ import annotations

from collections.abc import AsyncIterable, Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import IO, Any, Literal, Union

Visibility = Literal["public", "private"]

TokenProvider = Callable[[], Union[str, None, Awaitable[Union[str, None]]]]

Body = Union[bytes, bytearray, memoryview, str, IO[bytes], Iterable[bytes], AsyncIterable[bytes]]

@dataclass(slots=True, frozen=True)
class FailureRecord:
    status_code: int
    message: str


@dataclass(slots=True)
class StorageLocator:
    """Object identity assigned by the proxy (the ``s3`` member of the envelope)."""

    key: str
    bucket: str | None = None
    region: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ResponseEnvelope:
    """Metadata returned by the proxy in the ``x-oneblink-response`` header.

    ``result`` holds the operation specific fields (for example
    ``submissionId`` for submissions) and ``s3`` the object locator. ``raw``
    is the decoded header as received.
    """

    result: dict[str, Any]
    s3: StorageLocator
    raw: dict[str, Any]

    def __getitem__(self, name: str) -> Any:
        return self.raw[name]

    def get(self, name: str, default: Any = None) -> Any:
        return self.raw.get(name, default)


@dataclass(slots=True, frozen=True)
class ProgressEvent:
    """Passed to progress callbacks; ``progress`` is a whole percentage."""

    progress: int
    total: int = 100


OnProgressCallback = Union[
    Callable[[ProgressEvent], None], Callable[[ProgressEvent], Awaitable[None]]
]


@dataclass(frozen=True)
class TransferRequest:
    key: str
    body: Any
    content_type: str | None
    request_body_header: dict[str, Any] | None = None
    tags: tuple[tuple[str, str], ...] = ()
    visibility: Visibility = "private"
    content_disposition: str | None = None


@dataclass(slots=True, frozen=True)
class UploadedPart:
    part_number: int
    etag: str


__all__ = [
    "Visibility",
    "TokenProvider",
    "Body",
    "FailureRecord",
    "StorageLocator",
    "ResponseEnvelope",
    "ProgressEvent",
    "OnProgressCallback",
    "TransferRequest",
    "UploadedPart",
]
