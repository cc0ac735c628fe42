from __future__ import annotations


class StorageError(Exception):
    """A structured failure returned by the storage proxy.

    Raised when a request failed with a body the proxy formatted for us
    (a JSON ``{"message": ...}`` object or plain text). ``original_error``
    is the transport-level error the failure was derived from.
    """

    def __init__(
        self,
        message: str,
        *,
        http_status_code: int,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.http_status_code = http_status_code
        self.original_error = original_error

    def __repr__(self) -> str:
        return f"StorageError({self.message!r}, http_status_code={self.http_status_code})"


class StorageClientError(Exception):
    """Base class for errors raised by the client itself rather than the proxy."""


class StorageConfigError(StorageClientError, ValueError):
    pass


class InvalidResponseEnvelopeError(StorageClientError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Invalid x-oneblink-response header from storage proxy: {detail}")
        self.detail = detail


class InvalidStorageResponseError(StorageClientError):
    """A successful S3 response was missing a field the upload depends on."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"Unexpected response from storage proxy: {detail}")
        self.detail = detail


class NoResponseFromServerError(StorageClientError):
    def __init__(self) -> None:
        super().__init__(
            "No response from server. The storage proxy did not return the "
            "x-oneblink-response header for a successful request."
        )


class StorageRequestAbortedError(StorageClientError):
    def __init__(self) -> None:
        super().__init__("The storage request was aborted.")


__all__ = [
    "StorageError",
    "StorageClientError",
    "StorageConfigError",
    "InvalidResponseEnvelopeError",
    "InvalidStorageResponseError",
    "NoResponseFromServerError",
    "StorageRequestAbortedError",
]
