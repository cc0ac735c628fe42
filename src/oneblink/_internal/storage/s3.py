"""S3 clients addressed through the storage proxy.

botocore serialises every S3 operation and parses its response, but the
HTTP exchange itself never reaches botocore's own HTTP session. A
``before-send`` handler hands the prepared request to the storage request
client instead, so each attempt carries the proxy's bearer token and
metadata headers in place of an AWS signature.
"""

from __future__ import annotations

import io
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urlsplit

import httpx
from aiobotocore.awsrequest import AioAWSResponse
from aiobotocore.config import AioConfig
from botocore import UNSIGNED
from botocore.awsrequest import AWSPreparedRequest, AWSResponse
from botocore.config import Config

from oneblink._internal.http import StorageRequest, get_region
from oneblink._internal.storage import encode_tags, with_visibility_tag
from oneblink._internal.storage.errors import StorageConfigError
from oneblink._internal.storage.types import TransferRequest

ENDPOINT_PATH = "/storage"
SEND_EVENT = "before-send.s3"

# botocore's own retries are disabled; StorageRequestClient owns the budget
CLIENT_CONFIG: dict[str, Any] = {
    "signature_version": UNSIGNED,
    "s3": {"addressing_style": "virtual"},
    "retries": {"total_max_attempts": 1, "mode": "standard"},
    "request_checksum_calculation": "when_required",
    "response_checksum_validation": "when_required",
}

_DROPPED_REQUEST_HEADERS = frozenset({"expect", "user-agent"})
_DROPPED_RESPONSE_HEADERS = frozenset({"content-encoding", "content-length", "transfer-encoding"})


@dataclass(slots=True, frozen=True)
class StorageEndpoint:
    """Where the proxy expects S3 calls for one API origin.

    The first DNS label of the origin names the bucket and the remaining
    labels the proxy host, so ``https://bucket.api.example.com`` resolves
    to bucket ``bucket`` behind ``https://api.example.com/storage``.
    """

    scheme: str
    bucket: str
    host: str
    port: int | None = None

    @property
    def netloc(self) -> str:
        return f"{self.host}:{self.port}" if self.port is not None else self.host

    @property
    def endpoint(self) -> str:
        return f"{self.scheme}://{self.netloc}{ENDPOINT_PATH}"

    def object_url(self, key: str) -> str:
        # Virtual-host style: the bucket becomes the leading label again
        return f"{self.scheme}://{self.bucket}.{self.netloc}{ENDPOINT_PATH}/{quote(key, safe='/~')}"


def resolve_endpoint(api_origin: str) -> StorageEndpoint:
    try:
        parts = urlsplit(api_origin)
        port = parts.port
    except ValueError as exc:
        raise StorageConfigError(f"Invalid API origin: {api_origin!r}") from exc

    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise StorageConfigError(f"API origin must be an absolute http(s) URL: {api_origin!r}")

    bucket, _, host = parts.hostname.partition(".")
    if not bucket or not host:
        raise StorageConfigError(
            f"API origin host must include a bucket label and a domain: {api_origin!r}"
        )
    return StorageEndpoint(scheme=parts.scheme, bucket=bucket, host=host, port=port)


def client_kwargs(endpoint: StorageEndpoint, config_cls: type[Config] = Config) -> dict[str, Any]:
    """Keyword arguments for ``create_client("s3", ...)`` on either session type."""
    return {
        "region_name": get_region(),
        "endpoint_url": endpoint.endpoint,
        "config": config_cls(**CLIENT_CONFIG),
    }


def async_client_kwargs(endpoint: StorageEndpoint) -> dict[str, Any]:
    return client_kwargs(endpoint, AioConfig)


def object_params(transfer: TransferRequest) -> dict[str, Any]:
    """PutObject / CreateMultipartUpload parameters shared by both calls."""
    params: dict[str, Any] = {"Key": transfer.key}
    if transfer.content_type:
        params["ContentType"] = transfer.content_type
    if transfer.content_disposition:
        params["ContentDisposition"] = transfer.content_disposition
    tags = with_visibility_tag(transfer.tags, transfer.visibility)
    if tags:
        params["Tagging"] = encode_tags(tags)
    return params


def _header_value(value: str | bytes) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


def to_storage_request(request: AWSPreparedRequest) -> StorageRequest:
    """Turn a request botocore prepared for the wire into a StorageRequest."""
    body = request.body
    if hasattr(body, "read"):
        body = body.read()
    if isinstance(body, str):
        body = body.encode("utf-8")
    return StorageRequest(
        method=request.method,
        url=request.url,
        headers={
            name: _header_value(value)
            for name, value in request.headers.items()
            if name.lower() not in _DROPPED_REQUEST_HEADERS
        },
        content=body or None,
    )


def _response_headers(response: httpx.Response, content: bytes) -> dict[str, str]:
    # httpx has already decoded the body, so its length is what botocore checks against
    headers = {
        name: value
        for name, value in response.headers.items()
        if name not in _DROPPED_RESPONSE_HEADERS
    }
    headers["content-length"] = str(len(content))
    return headers


class BufferedRawResponse(io.BytesIO):
    """The ``raw`` body of an AWSResponse whose bytes were already read."""

    def stream(self, **kwargs: Any) -> Iterator[bytes]:
        contents = self.read()
        while contents:
            yield contents
            contents = self.read()


class _BufferedContent:
    def __init__(self, data: bytes) -> None:
        self._buffer = io.BytesIO(data)
        self._size = len(data)

    async def read(self, n: int = -1) -> bytes:
        return self._buffer.read(n)

    def at_eof(self) -> bool:
        return self._buffer.tell() >= self._size


class AsyncBufferedRawResponse:
    """The ``raw`` body of an AioAWSResponse whose bytes were already read.

    aiobotocore reads non-streaming bodies with ``await raw.read()`` and
    wraps streaming ones in ``AioStreamingBody``, which reads through
    ``raw.content``.
    """

    def __init__(self, url: str, data: bytes) -> None:
        self.url = url
        self.content = _BufferedContent(data)

    async def read(self) -> bytes:
        return await self.content.read()

    def close(self) -> None:
        pass


def to_aws_response(response: httpx.Response, content: bytes) -> AWSResponse:
    return AWSResponse(
        str(response.url),
        response.status_code,
        _response_headers(response, content),
        BufferedRawResponse(content),
    )


def to_aio_aws_response(response: httpx.Response, content: bytes) -> AioAWSResponse:
    url = str(response.url)
    return AioAWSResponse(
        url,
        response.status_code,
        _response_headers(response, content),
        AsyncBufferedRawResponse(url, content),
    )


__all__ = [
    "ENDPOINT_PATH",
    "SEND_EVENT",
    "CLIENT_CONFIG",
    "StorageEndpoint",
    "resolve_endpoint",
    "client_kwargs",
    "async_client_kwargs",
    "object_params",
    "to_storage_request",
    "BufferedRawResponse",
    "AsyncBufferedRawResponse",
    "to_aws_response",
    "to_aio_aws_response",
]
