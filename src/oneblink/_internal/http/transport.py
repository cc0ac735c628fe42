"""HTTP transport implementations for sync and async clients."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field

import httpx


@dataclass(slots=True)
class StorageRequest:
    """A request as seen by the interceptor, before it becomes an httpx.Request."""

    method: str
    url: str
    params: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    content: bytes | None = None

    def copy(self) -> StorageRequest:
        return StorageRequest(
            method=self.method,
            url=self.url,
            params=dict(self.params),
            headers=dict(self.headers),
            content=self.content,
        )


class BaseTransport(abc.ABC):
    """Abstract base class for HTTP transports.

    Every method is declared async so the same core can drive both
    transports; the sync transport never actually suspends, which lets
    it run under iter_coroutine().
    """

    @abc.abstractmethod
    def build_request(self, request: StorageRequest) -> httpx.Request: ...

    @abc.abstractmethod
    async def send(self, request: httpx.Request) -> httpx.Response:
        """Send a prepared request and return the response."""
        ...

    @abc.abstractmethod
    async def read(self, response: httpx.Response) -> bytes:
        """Drain the response body, streaming or buffered."""
        ...

    @abc.abstractmethod
    async def close_response(self, response: httpx.Response) -> None: ...


class SyncTransport(BaseTransport):
    """Synchronous HTTP transport using httpx.Client."""

    def __init__(self, client: httpx.Client) -> None:
        self._client = client

    @property
    def client(self) -> httpx.Client:
        return self._client

    def build_request(self, request: StorageRequest) -> httpx.Request:
        return self._client.build_request(
            request.method,
            request.url,
            params=request.params or None,
            headers=request.headers,
            content=request.content,
        )

    async def send(self, request: httpx.Request) -> httpx.Response:
        return self._client.send(request)

    async def read(self, response: httpx.Response) -> bytes:
        return response.read()

    async def close_response(self, response: httpx.Response) -> None:
        response.close()

    def close(self) -> None:
        self._client.close()


class AsyncTransport(BaseTransport):
    """Asynchronous HTTP transport using httpx.AsyncClient."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    def build_request(self, request: StorageRequest) -> httpx.Request:
        return self._client.build_request(
            request.method,
            request.url,
            params=request.params or None,
            headers=request.headers,
            content=request.content,
        )

    async def send(self, request: httpx.Request) -> httpx.Response:
        return await self._client.send(request)

    async def read(self, response: httpx.Response) -> bytes:
        return await response.aread()

    async def close_response(self, response: httpx.Response) -> None:
        await response.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()


def describe_request(request: httpx.Request) -> str:
    return f"{request.method} {request.url}"


__all__ = [
    "StorageRequest",
    "BaseTransport",
    "SyncTransport",
    "AsyncTransport",
    "describe_request",
]
