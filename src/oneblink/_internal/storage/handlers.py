"""HTTP handlers: how requests reach the network in a given host environment.

A handler bundles the three things that differ between environments:
sending a request, turning a failed response into a FailureRecord, and
deciding how many upload parts may be in flight at once. Host applications
pick a handler explicitly when constructing a storage client.
"""

from __future__ import annotations

import abc
import json
import logging
from collections.abc import Callable

import httpx

from oneblink._internal.http import AsyncTransport, BaseTransport, SyncTransport, StorageRequest
from oneblink._internal.storage.types import FailureRecord

log = logging.getLogger(__name__)

SERVER_QUEUE_SIZE = 10
DEFAULT_QUEUE_SIZE = 1

EFFECTIVE_TYPE_QUEUE_SIZES = {
    "slow-2g": 1,
    "2g": 1,
    "3g": 2,
    "4g": 10,
}


def determine_queue_size(effective_type: str | None) -> int:
    """Map a network effective connection type to an upload queue size.

    Unknown or missing connection information maps to 1, the lowest common
    denominator.
    """
    if not effective_type:
        return DEFAULT_QUEUE_SIZE
    return EFFECTIVE_TYPE_QUEUE_SIZES.get(effective_type, DEFAULT_QUEUE_SIZE)


def _media_type(content_type: str | None) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


class StorageHttpHandler(abc.ABC):
    """Capability interface used by the request interceptor and orchestrators."""

    def __init__(self, transport: BaseTransport) -> None:
        self._transport = transport

    @property
    def transport(self) -> BaseTransport:
        return self._transport

    def build_request(self, request: StorageRequest) -> httpx.Request:
        return self._transport.build_request(request)

    async def send(self, request: httpx.Request) -> httpx.Response:
        return await self._transport.send(request)

    async def read(self, response: httpx.Response) -> bytes:
        return await self._transport.read(response)

    async def close_response(self, response: httpx.Response) -> None:
        await self._transport.close_response(response)

    async def parse_failure(self, response: httpx.Response) -> FailureRecord | None:
        """Decode a failed response body into a FailureRecord.

        Returns None when the body is not something the proxy produced for
        us (unknown content type or undecodable JSON); the caller then
        surfaces the raw transport error instead.
        """
        media_type = _media_type(response.headers.get("content-type"))
        if media_type == "application/json":
            content = await self.read(response)
            try:
                data = json.loads(content)
            except ValueError:
                log.debug("Failure body for status %s is not valid JSON", response.status_code)
                return None
            message = data.get("message") if isinstance(data, dict) else None
            if not isinstance(message, str):
                return None
            return FailureRecord(status_code=response.status_code, message=message)

        if media_type in ("", "text/html"):
            await self.read(response)
            return FailureRecord(status_code=response.status_code, message=response.text)

        return None

    @abc.abstractmethod
    def queue_size(self) -> int:
        """Maximum number of upload parts in flight for one operation (>= 1)."""
        ...


class ServerHttpHandler(StorageHttpHandler):
    """Handler for headless/server processes; assumes a fast uplink."""

    def queue_size(self) -> int:
        return SERVER_QUEUE_SIZE


class ConnectionAwareHttpHandler(StorageHttpHandler):
    """Handler for interactive clients that can observe network quality.

    ``get_effective_type`` returns the current effective connection type
    (``"slow-2g"``, ``"2g"``, ``"3g"`` or ``"4g"``), or None when the
    platform exposes no such signal. It is consulted once per upload.
    """

    def __init__(
        self,
        transport: BaseTransport,
        get_effective_type: Callable[[], str | None] | None = None,
    ) -> None:
        super().__init__(transport)
        self._get_effective_type = get_effective_type

    def queue_size(self) -> int:
        if self._get_effective_type is None:
            return DEFAULT_QUEUE_SIZE
        return determine_queue_size(self._get_effective_type())


def create_server_handler(client: httpx.Client) -> ServerHttpHandler:
    return ServerHttpHandler(SyncTransport(client))


def create_async_server_handler(client: httpx.AsyncClient) -> ServerHttpHandler:
    return ServerHttpHandler(AsyncTransport(client))


__all__ = [
    "SERVER_QUEUE_SIZE",
    "DEFAULT_QUEUE_SIZE",
    "determine_queue_size",
    "StorageHttpHandler",
    "ServerHttpHandler",
    "ConnectionAwareHttpHandler",
    "create_server_handler",
    "create_async_server_handler",
]
