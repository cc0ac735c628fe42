from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from .._internal.http import (
    AsyncTransport,
    SyncTransport,
    create_base_async_client,
    create_base_client,
)
from .._internal.iter_coroutine import iter_coroutine
from .._internal.storage import get_api_origin
from .._internal.storage.cancellation import CancellationToken
from .._internal.storage.core import AsyncStorageOpsClient, SyncStorageOpsClient
from .._internal.storage.errors import StorageConfigError
from .._internal.storage.handlers import ServerHttpHandler, StorageHttpHandler
from .._internal.storage.kinds import build_transfer_request, format_key, get_download_kind
from .._internal.storage.s3 import resolve_endpoint
from .._internal.storage.types import (
    Body,
    OnProgressCallback,
    ResponseEnvelope,
    TokenProvider,
    TransferRequest,
    Visibility,
)


def _transfer_request(
    key: str,
    body: Body,
    *,
    content_type: str | None,
    request_body_header: Mapping[str, Any] | None,
    tags: Iterable[tuple[str, str]] | None,
    visibility: Visibility,
    content_disposition: str | None,
) -> TransferRequest:
    if visibility not in ("public", "private"):
        raise StorageConfigError(f"visibility must be 'public' or 'private', got {visibility!r}")
    return TransferRequest(
        key=key,
        body=body,
        content_type=content_type,
        request_body_header=dict(request_body_header) if request_body_header else None,
        tags=tuple(tags or ()),
        visibility=visibility,
        content_disposition=content_disposition,
    )


class StorageClient:
    """Synchronous client for uploading to and downloading from OneBlink storage.

    Example::

        with StorageClient(token_provider=get_access_token,
                           api_origin="https://bucket.api.oneblink.io") as storage:
            result = storage.upload(
                "attachment",
                open("photo.jpg", "rb"),
                content_type="image/jpeg",
                metadata={"fileName": "photo.jpg"},
                form_id=1,
            )
            print(result["attachmentDataId"], result.s3.key)

    ``token_provider`` is called before every HTTP attempt and must return
    the bearer token (or None to send the request unsigned). Without an
    explicit ``handler`` the client creates, and later closes, its own
    ``httpx.Client`` behind a :class:`ServerHttpHandler`.
    """

    def __init__(
        self,
        *,
        token_provider: TokenProvider,
        api_origin: str | None = None,
        handler: StorageHttpHandler | None = None,
        timeout: float | None = None,
    ) -> None:
        api_origin = get_api_origin(api_origin)
        resolve_endpoint(api_origin)

        self._owned_transport: SyncTransport | None = None
        if handler is None:
            self._owned_transport = SyncTransport(create_base_client(timeout=timeout))
            handler = ServerHttpHandler(self._owned_transport)
        elif not isinstance(handler.transport, SyncTransport):
            raise StorageConfigError("StorageClient requires a handler with a SyncTransport")

        self._ops = SyncStorageOpsClient(
            handler=handler, token_provider=token_provider, api_origin=api_origin
        )
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageConfigError("StorageClient is closed")

    def upload(
        self,
        kind: str,
        body: Body | dict[str, Any] | list[Any],
        *,
        content_type: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        tags: Iterable[tuple[str, str]] | None = None,
        visibility: Visibility | None = None,
        on_progress: OnProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
        **path_params: Any,
    ) -> ResponseEnvelope:
        """Upload ``body`` as one of the known object kinds (see ``UPLOAD_KINDS``).

        ``metadata`` is sent to the proxy in ``x-oneblink-request-body`` and
        uses the proxy's field names (``fileName``, ``formsAppId``, ...).
        ``path_params`` fill in the kind's key template, e.g. ``form_id``.
        """
        self._ensure_open()
        transfer = build_transfer_request(
            kind,
            body,
            content_type=content_type,
            metadata=metadata,
            tags=tags,
            visibility=visibility,
            path_params=path_params,
        )
        return iter_coroutine(
            self._ops.upload_object(transfer, on_progress=on_progress, cancellation=cancellation)
        )

    def upload_object(
        self,
        key: str,
        body: Body,
        *,
        content_type: str | None,
        request_body_header: Mapping[str, Any] | None = None,
        tags: Iterable[tuple[str, str]] | None = None,
        visibility: Visibility = "private",
        content_disposition: str | None = None,
        on_progress: OnProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ResponseEnvelope:
        """Upload ``body`` under an explicit key prefix."""
        self._ensure_open()
        transfer = _transfer_request(
            key,
            body,
            content_type=content_type,
            request_body_header=request_body_header,
            tags=tags,
            visibility=visibility,
            content_disposition=content_disposition,
        )
        return iter_coroutine(
            self._ops.upload_object(transfer, on_progress=on_progress, cancellation=cancellation)
        )

    def download(
        self, kind: str, *, cancellation: CancellationToken | None = None, **path_params: Any
    ) -> Any | None:
        """Download a JSON object of a known kind; None if access is denied."""
        self._ensure_open()
        key = format_key(get_download_kind(kind).key_template, path_params)
        return self.download_json(key, cancellation=cancellation)

    def download_json(
        self, key: str, *, cancellation: CancellationToken | None = None
    ) -> Any | None:
        self._ensure_open()
        return iter_coroutine(self._ops.download_json(key, cancellation=cancellation))

    def close(self) -> None:
        self._closed = True
        if self._owned_transport is not None:
            self._owned_transport.close()
            self._owned_transport = None

    def __enter__(self) -> StorageClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


class AsyncStorageClient:
    """Asynchronous counterpart of :class:`StorageClient`.

    ``token_provider`` and ``on_progress`` may be plain functions or
    coroutine functions. Parts of a multipart upload run concurrently in an
    anyio task group, bounded by the handler's queue size.
    """

    def __init__(
        self,
        *,
        token_provider: TokenProvider,
        api_origin: str | None = None,
        handler: StorageHttpHandler | None = None,
        timeout: float | None = None,
    ) -> None:
        api_origin = get_api_origin(api_origin)
        resolve_endpoint(api_origin)

        self._owned_transport: AsyncTransport | None = None
        if handler is None:
            self._owned_transport = AsyncTransport(create_base_async_client(timeout=timeout))
            handler = ServerHttpHandler(self._owned_transport)
        elif not isinstance(handler.transport, AsyncTransport):
            raise StorageConfigError("AsyncStorageClient requires a handler with an AsyncTransport")

        self._ops = AsyncStorageOpsClient(
            handler=handler, token_provider=token_provider, api_origin=api_origin
        )
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageConfigError("AsyncStorageClient is closed")

    async def upload(
        self,
        kind: str,
        body: Body | dict[str, Any] | list[Any],
        *,
        content_type: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        tags: Iterable[tuple[str, str]] | None = None,
        visibility: Visibility | None = None,
        on_progress: OnProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
        **path_params: Any,
    ) -> ResponseEnvelope:
        self._ensure_open()
        transfer = build_transfer_request(
            kind,
            body,
            content_type=content_type,
            metadata=metadata,
            tags=tags,
            visibility=visibility,
            path_params=path_params,
        )
        return await self._ops.upload_object(
            transfer, on_progress=on_progress, cancellation=cancellation
        )

    async def upload_object(
        self,
        key: str,
        body: Body,
        *,
        content_type: str | None,
        request_body_header: Mapping[str, Any] | None = None,
        tags: Iterable[tuple[str, str]] | None = None,
        visibility: Visibility = "private",
        content_disposition: str | None = None,
        on_progress: OnProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ResponseEnvelope:
        self._ensure_open()
        transfer = _transfer_request(
            key,
            body,
            content_type=content_type,
            request_body_header=request_body_header,
            tags=tags,
            visibility=visibility,
            content_disposition=content_disposition,
        )
        return await self._ops.upload_object(
            transfer, on_progress=on_progress, cancellation=cancellation
        )

    async def download(
        self, kind: str, *, cancellation: CancellationToken | None = None, **path_params: Any
    ) -> Any | None:
        self._ensure_open()
        key = format_key(get_download_kind(kind).key_template, path_params)
        return await self.download_json(key, cancellation=cancellation)

    async def download_json(
        self, key: str, *, cancellation: CancellationToken | None = None
    ) -> Any | None:
        self._ensure_open()
        return await self._ops.download_json(key, cancellation=cancellation)

    async def aclose(self) -> None:
        self._closed = True
        if self._owned_transport is not None:
            transport, self._owned_transport = self._owned_transport, None
            await transport.aclose()

    async def __aenter__(self) -> AsyncStorageClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()


__all__ = ["StorageClient", "AsyncStorageClient"]
