from __future__ import annotations

import contextlib
import inspect
import json
import logging
import threading
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, cast

import aiobotocore.session
import anyio
import botocore.session
import httpx
from aiobotocore.awsrequest import AioAWSResponse
from botocore.awsrequest import AWSPreparedRequest, AWSResponse

from oneblink._internal.http import RETRYABLE_STATUS_CODES, StorageRequest, get_max_attempts
from oneblink._internal.iter_coroutine import iter_coroutine
from oneblink._internal.storage import await_if_necessary, compute_body_length, get_api_origin
from oneblink._internal.storage.cancellation import CancellationToken
from oneblink._internal.storage.errors import (
    InvalidStorageResponseError,
    NoResponseFromServerError,
    StorageError,
    StorageRequestAbortedError,
)
from oneblink._internal.storage.handlers import StorageHttpHandler
from oneblink._internal.storage.interceptor import OperationContext, RequestInterceptor
from oneblink._internal.storage.multipart import (
    MultipartUploadSession,
    ProgressTracker,
    create_async_multipart_upload_runtime,
    create_sync_multipart_upload_runtime,
)
from oneblink._internal.storage.s3 import (
    SEND_EVENT,
    StorageEndpoint,
    async_client_kwargs,
    client_kwargs,
    object_params,
    resolve_endpoint,
    to_aio_aws_response,
    to_aws_response,
    to_storage_request,
)
from oneblink._internal.storage.types import (
    OnProgressCallback,
    ResponseEnvelope,
    TokenProvider,
    TransferRequest,
    UploadedPart,
)

log = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None] | None]

FORBIDDEN = 403


def _sync_sleep(seconds: float) -> None:
    time.sleep(seconds)


async def _sleep_with_backoff(sleep_fn: SleepFn, attempt: int) -> None:
    delay = min(2**attempt * 0.1, 2.0)
    result = sleep_fn(delay)
    if inspect.isawaitable(result):
        await cast(Awaitable[None], result)


def raise_for_failure(context: OperationContext, response: httpx.Response) -> None:
    """Raise for a failed response, preferring the failure the proxy described.

    Without a captured FailureRecord the raw ``httpx.HTTPStatusError``
    propagates unchanged.
    """
    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        failure = context.failure
        if failure is None:
            raise
        raise StorageError(
            failure.message,
            http_status_code=failure.status_code,
            original_error=exc,
        ) from exc


def _status_code(exc: Exception) -> int | None:
    if isinstance(exc, StorageError):
        return exc.http_status_code
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


class StorageRequestClient:
    """Sends one storage request through an interceptor with bounded retries."""

    def __init__(self, *, handler: StorageHttpHandler, sleep_fn: SleepFn = anyio.sleep) -> None:
        self._handler = handler
        self._sleep_fn = sleep_fn

    @property
    def handler(self) -> StorageHttpHandler:
        return self._handler

    async def request(
        self, interceptor: RequestInterceptor, request: StorageRequest
    ) -> httpx.Response:
        max_attempts = get_max_attempts()

        for attempt in range(max_attempts):
            final_attempt = attempt + 1 >= max_attempts
            try:
                response = await interceptor.intercept(request)
            except httpx.TransportError as exc:
                if final_attempt:
                    raise
                log.debug("Retrying storage request %s %s: %r", request.method, request.url, exc)
                await _sleep_with_backoff(self._sleep_fn, attempt)
                continue

            if response.status_code in RETRYABLE_STATUS_CODES and not final_attempt:
                log.debug(
                    "Retrying storage request %s %s after status %s",
                    request.method,
                    request.url,
                    response.status_code,
                )
                await self._handler.close_response(response)
                await _sleep_with_backoff(self._sleep_fn, attempt)
                continue

            if response.status_code >= 400:
                await self._handler.close_response(response)
                raise_for_failure(interceptor.context, response)
            return response

        raise RuntimeError("max_attempts must be at least 1")


class BaseStorageOpsClient:
    """Runs storage operations on per-operation S3 clients.

    Every operation opens its own S3 client whose ``before-send`` handler
    routes the HTTP exchange through that operation's interceptor, so the
    captured envelope and failure never leak between operations.
    """

    def __init__(
        self,
        *,
        handler: StorageHttpHandler,
        token_provider: TokenProvider,
        api_origin: str | None,
        request_client: StorageRequestClient,
        multipart_runtime: Any,
    ) -> None:
        self._handler = handler
        self._token_provider = token_provider
        self._endpoint = resolve_endpoint(get_api_origin(api_origin))
        self._request_client = request_client
        self._multipart_runtime = multipart_runtime

    @property
    def endpoint(self) -> StorageEndpoint:
        return self._endpoint

    @property
    def handler(self) -> StorageHttpHandler:
        return self._handler

    def _s3_client(
        self, interceptor: RequestInterceptor
    ) -> contextlib.AbstractAsyncContextManager[Any]:
        raise NotImplementedError

    def _make_upload_part_fn(self, s3_client: Any, session: MultipartUploadSession) -> Any:
        raise NotImplementedError

    def _new_interceptor(self, context: OperationContext) -> RequestInterceptor:
        return RequestInterceptor(self._handler, self._token_provider, context)

    async def _exchange(
        self, interceptor: RequestInterceptor, request: AWSPreparedRequest
    ) -> tuple[httpx.Response, bytes]:
        response = await self._request_client.request(interceptor, to_storage_request(request))
        try:
            content = await self._handler.read(response)
        finally:
            await self._handler.close_response(response)
        return response, content

    async def _upload_part(
        self,
        s3_client: Any,
        session: MultipartUploadSession,
        part_number: int,
        content: bytes,
    ) -> UploadedPart:
        result = await await_if_necessary(
            s3_client.upload_part(
                Bucket=self._endpoint.bucket,
                Key=session.key,
                UploadId=session.upload_id,
                PartNumber=part_number,
                Body=content,
            )
        )
        etag = result.get("ETag")
        if not etag:
            raise InvalidStorageResponseError("UploadPart returned no ETag")
        return UploadedPart(part_number=part_number, etag=etag)

    async def _put_object(
        self,
        s3_client: Any,
        transfer: TransferRequest,
        content: bytes,
        tracker: ProgressTracker,
    ) -> None:
        await await_if_necessary(
            s3_client.put_object(
                Bucket=self._endpoint.bucket, Body=content, **object_params(transfer)
            )
        )
        await await_if_necessary(tracker.advance(len(content)))

    async def _multipart_upload(
        self,
        s3_client: Any,
        transfer: TransferRequest,
        parts: Any,
        tracker: ProgressTracker,
        cancellation: CancellationToken | None,
    ) -> None:
        created = await await_if_necessary(
            s3_client.create_multipart_upload(
                Bucket=self._endpoint.bucket, **object_params(transfer)
            )
        )
        upload_id = created.get("UploadId")
        if not upload_id:
            raise InvalidStorageResponseError("CreateMultipartUpload returned no UploadId")

        session = MultipartUploadSession(upload_id=upload_id, key=transfer.key)
        queue_size = max(1, self._handler.queue_size())
        log.debug("Uploading %s in parts, %s at a time", transfer.key, queue_size)

        uploaded = cast(
            list[UploadedPart],
            await await_if_necessary(
                self._multipart_runtime.upload(
                    parts=parts,
                    queue_size=queue_size,
                    tracker=tracker,
                    cancellation=cancellation,
                    upload_part_fn=self._make_upload_part_fn(s3_client, session),
                )
            ),
        )
        if cancellation is not None and cancellation.cancelled:
            raise StorageRequestAbortedError()

        await await_if_necessary(
            s3_client.complete_multipart_upload(
                Bucket=self._endpoint.bucket,
                Key=session.key,
                UploadId=session.upload_id,
                MultipartUpload={
                    "Parts": [
                        {"ETag": part.etag, "PartNumber": part.part_number} for part in uploaded
                    ]
                },
            )
        )

    async def upload_object(
        self,
        transfer: TransferRequest,
        *,
        on_progress: OnProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ResponseEnvelope:
        context = OperationContext(request_body_header=transfer.request_body_header)
        interceptor = self._new_interceptor(context)
        tracker = ProgressTracker(compute_body_length(transfer.body), on_progress)

        async def operation() -> None:
            first, parts = await await_if_necessary(
                self._multipart_runtime.split_body(transfer.body)
            )
            async with self._s3_client(interceptor) as s3_client:
                if parts is None:
                    tracker.set_total(len(first))
                    await self._put_object(s3_client, transfer, first, tracker)
                else:
                    await self._multipart_upload(
                        s3_client, transfer, parts, tracker, cancellation
                    )

        await self._multipart_runtime.run(
            operation, tracker=tracker, cancellation=cancellation
        )

        if context.envelope is None:
            raise NoResponseFromServerError()
        return context.envelope

    async def download_json(
        self, key: str, *, cancellation: CancellationToken | None = None
    ) -> Any | None:
        interceptor = self._new_interceptor(OperationContext())

        async def operation() -> Any | None:
            async with self._s3_client(interceptor) as s3_client:
                try:
                    result = await await_if_necessary(
                        s3_client.get_object(Bucket=self._endpoint.bucket, Key=key)
                    )
                except (StorageError, httpx.HTTPStatusError) as exc:
                    if _status_code(exc) == FORBIDDEN:
                        log.debug("Storage object %s is not available (403)", key)
                        return None
                    raise
                content = await await_if_necessary(result["Body"].read())
            return json.loads(content)

        return await self._multipart_runtime.run(operation, tracker=None, cancellation=cancellation)


class SyncStorageOpsClient(BaseStorageOpsClient):
    def __init__(
        self,
        *,
        handler: StorageHttpHandler,
        token_provider: TokenProvider,
        api_origin: str | None = None,
    ) -> None:
        super().__init__(
            handler=handler,
            token_provider=token_provider,
            api_origin=api_origin,
            request_client=StorageRequestClient(handler=handler, sleep_fn=_sync_sleep),
            multipart_runtime=create_sync_multipart_upload_runtime(),
        )
        self._session = botocore.session.get_session()
        # botocore sessions are not safe to create clients from concurrently
        self._session_lock = threading.Lock()

    @contextlib.asynccontextmanager
    async def _s3_client(self, interceptor: RequestInterceptor) -> AsyncIterator[Any]:
        with self._session_lock:
            s3_client = self._session.create_client("s3", **client_kwargs(self._endpoint))

        def send(request: AWSPreparedRequest, **kwargs: Any) -> AWSResponse:
            return to_aws_response(*iter_coroutine(self._exchange(interceptor, request)))

        s3_client.meta.events.register(SEND_EVENT, send)
        try:
            yield s3_client
        finally:
            s3_client.close()

    def _make_upload_part_fn(self, s3_client: Any, session: MultipartUploadSession) -> Any:
        return lambda part_number, content: iter_coroutine(
            self._upload_part(s3_client, session, part_number, content)
        )


class AsyncStorageOpsClient(BaseStorageOpsClient):
    def __init__(
        self,
        *,
        handler: StorageHttpHandler,
        token_provider: TokenProvider,
        api_origin: str | None = None,
    ) -> None:
        super().__init__(
            handler=handler,
            token_provider=token_provider,
            api_origin=api_origin,
            request_client=StorageRequestClient(handler=handler),
            multipart_runtime=create_async_multipart_upload_runtime(),
        )
        self._session = aiobotocore.session.get_session()

    @contextlib.asynccontextmanager
    async def _s3_client(self, interceptor: RequestInterceptor) -> AsyncIterator[Any]:
        async def send(request: AWSPreparedRequest, **kwargs: Any) -> AioAWSResponse:
            return to_aio_aws_response(*await self._exchange(interceptor, request))

        async with self._session.create_client(
            "s3", **async_client_kwargs(self._endpoint)
        ) as s3_client:
            s3_client.meta.events.register(SEND_EVENT, send)
            yield s3_client

    def _make_upload_part_fn(self, s3_client: Any, session: MultipartUploadSession) -> Any:
        async def upload_part(part_number: int, content: bytes) -> UploadedPart:
            return await self._upload_part(s3_client, session, part_number, content)

        return upload_part


__all__ = [
    "raise_for_failure",
    "StorageRequestClient",
    "BaseStorageOpsClient",
    "SyncStorageOpsClient",
    "AsyncStorageOpsClient",
]
