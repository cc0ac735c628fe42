"""Integration tests for multipart uploads using respx."""

from __future__ import annotations

import io

import httpx
import pytest
import respx
from storage_proxy import API_ORIGIN, PROXY_HOST, FakeStorageProxy, json_failure

from oneblink._internal.storage.multipart import PART_SIZE
from oneblink.storage import (
    AsyncStorageClient,
    AsyncTransport,
    CancellationToken,
    ConnectionAwareHttpHandler,
    ProgressEvent,
    StorageClient,
    StorageError,
    StorageRequestAbortedError,
    SyncTransport,
)


def _assert_multipart_flow(proxy: FakeStorageProxy, expected_lengths: list[int]) -> None:
    create = proxy.requests_with("uploads")
    assert len(create) == 1
    assert "key" not in create[0].url.params
    assert create[0].headers["content-type"] == "application/octet-stream"

    assert sorted(proxy.part_numbers) == list(range(1, len(expected_lengths) + 1))
    assert sorted(proxy.part_lengths) == sorted(expected_lengths)
    assert proxy.completed_parts == [
        (number, f'"etag-{number}"') for number in range(1, len(expected_lengths) + 1)
    ]

    complete = [r for r in proxy.requests if r.method == "POST" and "uploadId" in r.url.params]
    assert len(complete) == 1
    for request in proxy.requests:
        assert request.headers["authorization"] == "Bearer token-1"
        assert request.headers["x-oneblink-request-body"] == '{"fileName":"big.bin"}'


class TestMultipartUploadSync:
    @respx.mock
    def test_large_body_is_uploaded_in_parts(self, storage_env, proxy: FakeStorageProxy) -> None:
        respx.route(host=PROXY_HOST).mock(side_effect=proxy)
        events: list[ProgressEvent] = []
        body = b"a" * PART_SIZE + b"b"

        with StorageClient(token_provider=lambda: "token-1", api_origin=API_ORIGIN) as client:
            result = client.upload(
                "email_attachment",
                body,
                content_type="application/octet-stream",
                metadata={"filename": "big.bin"},
                on_progress=events.append,
            )

        assert len(proxy.requests) == 4
        for request in proxy.requests:
            assert request.headers["x-oneblink-request-body"] == '{"filename":"big.bin"}'
        assert sorted(proxy.part_lengths) == [1, PART_SIZE]
        assert proxy.completed_parts == [(1, '"etag-1"'), (2, '"etag-2"')]
        assert result.s3.key == proxy.final_key

        # Parts finish in any order; progress never goes backwards
        progress = [event.progress for event in events]
        assert progress == sorted(progress)
        assert progress[-1] == 100

    @respx.mock
    def test_file_object_upload(self, storage_env, proxy: FakeStorageProxy) -> None:
        respx.route(host=PROXY_HOST).mock(side_effect=proxy)
        body = io.BytesIO(b"x" * (2 * PART_SIZE + 10))

        with StorageClient(token_provider=lambda: "token-1", api_origin=API_ORIGIN) as client:
            client.upload_object(
                "volunteers/assets",
                body,
                content_type="application/octet-stream",
                request_body_header={"fileName": "big.bin"},
            )

        _assert_multipart_flow(proxy, [PART_SIZE, PART_SIZE, 10])

    @respx.mock
    def test_unknown_length_reports_no_progress(
        self, storage_env, proxy: FakeStorageProxy
    ) -> None:
        respx.route(host=PROXY_HOST).mock(side_effect=proxy)
        events: list[ProgressEvent] = []

        def chunks():
            yield b"a" * PART_SIZE
            yield b"b" * 3

        with StorageClient(token_provider=lambda: "token-1", api_origin=API_ORIGIN) as client:
            client.upload_object(
                "k",
                chunks(),
                content_type="application/octet-stream",
                request_body_header={"fileName": "big.bin"},
                on_progress=events.append,
            )

        _assert_multipart_flow(proxy, [PART_SIZE, 3])
        assert events == []

    @respx.mock
    def test_small_stream_uses_single_put(self, storage_env, proxy: FakeStorageProxy) -> None:
        respx.route(host=PROXY_HOST).mock(side_effect=proxy)
        events: list[ProgressEvent] = []

        with StorageClient(token_provider=lambda: "token-1", api_origin=API_ORIGIN) as client:
            client.upload_object(
                "k",
                iter([b"ab", b"cd"]),
                content_type="text/plain",
                on_progress=events.append,
            )

        assert len(proxy.requests) == 1
        assert proxy.requests[0].method == "PUT"
        assert proxy.requests[0].content == b"abcd"
        assert events == [ProgressEvent(100)]

    @respx.mock
    def test_part_failure_raises_and_skips_complete(self, storage_env) -> None:
        proxy = FakeStorageProxy()

        def side_effect(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("partNumber") == "2":
                proxy.requests.append(request)
                return json_failure(400, "Part rejected")
            return proxy(request)

        respx.route(host=PROXY_HOST).mock(side_effect=side_effect)

        with StorageClient(token_provider=lambda: "token-1", api_origin=API_ORIGIN) as client:
            with pytest.raises(StorageError, match="Part rejected"):
                client.upload_object(
                    "k", b"a" * PART_SIZE * 2, content_type="application/octet-stream"
                )

        assert not [r for r in proxy.requests if r.method == "POST" and "uploadId" in r.url.params]

    @respx.mock
    def test_cancellation_stops_remaining_parts(self, storage_env, proxy: FakeStorageProxy) -> None:
        respx.route(host=PROXY_HOST).mock(side_effect=proxy)
        token = CancellationToken()
        events: list[ProgressEvent] = []

        def on_progress(event: ProgressEvent) -> None:
            events.append(event)
            token.cancel()

        http_client = httpx.Client()
        handler = ConnectionAwareHttpHandler(SyncTransport(http_client), lambda: "2g")
        try:
            client = StorageClient(
                token_provider=lambda: "token-1", api_origin=API_ORIGIN, handler=handler
            )
            with pytest.raises(StorageRequestAbortedError):
                client.upload_object(
                    "k",
                    b"a" * PART_SIZE * 3,
                    content_type="application/octet-stream",
                    on_progress=on_progress,
                    cancellation=token,
                )
        finally:
            http_client.close()

        assert proxy.part_numbers == [1]
        assert [event.progress for event in events] == [33]
        assert not proxy.completed_parts

    @respx.mock
    def test_async_progress_callback_runs_for_each_part(
        self, storage_env, proxy: FakeStorageProxy
    ) -> None:
        respx.route(host=PROXY_HOST).mock(side_effect=proxy)
        events: list[ProgressEvent] = []

        async def on_progress(event: ProgressEvent) -> None:
            events.append(event)

        with StorageClient(token_provider=lambda: "token-1", api_origin=API_ORIGIN) as client:
            client.upload_object(
                "k",
                b"a" * PART_SIZE * 2,
                content_type="application/octet-stream",
                request_body_header={"fileName": "big.bin"},
                on_progress=on_progress,
            )

        _assert_multipart_flow(proxy, [PART_SIZE, PART_SIZE])
        progress = [event.progress for event in events]
        assert progress == sorted(progress)
        assert progress[-1] == 100

    @respx.mock
    def test_already_cancelled_sends_nothing(self, storage_env, proxy: FakeStorageProxy) -> None:
        route = respx.route(host=PROXY_HOST).mock(side_effect=proxy)
        token = CancellationToken()
        token.cancel()

        with StorageClient(token_provider=lambda: "token-1", api_origin=API_ORIGIN) as client:
            with pytest.raises(StorageRequestAbortedError):
                client.upload_object("k", b"x", content_type="text/plain", cancellation=token)

        assert route.call_count == 0


class TestMultipartUploadAsync:
    @respx.mock
    @pytest.mark.asyncio
    async def test_async_iterable_is_uploaded_in_parts(
        self, storage_env, proxy: FakeStorageProxy
    ) -> None:
        respx.route(host=PROXY_HOST).mock(side_effect=proxy)

        async def chunks():
            for _ in range(2):
                yield b"z" * PART_SIZE
            yield b"tail"

        async with AsyncStorageClient(
            token_provider=lambda: "token-1", api_origin=API_ORIGIN
        ) as client:
            result = await client.upload_object(
                "k",
                chunks(),
                content_type="application/octet-stream",
                request_body_header={"fileName": "big.bin"},
            )

        _assert_multipart_flow(proxy, [PART_SIZE, PART_SIZE, 4])
        assert result["submissionId"] == "sub-1"

    @respx.mock
    @pytest.mark.asyncio
    async def test_progress_is_reported_per_part(
        self, storage_env, proxy: FakeStorageProxy
    ) -> None:
        respx.route(host=PROXY_HOST).mock(side_effect=proxy)
        events: list[ProgressEvent] = []

        async with AsyncStorageClient(
            token_provider=lambda: "token-1", api_origin=API_ORIGIN
        ) as client:
            await client.upload_object(
                "k",
                b"a" * (PART_SIZE * 2),
                content_type="application/octet-stream",
                request_body_header={"fileName": "big.bin"},
                on_progress=events.append,
            )

        _assert_multipart_flow(proxy, [PART_SIZE, PART_SIZE])
        assert [event.progress for event in events] == [50, 100]

    @respx.mock
    @pytest.mark.asyncio
    async def test_part_failure_raises_storage_error(self, storage_env) -> None:
        proxy = FakeStorageProxy()

        def side_effect(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("partNumber") == "1":
                return json_failure(403, "Access denied")
            return proxy(request)

        respx.route(host=PROXY_HOST).mock(side_effect=side_effect)

        async with AsyncStorageClient(
            token_provider=lambda: "token-1", api_origin=API_ORIGIN
        ) as client:
            with pytest.raises(StorageError) as exc_info:
                await client.upload_object(
                    "k", b"a" * (PART_SIZE + 1), content_type="application/octet-stream"
                )

        assert exc_info.value.http_status_code == 403
        assert not proxy.completed_parts

    @respx.mock
    @pytest.mark.asyncio
    async def test_cancellation_raises_and_silences_progress(
        self, storage_env, proxy: FakeStorageProxy
    ) -> None:
        respx.route(host=PROXY_HOST).mock(side_effect=proxy)
        token = CancellationToken()
        events: list[ProgressEvent] = []

        def on_progress(event: ProgressEvent) -> None:
            events.append(event)
            token.cancel()

        http_client = httpx.AsyncClient()
        handler = ConnectionAwareHttpHandler(AsyncTransport(http_client), lambda: "slow-2g")
        try:
            client = AsyncStorageClient(
                token_provider=lambda: "token-1", api_origin=API_ORIGIN, handler=handler
            )
            with pytest.raises(StorageRequestAbortedError):
                await client.upload_object(
                    "k",
                    b"a" * (PART_SIZE * 3),
                    content_type="application/octet-stream",
                    on_progress=on_progress,
                    cancellation=token,
                )
        finally:
            await http_client.aclose()

        assert len(events) == 1
        assert not proxy.completed_parts
