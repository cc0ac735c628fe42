"""Integration tests for single-request uploads using respx."""

from __future__ import annotations

import io
import json
from unittest.mock import patch

import httpx
import pytest
import respx
from storage_proxy import API_ORIGIN, PROXY_HOST, FakeStorageProxy, json_failure

from oneblink.storage import (
    AsyncStorageClient,
    InvalidResponseEnvelopeError,
    NoResponseFromServerError,
    ProgressEvent,
    StorageClient,
    StorageError,
    generate_form_submission_tags,
)


def _client(token_provider=lambda: "token-1") -> StorageClient:
    return StorageClient(token_provider=token_provider, api_origin=API_ORIGIN)


def _async_client(token_provider=lambda: "token-1") -> AsyncStorageClient:
    return AsyncStorageClient(token_provider=token_provider, api_origin=API_ORIGIN)


class TestSingleUploadSync:
    @respx.mock
    def test_submission_upload_returns_envelope(self, storage_env, proxy: FakeStorageProxy) -> None:
        route = respx.route(host=PROXY_HOST).mock(side_effect=proxy)
        events: list[ProgressEvent] = []

        with _client() as client:
            result = client.upload(
                "submission",
                {"submission": {"name": "Ada"}},
                metadata={"formsAppId": 7, "jobId": None, "recaptchas": []},
                tags=generate_form_submission_tags(user_token="ut-1", job_id="job-1"),
                on_progress=events.append,
                form_id=1,
            )

        assert route.call_count == 1
        request = proxy.requests[0]
        assert request.method == "PUT"
        assert request.url.path == "/storage/forms/1/submissions"
        assert "key" not in request.url.params
        assert request.headers["authorization"] == "Bearer token-1"
        assert request.headers["content-type"] == "application/json"
        assert request.headers["x-oneblink-request-body"] == '{"formsAppId":7,"recaptchas":[]}'
        assert request.headers["x-amz-tagging"] == "userToken=ut-1&jobId=job-1"
        assert json.loads(request.content) == {"submission": {"name": "Ada"}}

        assert result["submissionId"] == "sub-1"
        assert result.result == {"submissionId": "sub-1"}
        assert result.s3.key == "forms/1/submissions/sub-1"
        assert events == [ProgressEvent(progress=100, total=100)]

    @respx.mock
    def test_public_attachment_is_tagged(self, storage_env, proxy: FakeStorageProxy) -> None:
        respx.route(host=PROXY_HOST).mock(side_effect=proxy)

        with _client() as client:
            client.upload(
                "attachment",
                b"hello",
                content_type="text/plain",
                metadata={"fileName": "hello world.txt"},
                visibility="public",
                form_id=2,
            )

        request = proxy.requests[0]
        assert request.headers["x-amz-tagging"] == "public-read=yes"
        assert request.headers["x-oneblink-request-body"] == '{"fileName":"hello%20world.txt"}'
        assert (
            request.headers["content-disposition"]
            == "attachment; filename*=UTF-8''hello%20world.txt"
        )

    @respx.mock
    def test_text_stream_is_sent_as_utf8(self, storage_env, proxy: FakeStorageProxy) -> None:
        route = respx.route(host=PROXY_HOST).mock(side_effect=proxy)
        events: list[ProgressEvent] = []

        with _client() as client:
            result = client.upload_object(
                "k",
                io.StringIO("h\u00e9llo"),
                content_type="text/plain",
                on_progress=events.append,
            )

        assert route.call_count == 1
        assert proxy.requests[0].method == "PUT"
        assert proxy.requests[0].content == "h\u00e9llo".encode()
        assert events == [ProgressEvent(progress=100)]
        assert result.s3.key == proxy.final_key

    @respx.mock
    def test_missing_envelope_raises(self, storage_env) -> None:
        respx.route(host=PROXY_HOST).mock(return_value=httpx.Response(200))

        with _client() as client:
            with pytest.raises(NoResponseFromServerError, match="No response from server"):
                client.upload_object("forms/1/pre-fill", b"{}", content_type="application/json")

    @respx.mock
    def test_malformed_envelope_raises(self, storage_env) -> None:
        respx.route(host=PROXY_HOST).mock(
            return_value=httpx.Response(200, headers={"x-oneblink-response": "{oops"})
        )

        with _client() as client:
            with pytest.raises(InvalidResponseEnvelopeError):
                client.upload_object("k", b"x", content_type="text/plain")

    @respx.mock
    def test_json_failure_becomes_storage_error(self, storage_env) -> None:
        respx.route(host=PROXY_HOST).mock(
            return_value=json_failure(400, "Form with id 1 is not published")
        )

        with _client() as client:
            with pytest.raises(StorageError) as exc_info:
                client.upload("prefill", {"a": 1}, form_id=1)

        assert exc_info.value.message == "Form with id 1 is not published"
        assert exc_info.value.http_status_code == 400
        assert isinstance(exc_info.value.original_error, httpx.HTTPStatusError)

    @respx.mock
    def test_html_failure_becomes_storage_error(self, storage_env) -> None:
        respx.route(host=PROXY_HOST).mock(
            return_value=httpx.Response(413, html="<h1>Payload Too Large</h1>")
        )

        with _client() as client:
            with pytest.raises(StorageError) as exc_info:
                client.upload_object("k", b"x", content_type="text/plain")

        assert exc_info.value.message == "<h1>Payload Too Large</h1>"
        assert exc_info.value.http_status_code == 413

    @respx.mock
    def test_unknown_failure_body_surfaces_raw_error(self, storage_env) -> None:
        respx.route(host=PROXY_HOST).mock(
            return_value=httpx.Response(
                400,
                content=b"<Error><Code>InvalidTag</Code></Error>",
                headers={"content-type": "application/xml"},
            )
        )

        with _client() as client:
            with pytest.raises(httpx.HTTPStatusError) as exc_info:
                client.upload_object("k", b"x", content_type="text/plain")

        assert exc_info.value.response.status_code == 400

    @respx.mock
    def test_retry_refetches_token(self, mock_env_clear, proxy: FakeStorageProxy) -> None:
        tokens = iter(["token-1", "token-2"])
        responses = iter([httpx.Response(503, text="busy")])

        def side_effect(request: httpx.Request) -> httpx.Response:
            response = next(responses, None)
            if response is not None:
                proxy.requests.append(request)
                return response
            return proxy(request)

        route = respx.route(host=PROXY_HOST).mock(side_effect=side_effect)

        with patch("oneblink._internal.storage.core._sync_sleep") as sleep:
            with _client(lambda: next(tokens)) as client:
                result = client.upload_object("k", b"x", content_type="text/plain")

        assert route.call_count == 2
        assert [r.headers["authorization"] for r in proxy.requests] == [
            "Bearer token-1",
            "Bearer token-2",
        ]
        sleep.assert_called_once_with(0.1)
        assert result.s3.key == proxy.final_key

    @respx.mock
    def test_transport_error_is_retried(self, mock_env_clear, proxy: FakeStorageProxy) -> None:
        attempts = {"count": 0}

        def side_effect(request: httpx.Request) -> httpx.Response:
            attempts["count"] += 1
            if attempts["count"] == 1:
                raise httpx.ConnectError("connection reset", request=request)
            return proxy(request)

        respx.route(host=PROXY_HOST).mock(side_effect=side_effect)

        with patch("oneblink._internal.storage.core._sync_sleep"):
            with _client() as client:
                client.upload_object("k", b"x", content_type="text/plain")

        assert attempts["count"] == 2

    @respx.mock
    def test_retry_budget_is_exhausted(self, mock_env_clear) -> None:
        route = respx.route(host=PROXY_HOST).mock(return_value=json_failure(500, "Down"))

        with patch("oneblink._internal.storage.core._sync_sleep") as sleep:
            with _client() as client:
                with pytest.raises(StorageError, match="Down"):
                    client.upload_object("k", b"x", content_type="text/plain")

        assert route.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [0.1, 0.2]


class TestSingleUploadAsync:
    @respx.mock
    @pytest.mark.asyncio
    async def test_upload_with_async_token_and_progress(
        self, storage_env, proxy: FakeStorageProxy
    ) -> None:
        respx.route(host=PROXY_HOST).mock(side_effect=proxy)
        events: list[ProgressEvent] = []

        async def token_provider() -> str:
            return "async-token"

        async def on_progress(event: ProgressEvent) -> None:
            events.append(event)

        async with _async_client(token_provider) as client:
            result = await client.upload(
                "asset",
                b"\x89PNG",
                content_type="image/png",
                metadata={"fileName": "logo.png"},
                on_progress=on_progress,
                organisation_id="org-1",
            )

        request = proxy.requests[0]
        assert request.url.path == "/storage/organisations/org-1/assets"
        assert request.headers["authorization"] == "Bearer async-token"
        assert request.headers["x-amz-tagging"] == "public-read=yes"
        assert result.s3.key == proxy.final_key
        assert events == [ProgressEvent(progress=100)]

    @respx.mock
    @pytest.mark.asyncio
    async def test_missing_envelope_raises(self, storage_env) -> None:
        respx.route(host=PROXY_HOST).mock(return_value=httpx.Response(200))

        async with _async_client() as client:
            with pytest.raises(NoResponseFromServerError):
                await client.upload_object("k", b"x", content_type="text/plain")

    @respx.mock
    @pytest.mark.asyncio
    async def test_json_failure_becomes_storage_error(self, storage_env) -> None:
        respx.route(host=PROXY_HOST).mock(return_value=json_failure(401, "Unauthorised"))

        async with _async_client() as client:
            with pytest.raises(StorageError) as exc_info:
                await client.upload_object("k", b"x", content_type="text/plain")

        assert exc_info.value.http_status_code == 401
        assert str(exc_info.value) == "Unauthorised"

    @respx.mock
    @pytest.mark.asyncio
    async def test_retry_refetches_token(self, monkeypatch, mock_env_clear) -> None:
        monkeypatch.setenv("ONEBLINK_STORAGE_MAX_ATTEMPTS", "2")
        proxy = FakeStorageProxy()
        calls = {"tokens": 0}
        responses = iter([httpx.Response(429)])

        async def token_provider() -> str:
            calls["tokens"] += 1
            return f"token-{calls['tokens']}"

        def side_effect(request: httpx.Request) -> httpx.Response:
            response = next(responses, None)
            return response if response is not None else proxy(request)

        route = respx.route(host=PROXY_HOST).mock(side_effect=side_effect)

        async with _async_client(token_provider) as client:
            await client.upload_object("k", b"x", content_type="text/plain")

        assert route.call_count == 2
        assert calls["tokens"] == 2
        assert route.calls.last.request.headers["authorization"] == "Bearer token-2"
