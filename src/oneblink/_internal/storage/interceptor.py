"""Per-attempt request interception for the storage proxy protocol.

Wire contract with the proxy:

* ``authorization: Bearer <token>`` on every attempt, token fetched fresh.
* ``x-oneblink-request-body``: JSON object with operation metadata.
* ``x-oneblink-response``: JSON object ``{...result, "s3": {"key": ...}}``
  set by the proxy on responses. Once seen, ``s3.key`` is sent back as the
  ``key`` query parameter on every later request of the same operation.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from oneblink._internal.http import StorageRequest, describe_request
from oneblink._internal.storage import await_if_necessary
from oneblink._internal.storage.errors import InvalidResponseEnvelopeError
from oneblink._internal.storage.handlers import StorageHttpHandler
from oneblink._internal.storage.types import (
    FailureRecord,
    ResponseEnvelope,
    StorageLocator,
    TokenProvider,
)

log = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "authorization"
REQUEST_BODY_HEADER = "x-oneblink-request-body"
RESPONSE_HEADER = "x-oneblink-response"
KEY_QUERY_PARAM = "key"


@dataclass
class OperationContext:
    """Mutable state for exactly one logical storage operation.

    Only the interceptor writes to it; orchestrators read ``envelope`` and
    ``failure`` after each request. Never share an instance between
    operations.
    """

    request_body_header: dict[str, Any] | None = None
    envelope: ResponseEnvelope | None = None
    failure: FailureRecord | None = None


def parse_envelope(raw_header: str) -> ResponseEnvelope:
    try:
        data = json.loads(raw_header)
    except ValueError as exc:
        raise InvalidResponseEnvelopeError("header is not valid JSON") from exc
    if not isinstance(data, dict):
        raise InvalidResponseEnvelopeError("expected a JSON object")

    s3 = data.get("s3")
    if not isinstance(s3, dict) or not isinstance(s3.get("key"), str):
        raise InvalidResponseEnvelopeError('missing "s3.key"')

    locator = StorageLocator(
        key=s3["key"],
        bucket=s3.get("bucket"),
        region=s3.get("region"),
        extra={k: v for k, v in s3.items() if k not in ("key", "bucket", "region")},
    )
    result = {k: v for k, v in data.items() if k != "s3"}
    return ResponseEnvelope(result=result, s3=locator, raw=data)


def capture_envelope(
    prior: ResponseEnvelope | None, response: httpx.Response
) -> ResponseEnvelope | None:
    """Return the envelope carried by ``response``, or ``prior`` if it has none."""
    raw_header = response.headers.get(RESPONSE_HEADER)
    if raw_header is None:
        return prior
    return parse_envelope(raw_header)


def serialize_request_body_header(payload: dict[str, Any]) -> str:
    # None members are omitted rather than sent as null
    cleaned = {k: v for k, v in payload.items() if v is not None}
    return json.dumps(cleaned, separators=(",", ":"))


class RequestInterceptor:
    """Signs, annotates and sends each attempt, then records proxy metadata."""

    def __init__(
        self,
        handler: StorageHttpHandler,
        token_provider: TokenProvider,
        context: OperationContext,
    ) -> None:
        self._handler = handler
        self._token_provider = token_provider
        self._context = context

    @property
    def context(self) -> OperationContext:
        return self._context

    async def prepare(self, request: StorageRequest) -> httpx.Request:
        prepared = request.copy()
        for name in [h for h in prepared.headers if h.lower() == AUTHORIZATION_HEADER]:
            del prepared.headers[name]

        token = await await_if_necessary(self._token_provider())
        if token:
            prepared.headers[AUTHORIZATION_HEADER] = f"Bearer {token}"

        if self._context.request_body_header is not None:
            prepared.headers[REQUEST_BODY_HEADER] = serialize_request_body_header(
                self._context.request_body_header
            )

        if self._context.envelope is not None:
            prepared.params[KEY_QUERY_PARAM] = self._context.envelope.s3.key

        return self._handler.build_request(prepared)

    async def intercept(self, request: StorageRequest) -> httpx.Response:
        http_request = await self.prepare(request)

        description = describe_request(http_request)
        log.debug("Starting storage request %s", description)
        response = await self._handler.send(http_request)
        log.debug("Finished storage request %s (%s)", description, response.status_code)

        envelope = capture_envelope(self._context.envelope, response)
        if envelope is not self._context.envelope:
            log.debug("Captured storage envelope for key %s", envelope.s3.key if envelope else None)
            self._context.envelope = envelope

        if response.status_code >= 400:
            failure = await self._handler.parse_failure(response)
            if failure is not None:
                self._context.failure = failure

        return response


__all__ = [
    "AUTHORIZATION_HEADER",
    "REQUEST_BODY_HEADER",
    "RESPONSE_HEADER",
    "KEY_QUERY_PARAM",
    "OperationContext",
    "parse_envelope",
    "capture_envelope",
    "serialize_request_body_header",
    "RequestInterceptor",
]
