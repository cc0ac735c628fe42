from __future__ import annotations

import inspect
import io
import os
from collections.abc import Awaitable, Iterable
from typing import Any, TypeVar, cast
from urllib.parse import quote, urlencode

from .errors import StorageConfigError

_T = TypeVar("_T")

PUBLIC_READ_TAG = ("public-read", "yes")


def get_api_origin(api_origin: str | None = None) -> str:
    resolved = api_origin or os.getenv("ONEBLINK_API_ORIGIN")
    if not resolved:
        raise StorageConfigError(
            "Missing OneBlink API origin. Pass api_origin=... or set ONEBLINK_API_ORIGIN."
        )
    return resolved


async def await_if_necessary(value: _T | Awaitable[_T]) -> _T:
    if inspect.isawaitable(value):
        return await cast(Awaitable[_T], value)
    return cast(_T, value)


def encode_uri_component(value: str) -> str:
    # RFC 3986 unreserved characters plus !*'()
    return quote(value, safe="-_.!~*'()")


def encode_tags(tags: Iterable[tuple[str, str]]) -> str:
    return urlencode(list(tags))


def with_visibility_tag(tags: Iterable[tuple[str, str]], visibility: str) -> list[tuple[str, str]]:
    tagged = list(tags)
    if visibility == "public":
        tagged.append(PUBLIC_READ_TAG)
    return tagged


def compute_body_length(body: Any) -> int | None:
    """Byte length of ``body`` or None when it cannot be known up front."""
    if body is None:
        return 0
    if isinstance(body, str):
        return len(body.encode("utf-8"))
    if isinstance(body, (bytes, bytearray)):
        return len(body)
    if isinstance(body, memoryview):
        return body.nbytes
    if isinstance(body, io.TextIOBase):
        # Positions count characters, not encoded bytes
        return None
    if hasattr(body, "read") and hasattr(body, "seek") and hasattr(body, "tell"):
        try:
            pos = body.tell()
            body.seek(0, os.SEEK_END)
            end = body.tell()
            body.seek(pos)
            return int(end - pos)
        except (OSError, ValueError):
            return None
    return None


__all__ = [
    "PUBLIC_READ_TAG",
    "get_api_origin",
    "await_if_necessary",
    "encode_uri_component",
    "encode_tags",
    "with_visibility_tag",
    "compute_body_length",
]
