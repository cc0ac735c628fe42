"""HTTP configuration for OneBlink storage clients."""

from __future__ import annotations

import os

DEFAULT_TIMEOUT = 60.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_REGION = "ap-southeast-2"
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def get_timeout(timeout: float | None = None) -> float:
    """Resolve the request timeout from argument or environment."""
    if timeout is not None:
        return float(timeout)
    value = os.getenv("ONEBLINK_STORAGE_TIMEOUT")
    try:
        return float(value) if value else DEFAULT_TIMEOUT
    except ValueError:
        return DEFAULT_TIMEOUT


def get_max_attempts() -> int:
    """Number of attempts made for a single HTTP request, including the first."""
    value = os.getenv("ONEBLINK_STORAGE_MAX_ATTEMPTS")
    try:
        attempts = int(value) if value is not None else DEFAULT_MAX_ATTEMPTS
    except ValueError:
        return DEFAULT_MAX_ATTEMPTS
    return max(1, attempts)


def get_region(region: str | None = None) -> str:
    """Region handed to the S3 client. The proxy, not the region, decides where objects land."""
    return region or os.getenv("ONEBLINK_STORAGE_REGION") or DEFAULT_REGION


__all__ = [
    "DEFAULT_TIMEOUT",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_REGION",
    "RETRYABLE_STATUS_CODES",
    "get_timeout",
    "get_max_attempts",
    "get_region",
]
