"""Client factory functions for creating pre-configured httpx clients."""

from __future__ import annotations

import httpx

from .config import get_timeout

USER_AGENT = "oneblink-storage-python"


def create_base_client(timeout: float | None = None) -> httpx.Client:
    """Create a sync httpx client for storage requests.

    Auth is not configured here; the request interceptor signs every attempt
    individually so that tokens can be refreshed mid-transfer.

    Args:
        timeout: Request timeout in seconds. Falls back to
            ONEBLINK_STORAGE_TIMEOUT, then DEFAULT_TIMEOUT.

    Returns:
        An httpx.Client with basic configuration.
    """
    return httpx.Client(
        timeout=httpx.Timeout(get_timeout(timeout)),
        headers={"user-agent": USER_AGENT},
    )


def create_base_async_client(timeout: float | None = None) -> httpx.AsyncClient:
    """Create an async httpx client for storage requests.

    Args:
        timeout: Request timeout in seconds. Falls back to
            ONEBLINK_STORAGE_TIMEOUT, then DEFAULT_TIMEOUT.

    Returns:
        An httpx.AsyncClient with basic configuration.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(get_timeout(timeout)),
        headers={"user-agent": USER_AGENT},
    )


__all__ = ["create_base_client", "create_base_async_client"]
