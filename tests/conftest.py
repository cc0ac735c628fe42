"""Shared fixtures for all tests."""

from collections.abc import Generator

import pytest

API_ORIGIN = "https://bucket.storage.example.com"
OBJECT_BASE = "https://bucket.storage.example.com/storage"


@pytest.fixture
def mock_env_clear(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Clear OneBlink storage environment variables.

    This ensures tests don't pick up an origin or retry budget from the
    developer's shell.
    """
    for var in (
        "ONEBLINK_API_ORIGIN",
        "ONEBLINK_STORAGE_MAX_ATTEMPTS",
        "ONEBLINK_STORAGE_TIMEOUT",
        "ONEBLINK_STORAGE_REGION",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def api_origin() -> str:
    return API_ORIGIN


@pytest.fixture
def mock_token() -> str:
    """Mock bearer token for testing."""
    return "test_bearer_token_123456789"
