"""Fixtures for integration tests using respx mocking."""

import pytest
from storage_proxy import FakeStorageProxy


@pytest.fixture
def storage_env(monkeypatch: pytest.MonkeyPatch, mock_env_clear) -> None:
    """Single attempt per request unless a test opts back into retries."""
    monkeypatch.setenv("ONEBLINK_STORAGE_MAX_ATTEMPTS", "1")


@pytest.fixture
def proxy() -> FakeStorageProxy:
    return FakeStorageProxy()
