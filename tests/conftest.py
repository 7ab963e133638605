"""Pytest configuration and fixtures."""

import json
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from quotaproxy.api.app import create_app
from quotaproxy.config import Settings
from quotaproxy.http.client import UpstreamResponse
from quotaproxy.store.memory import InMemoryQuotaStore


class FakeClock:
    """Controllable time source for rate limit decisions."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def start_time() -> datetime:
    return datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(start_time: datetime) -> FakeClock:
    return FakeClock(start_time)


@pytest.fixture
def memory_store() -> InMemoryQuotaStore:
    return InMemoryQuotaStore()


@pytest.fixture
def temp_store_path(tmp_path: Path) -> Path:
    """Location for a file-backed quota store."""
    return tmp_path / "rate-limit-store.json"


@pytest.fixture
def sample_completion() -> dict:
    """Sample upstream chat completion response."""
    return {
        "id": "chatcmpl-abc123",
        "object": "chat.completion",
        "created": 1735732800,
        "model": "gpt-3.5-turbo",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": "Plan the sprint"},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 12, "completion_tokens": 4, "total_tokens": 16},
    }


@pytest.fixture
def upstream(sample_completion: dict) -> MagicMock:
    """Upstream client spy returning a canned completion."""
    mock = MagicMock()
    mock.has_credentials = True
    mock.create_chat_completion = AsyncMock(
        return_value=UpstreamResponse(
            status_code=200,
            content=json.dumps(sample_completion).encode(),
            headers={"content-type": "application/json"},
        )
    )
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        openai_api_key="sk-test",
        rate_limit=20,
        rate_limit_window_seconds=86400,
        quota_backend="memory",
    )


@pytest.fixture
def client(
    test_settings: Settings,
    memory_store: InMemoryQuotaStore,
    upstream: MagicMock,
    clock: FakeClock,
) -> Generator[TestClient, None, None]:
    """Create test client wired to an in-memory store and upstream spy."""
    app = create_app(
        settings=test_settings,
        store=memory_store,
        upstream=upstream,
        clock=clock,
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def chat_body() -> dict:
    return {
        "model": "gpt-3.5-turbo",
        "messages": [{"role": "user", "content": "Generate 5 task ideas"}],
    }
