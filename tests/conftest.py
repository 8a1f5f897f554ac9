"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from collections.abc import AsyncIterator
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from agilepm.config import Settings
from agilepm.models import Subscription
from agilepm.storage import WebhookStorage

# Add tests directory to path so receivers can be imported
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))


@pytest.fixture
def fast_settings() -> Settings:
    """Settings with millisecond backoff so retry chains finish quickly.

    Retry delays are 0.04s then 0.08s.
    """
    return Settings(
        env="test",
        qdrant_url=":memory:",
        webhook_backoff_unit_seconds=0.02,
        webhook_timeout_seconds=1.0,
    )


@pytest.fixture
def mock_storage() -> AsyncMock:
    """Create a mock storage instance."""
    storage = AsyncMock()
    storage.get_subscriptions_for_event = AsyncMock(return_value=[])
    storage.get_subscription = AsyncMock(return_value=None)
    storage.get_project_company_id = AsyncMock(return_value=None)
    storage.log_delivery = AsyncMock()
    storage.update_delivery = AsyncMock()
    return storage


@pytest_asyncio.fixture
async def storage() -> AsyncIterator[WebhookStorage]:
    """Real store backed by an in-process Qdrant."""
    store = WebhookStorage(url=":memory:", prefix="test")
    await store.initialize()
    try:
        yield store
    finally:
        await store.close()


@pytest.fixture
def subscription() -> Subscription:
    """Create a sample company-wide signed subscription."""
    return Subscription(
        id="whk_test123",
        company_id="cmp_1",
        url="https://receiver.example.com/hook",
        secret="s3cret",
        events=["task.created", "task.updated"],
    )
