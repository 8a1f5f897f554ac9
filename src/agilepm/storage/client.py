"""Qdrant storage client for AgilePM webhooks.

This module provides the main WebhookStorage class that combines
all storage operations through mixins.

Example:
    ```python
    from agilepm.storage import WebhookStorage

    async with WebhookStorage() as storage:
        await storage.store_subscription(subscription)
        subs = await storage.get_subscriptions_for_event("task.created", "cmp_1", "prj_1")
    ```
"""

from __future__ import annotations

from typing import Any

from .base import COLLECTION_NAMES, StorageBase
from .projects import ProjectMixin
from .webhook import WebhookMixin


class WebhookStorage(WebhookMixin, ProjectMixin, StorageBase):
    """Async Qdrant storage for webhook subscriptions and delivery logs.

    Read-mostly from the dispatcher's perspective: many concurrent
    dispatches share one instance. Each delivery record is written only
    by its own retry chain, so per-row upserts need no extra locking.

    This class combines functionality from multiple mixins:
    - WebhookMixin: subscriptions, delivery logs, retention pruning
    - ProjectMixin: project to company directory
    """

    async def __aenter__(self) -> WebhookStorage:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()


__all__ = [
    "COLLECTION_NAMES",
    "WebhookStorage",
]
