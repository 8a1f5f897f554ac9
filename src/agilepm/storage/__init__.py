"""Storage backend for AgilePM webhooks.

Persists subscriptions, delivery logs and the project directory to
Qdrant with per-company key isolation.

Example:
    ```python
    from agilepm.storage import WebhookStorage

    async with WebhookStorage(url=":memory:") as storage:
        await storage.store_subscription(subscription)
    ```
"""

from .base import COLLECTION_NAMES
from .client import WebhookStorage

__all__ = [
    "COLLECTION_NAMES",
    "WebhookStorage",
]
