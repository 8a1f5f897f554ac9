"""Webhook storage operations for AgilePM.

Provides methods to store, retrieve, and manage webhook subscriptions
and their delivery logs.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from qdrant_client import models

from agilepm.models import DeliveryAttemptRecord, Subscription, utc_now
from agilepm.storage.retry import store_retry

if TYPE_CHECKING:
    from agilepm.models import EventName


class WebhookMixin:
    """Mixin providing webhook operations for WebhookStorage.

    This mixin expects the following attributes/methods from the base class:
    - _collection_name(record_type) -> str
    - _build_key(record_id, company_id) -> str
    - _key_to_point_id(key) -> str
    - _upsert / _retrieve / _scroll / _match helpers
    - client: AsyncQdrantClient
    """

    _collection_name: Any
    _build_key: Any
    _key_to_point_id: Any
    _upsert: Any
    _retrieve: Any
    _scroll: Any
    _match: Any
    client: Any

    @store_retry
    async def store_subscription(self, subscription: Subscription) -> str:
        """Store a webhook subscription.

        Args:
            subscription: Subscription to store.

        Returns:
            The subscription ID.
        """
        key = self._build_key(subscription.id, subscription.company_id)
        await self._upsert("webhooks", key, subscription)
        return subscription.id

    @store_retry
    async def get_subscription(
        self,
        subscription_id: str,
        company_id: str,
    ) -> Subscription | None:
        """Get a subscription by ID within its company.

        Returns:
            Subscription or None if not found.
        """
        key = self._build_key(subscription_id, company_id)
        subscription: Subscription | None = await self._retrieve("webhooks", key, Subscription)
        return subscription

    @store_retry
    async def list_subscriptions(
        self,
        company_id: str,
        project_id: str | None = None,
        active_only: bool = False,
    ) -> list[Subscription]:
        """List subscriptions for a company, newest first.

        Args:
            company_id: Company to list subscriptions for.
            project_id: If set, only subscriptions scoped to this project.
            active_only: If True, only return active subscriptions.
        """
        conditions = [self._match("company_id", company_id)]
        if project_id is not None:
            conditions.append(self._match("project_id", project_id))
        if active_only:
            conditions.append(self._match("active", True))

        subscriptions: list[Subscription] = await self._scroll("webhooks", conditions, Subscription)
        subscriptions.sort(key=lambda s: s.created_at, reverse=True)
        return subscriptions

    @store_retry
    async def get_subscriptions_for_event(
        self,
        event: EventName,
        company_id: str,
        project_id: str | None = None,
    ) -> list[Subscription]:
        """Get the active subscriptions that should receive an event.

        Matches ``active AND company AND event in events`` in Qdrant, then
        applies the project scope rule: a dispatch with a project reaches
        subscriptions for that project and company-wide ones; a dispatch
        without a project reaches only company-wide subscriptions.
        """
        conditions = [
            self._match("company_id", company_id),
            self._match("active", True),
            self._match("events", event),
        ]
        candidates: list[Subscription] = await self._scroll("webhooks", conditions, Subscription)
        return [s for s in candidates if s.matches(event, project_id)]

    async def update_subscription(
        self,
        subscription_id: str,
        company_id: str,
        **updates: Any,
    ) -> Subscription | None:
        """Update a subscription.

        Updates are re-validated against the model, so an empty event
        list or a relative URL is rejected.

        Returns:
            Updated Subscription or None if not found.
        """
        subscription = await self.get_subscription(subscription_id, company_id)
        if subscription is None:
            return None

        data = subscription.model_dump()
        data.update({k: v for k, v in updates.items() if k in Subscription.model_fields})
        data["id"] = subscription.id
        data["company_id"] = subscription.company_id
        data["updated_at"] = utc_now()
        updated = Subscription.model_validate(data)

        await self.store_subscription(updated)
        return updated

    @store_retry
    async def delete_subscription(self, subscription_id: str, company_id: str) -> bool:
        """Delete a subscription and cascade to its delivery logs.

        Returns:
            True if deleted, False if not found.
        """
        existing = await self.get_subscription(subscription_id, company_id)
        if existing is None:
            return False

        key = self._build_key(subscription_id, company_id)
        await self.client.delete(
            collection_name=self._collection_name("webhooks"),
            points_selector=models.PointIdsList(points=[self._key_to_point_id(key)]),
        )
        await self.client.delete(
            collection_name=self._collection_name("webhook_deliveries"),
            points_selector=models.FilterSelector(
                filter=models.Filter(must=[self._match("subscription_id", subscription_id)])
            ),
        )
        return True

    @store_retry
    async def log_delivery(self, record: DeliveryAttemptRecord) -> str:
        """Create or overwrite a delivery record.

        Returns:
            The delivery ID.
        """
        key = self._build_key(record.id, record.company_id)
        await self._upsert("webhook_deliveries", key, record)
        return record.id

    @store_retry
    async def update_delivery(self, record: DeliveryAttemptRecord) -> bool:
        """Update an existing delivery record in place.

        A record removed in the meantime (its subscription was deleted, or
        retention pruned it) stays removed.

        Returns:
            True if the record was updated, False if it no longer exists.
        """
        key = self._build_key(record.id, record.company_id)
        existing = await self.client.retrieve(
            collection_name=self._collection_name("webhook_deliveries"),
            ids=[self._key_to_point_id(key)],
            with_payload=False,
        )
        if not existing:
            return False
        await self._upsert("webhook_deliveries", key, record)
        return True

    @store_retry
    async def get_delivery(
        self, delivery_id: str, company_id: str
    ) -> DeliveryAttemptRecord | None:
        key = self._build_key(delivery_id, company_id)
        record: DeliveryAttemptRecord | None = await self._retrieve(
            "webhook_deliveries", key, DeliveryAttemptRecord
        )
        return record

    async def _subscription_deliveries(
        self, subscription_id: str
    ) -> list[DeliveryAttemptRecord]:
        records: list[DeliveryAttemptRecord] = await self._scroll(
            "webhook_deliveries",
            [self._match("subscription_id", subscription_id)],
            DeliveryAttemptRecord,
        )
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    @store_retry
    async def get_delivery_logs(
        self,
        subscription_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeliveryAttemptRecord]:
        """Get delivery logs for a subscription, newest first.

        Args:
            subscription_id: Subscription whose deliveries to list.
            limit: Maximum entries to return.
            offset: Entries to skip from the newest.
        """
        records = await self._subscription_deliveries(subscription_id)
        return records[offset : offset + limit]

    @store_retry
    async def count_delivery_logs(self, subscription_id: str) -> int:
        result = await self.client.count(
            collection_name=self._collection_name("webhook_deliveries"),
            count_filter=models.Filter(must=[self._match("subscription_id", subscription_id)]),
            exact=True,
        )
        return int(result.count)

    @store_retry
    async def prune_delivery_logs(
        self,
        subscription_id: str,
        keep: int,
        older_than: datetime | None = None,
    ) -> int:
        """Delete terminal delivery records beyond the retention policy.

        Keeps the ``keep`` newest records and drops anything created before
        ``older_than``. Pending records are never pruned, since a retry
        chain may still be updating them.

        Returns:
            Number of records deleted.
        """
        records = await self._subscription_deliveries(subscription_id)
        doomed = [
            r
            for index, r in enumerate(records)
            if r.is_terminal
            and (index >= keep or (older_than is not None and r.created_at < older_than))
        ]
        if not doomed:
            return 0

        await self.client.delete(
            collection_name=self._collection_name("webhook_deliveries"),
            points_selector=models.PointIdsList(
                points=[self._key_to_point_id(self._build_key(r.id, r.company_id)) for r in doomed]
            ),
        )
        return len(doomed)

    @store_retry
    async def list_subscription_ids(self) -> list[tuple[str, str]]:
        """Return ``(subscription_id, company_id)`` for every subscription."""
        subscriptions: list[Subscription] = await self._scroll("webhooks", [], Subscription)
        return [(s.id, s.company_id) for s in subscriptions]
