"""Delivery log retention.

Every subscription keeps at most ``webhook_log_retention_count`` delivery
records, and records older than ``webhook_log_retention_days`` are
dropped. Pending records are left alone while their retry chain runs.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from agilepm.config import Settings
from agilepm.config import settings as default_settings
from agilepm.logging import get_logger
from agilepm.models import utc_now

if TYPE_CHECKING:
    from agilepm.storage import WebhookStorage

logger = get_logger(__name__)


async def purge_delivery_logs(
    storage: WebhookStorage,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> int:
    """Apply the retention policy to every subscription's delivery log.

    A failure on one subscription is logged and does not stop the sweep.

    Returns:
        Total number of records deleted.
    """
    settings = settings or default_settings
    cutoff = (now or utc_now()) - timedelta(days=settings.webhook_log_retention_days)

    purged = 0
    for subscription_id, _company_id in await storage.list_subscription_ids():
        try:
            purged += await storage.prune_delivery_logs(
                subscription_id,
                keep=settings.webhook_log_retention_count,
                older_than=cutoff,
            )
        except Exception:
            logger.exception("Failed to prune delivery logs", subscription_id=subscription_id)
    return purged


class RetentionWorker:
    """In-process periodic task running ``purge_delivery_logs``.

    Lifecycle is managed through :meth:`start` / :meth:`stop`, called from
    the API lifespan.
    """

    def __init__(self, storage: WebhookStorage, settings: Settings | None = None) -> None:
        self._storage = storage
        self._settings = settings or default_settings
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def run_once(self) -> int:
        try:
            purged = await purge_delivery_logs(self._storage, settings=self._settings)
        except Exception:
            logger.exception("Delivery log purge failed")
            return 0
        if purged:
            logger.info("Purged webhook delivery logs", purged=purged)
        return purged

    async def _loop(self) -> None:
        interval = self._settings.webhook_log_purge_interval_seconds
        logger.info("Webhook retention worker started", interval_seconds=interval)
        while True:
            await self.run_once()
            await asyncio.sleep(interval)
