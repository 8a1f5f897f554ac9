"""Webhook delivery attempts with exponential backoff retry.

One logical delivery is one subscription receiving one event. Its
attempts share a single DeliveryAttemptRecord:

    pending --2xx--------------------------> success
    pending --5xx/network, budget left-----> pending (retry_count += 1, timer set)
    pending --4xx/unexpected/budget spent--> failed

Retries are timer callbacks on the event loop. Nothing (semaphore slot,
connection, task) is held while a retry waits, and pending timers are
lost if the process exits.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import httpx

from agilepm.logging import get_logger
from agilepm.models import DeliveryAttemptRecord, Subscription, utc_now

from .signing import SIGNATURE_HEADER, sign

if TYPE_CHECKING:
    from agilepm.config import Settings
    from agilepm.storage import WebhookStorage

logger = get_logger(__name__)


@dataclass(frozen=True)
class Delivered:
    """Receiver answered 2xx."""

    status_code: int
    body: str


@dataclass(frozen=True)
class TransientFailure:
    """Timeout, transport error or 5xx. Retried while budget remains."""

    message: str
    status_code: int | None = None
    body: str | None = None


@dataclass(frozen=True)
class PermanentFailure:
    """4xx or anything unexpected. Never retried."""

    message: str
    status_code: int | None = None
    body: str | None = None


DeliveryOutcome = Delivered | TransientFailure | PermanentFailure


def classify_response(response: httpx.Response) -> DeliveryOutcome:
    """Turn an HTTP response into a delivery outcome."""
    code = response.status_code
    text = response.text or ""
    if 200 <= code < 300:
        return Delivered(status_code=code, body=text)
    if code >= 500:
        return TransientFailure(message=f"HTTP {code}: {text[:200]}", status_code=code, body=text)
    return PermanentFailure(message=f"HTTP {code}: {text[:200]}", status_code=code, body=text)


@dataclass
class DeliveryJob:
    """Everything a retry needs to resend byte-identical requests."""

    subscription: Subscription
    event: str
    body: bytes
    headers: dict[str, str]
    record: DeliveryAttemptRecord


class DeliveryWorker:
    """Performs delivery attempts and schedules their retries.

    Handles:
    - Signing the body with the subscription's secret (when it has one)
    - POSTing through the shared HTTP client under a concurrency cap
    - Classifying the outcome and updating the delivery record
    - Scheduling timer-based retries with exponential backoff

    All failures end up in the delivery record or the operational log;
    nothing raised here reaches the code that fired the event.
    """

    def __init__(
        self,
        storage: WebhookStorage,
        client: httpx.AsyncClient,
        settings: Settings,
    ) -> None:
        self._storage = storage
        self._client = client
        self._settings = settings
        self._semaphore = asyncio.Semaphore(settings.webhook_max_concurrent)
        self._tasks: set[asyncio.Task[Any]] = set()
        self._timers: set[asyncio.TimerHandle] = set()
        self._closed = False

    @property
    def pending_retries(self) -> int:
        return len(self._timers)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def build_headers(self, subscription: Subscription, body: bytes) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._settings.webhook_user_agent,
        }
        if subscription.secret:
            headers[SIGNATURE_HEADER] = sign(body, subscription.secret)
        return headers

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Run ``coro`` in the background, keeping a reference until it ends."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Webhook background task failed",
                error=repr(task.exception()),
            )

    async def deliver(
        self,
        subscription: Subscription,
        event: str,
        body: bytes,
    ) -> DeliveryAttemptRecord:
        """Start a new logical delivery and make its first attempt.

        Args:
            subscription: Target subscription.
            event: Event name being delivered.
            body: Serialized payload, shared verbatim by every recipient.

        Returns:
            The delivery record as of the end of the first attempt.
        """
        record = DeliveryAttemptRecord(
            subscription_id=subscription.id,
            company_id=subscription.company_id,
            event=event,
        )
        await self._save(record, created=True)

        job = DeliveryJob(
            subscription=subscription,
            event=event,
            body=body,
            headers=self.build_headers(subscription, body),
            record=record,
        )
        await self.attempt(job)
        return record

    async def attempt(self, job: DeliveryJob) -> DeliveryOutcome:
        """Make one HTTP attempt and apply the retry policy to its outcome."""
        outcome = await self._post(job)
        record = job.record
        settings = self._settings

        if isinstance(outcome, Delivered):
            record.mark_success(
                status_code=outcome.status_code,
                response_body=outcome.body,
                snippet_max=settings.webhook_response_snippet_max,
            )
            logger.info(
                "Webhook delivered",
                webhook_event=job.event,
                subscription_id=job.subscription.id,
                delivery_id=record.id,
                status_code=outcome.status_code,
                retry_count=record.retry_count,
            )
            await self._save(record)
        elif (
            isinstance(outcome, TransientFailure)
            and record.retry_count < settings.webhook_max_attempts - 1
        ):
            delay = settings.backoff_seconds(record.retry_count + 1)
            record.mark_retrying(
                next_retry_at=utc_now() + timedelta(seconds=delay),
                error=outcome.message,
                status_code=outcome.status_code,
                error_max=settings.webhook_error_max,
            )
            logger.info(
                "Webhook scheduled for retry",
                webhook_event=job.event,
                subscription_id=job.subscription.id,
                delivery_id=record.id,
                retry_count=record.retry_count,
                delay_seconds=delay,
                error=outcome.message,
            )
            await self._save(record)
            self._schedule_retry(job, delay)
        else:
            message = outcome.message
            if isinstance(outcome, TransientFailure):
                message = f"Max attempts exceeded: {message}"
            record.mark_failed(
                error=message,
                status_code=outcome.status_code,
                response_body=outcome.body,
                snippet_max=settings.webhook_response_snippet_max,
                error_max=settings.webhook_error_max,
            )
            logger.warning(
                "Webhook delivery failed",
                webhook_event=job.event,
                subscription_id=job.subscription.id,
                delivery_id=record.id,
                status_code=outcome.status_code,
                retry_count=record.retry_count,
                error=message,
            )
            await self._save(record)

        return outcome

    async def _post(self, job: DeliveryJob) -> DeliveryOutcome:
        try:
            async with self._semaphore:
                response = await self._client.post(
                    str(job.subscription.url),
                    content=job.body,
                    headers=job.headers,
                    timeout=self._settings.webhook_timeout_seconds,
                )
        except httpx.TimeoutException:
            return TransientFailure(message="Request timeout")
        except httpx.RequestError as e:
            return TransientFailure(message=str(e) or type(e).__name__)
        except Exception as e:
            logger.exception(
                "Unexpected webhook delivery error",
                subscription_id=job.subscription.id,
                delivery_id=job.record.id,
            )
            return PermanentFailure(message=f"Unexpected error: {e}")

        return classify_response(response)

    def _schedule_retry(self, job: DeliveryJob, delay: float) -> None:
        if self._closed:
            logger.warning(
                "Worker closed, webhook retry dropped",
                subscription_id=job.subscription.id,
                delivery_id=job.record.id,
            )
            return
        loop = asyncio.get_running_loop()

        def fire() -> None:
            self._timers.discard(handle)
            self.spawn(self._retry(job))

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)

    async def _retry(self, job: DeliveryJob) -> None:
        if self._settings.webhook_check_active_before_retry:
            try:
                current = await self._storage.get_subscription(
                    job.subscription.id, job.subscription.company_id
                )
            except Exception:
                logger.exception(
                    "Could not re-check webhook before retry",
                    subscription_id=job.subscription.id,
                    delivery_id=job.record.id,
                )
                current = job.subscription

            if current is None or not current.active:
                job.record.mark_failed(
                    error="Webhook deleted or disabled before retry",
                    status_code=job.record.http_status_code,
                    error_max=self._settings.webhook_error_max,
                )
                logger.info(
                    "Webhook retry cancelled",
                    subscription_id=job.subscription.id,
                    delivery_id=job.record.id,
                    deleted=current is None,
                )
                # A deleted subscription took its log with it
                if current is not None:
                    await self._save(job.record)
                return

        await self.attempt(job)

    async def _save(self, record: DeliveryAttemptRecord, created: bool = False) -> None:
        try:
            if created:
                await self._storage.log_delivery(record)
            elif not await self._storage.update_delivery(record):
                logger.debug(
                    "Webhook delivery log gone, update skipped",
                    delivery_id=record.id,
                    subscription_id=record.subscription_id,
                )
        except Exception:
            logger.exception(
                "Failed to write webhook delivery log",
                delivery_id=record.id,
                subscription_id=record.subscription_id,
                status=record.status,
            )

    def cancel_retries(self) -> int:
        """Drop every scheduled retry and refuse new ones.

        Returns:
            Number of retries cancelled.
        """
        self._closed = True
        cancelled = len(self._timers)
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        return cancelled

    async def drain(self) -> None:
        """Wait until no delivery task is running and no retry is scheduled."""
        loop = asyncio.get_running_loop()
        while self._tasks or self._timers:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
                continue
            soonest = min(handle.when() for handle in self._timers)
            await asyncio.sleep(max(0.0, soonest - loop.time()) + 0.001)
