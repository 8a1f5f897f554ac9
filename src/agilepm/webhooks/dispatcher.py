"""Event fan-out to webhook subscriptions.

Producers (task, project, sprint and comment handlers) call
``trigger_webhooks`` after their own transaction commits. The call
returns immediately and can never fail the producer's request.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any

import httpx

from agilepm.config import Settings
from agilepm.config import settings as default_settings
from agilepm.logging import get_logger, log_context
from agilepm.models import EventPayload

from .delivery import DeliveryWorker

if TYPE_CHECKING:
    from agilepm.models import EventName
    from agilepm.storage import WebhookStorage

logger = get_logger(__name__)

CompanyResolver = Callable[[str], Awaitable[str | None]]


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    """Build the process-wide client used for every delivery."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.webhook_timeout_seconds),
        limits=httpx.Limits(max_connections=settings.webhook_max_concurrent),
        follow_redirects=False,
    )


class EventDispatcher:
    """Dispatches domain events to matching webhook subscriptions.

    Handles:
    - Resolving the tenant of an event
    - Finding the subscriptions that match company, event and project
    - Building one payload shared by every recipient
    - Launching one independent background delivery per subscription

    Example:
        ```python
        dispatcher = EventDispatcher(storage)

        # From a request handler, after the task was saved
        dispatcher.trigger("task.created", task_dict, project_id=task.project_id)

        # On shutdown
        await dispatcher.aclose()
        ```
    """

    def __init__(
        self,
        storage: WebhookStorage,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        resolve_project_company: CompanyResolver | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            storage: Store holding subscriptions and delivery logs.
            settings: Delivery settings. Defaults to the global settings.
            client: Shared HTTP client. One is created (and owned) if omitted.
            resolve_project_company: Maps a project id to its company id.
                Defaults to the store's project directory.
        """
        self._storage = storage
        self._settings = settings or default_settings
        self._owns_client = client is None
        self._client = client or create_http_client(self._settings)
        self._resolve_project_company = (
            resolve_project_company or storage.get_project_company_id
        )
        self._worker = DeliveryWorker(storage, self._client, self._settings)

    @property
    def worker(self) -> DeliveryWorker:
        return self._worker

    async def resolve_company(
        self,
        project_id: str | None,
        data: Any,
    ) -> str | None:
        """Find the tenant of an event.

        Tries the project's owning company first, then a ``companyId``
        (or ``company_id``) field carried in the event data.
        """
        if project_id:
            company_id = await self._resolve_project_company(project_id)
            if company_id:
                return company_id

        if isinstance(data, Mapping):
            embedded = data.get("companyId") or data.get("company_id")
            if embedded:
                return str(embedded)
        return None

    async def dispatch(
        self,
        event: EventName,
        data: Any,
        project_id: str | None = None,
        company_id: str | None = None,
    ) -> list[str]:
        """Resolve subscriptions for an event and start their deliveries.

        Returns once deliveries are launched, without waiting for them.
        Never raises: an unresolvable tenant or a store failure is logged
        and treated as nobody to notify.

        Returns:
            IDs of the subscriptions a delivery was launched for.
        """
        try:
            resolved = company_id or await self.resolve_company(project_id, data)
            if not resolved:
                logger.debug("Webhook event without company, skipping", webhook_event=event)
                return []

            subscriptions = await self._storage.get_subscriptions_for_event(
                event=event,
                company_id=resolved,
                project_id=project_id,
            )
            if not subscriptions:
                logger.debug(
                    "No webhooks subscribed to event",
                    webhook_event=event,
                    company_id=resolved,
                    project_id=project_id,
                )
                return []

            body = EventPayload(event=event, data=data, project_id=project_id).to_bytes()
        except Exception:
            logger.exception(
                "Failed to dispatch webhook event", webhook_event=event, project_id=project_id
            )
            return []

        # Delivery tasks inherit this context
        with log_context(company_id=resolved):
            for subscription in subscriptions:
                self._worker.spawn(self._worker.deliver(subscription, event, body))

        logger.debug(
            "Webhook event dispatched",
            webhook_event=event,
            company_id=resolved,
            deliveries=len(subscriptions),
        )
        return [s.id for s in subscriptions]

    def trigger(
        self,
        event: EventName,
        data: Any,
        project_id: str | None = None,
        company_id: str | None = None,
    ) -> None:
        """Fire-and-forget ``dispatch`` from inside a running event loop."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, webhook event dropped", webhook_event=event)
            return
        self._worker.spawn(self.dispatch(event, data, project_id, company_id))

    async def drain(self) -> None:
        """Wait for all deliveries, including scheduled retries, to finish."""
        await self._worker.drain()

    async def aclose(self) -> None:
        """Cancel scheduled retries, let running attempts finish, close the client."""
        cancelled = self._worker.cancel_retries()
        if cancelled:
            logger.warning("Dropping scheduled webhook retries on shutdown", count=cancelled)
        await self._worker.drain()
        if self._owns_client:
            await self._client.aclose()


_dispatcher: EventDispatcher | None = None


def set_dispatcher(dispatcher: EventDispatcher | None) -> None:
    """Install the process-wide dispatcher used by ``trigger_webhooks``."""
    global _dispatcher
    _dispatcher = dispatcher


def get_dispatcher() -> EventDispatcher | None:
    return _dispatcher


def trigger_webhooks(
    event: EventName,
    data: Any,
    project_id: str | None = None,
    company_id: str | None = None,
) -> None:
    """Notify subscribers of a domain event without blocking the caller.

    Safe to call from any request handler: it returns immediately and
    never raises, whatever happens to the deliveries.

    Args:
        event: Event name, e.g. "task.created".
        data: JSON-serializable description of the affected entity.
        project_id: Project the event belongs to, if any.
        company_id: Tenant, when the caller already knows it.
    """
    dispatcher = _dispatcher
    if dispatcher is None:
        logger.debug("No webhook dispatcher installed, skipping", webhook_event=event)
        return
    dispatcher.trigger(event, data, project_id=project_id, company_id=company_id)
