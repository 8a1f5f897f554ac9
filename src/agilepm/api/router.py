"""FastAPI router for webhook management endpoints."""

from __future__ import annotations

from typing import Annotated

import pydantic
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.exceptions import RequestValidationError

from agilepm.exceptions import NotFoundError, ValidationError
from agilepm.logging import get_logger
from agilepm.models import Subscription
from agilepm.storage import WebhookStorage

from .auth import AdminDep, CompanyMember, MemberDep
from .schemas import (
    CreateWebhookRequest,
    DeleteResponse,
    DeliveryLogPage,
    DeliveryLogResponse,
    HealthResponse,
    Pagination,
    UpdateWebhookRequest,
    WebhookResponse,
)

logger = get_logger(__name__)

router = APIRouter()

# Storage instance (set by app lifespan)
_storage: WebhookStorage | None = None


def set_storage(storage: WebhookStorage | None) -> None:
    """Set the global storage instance."""
    global _storage
    _storage = storage


async def get_storage() -> WebhookStorage:
    """Dependency to get the WebhookStorage instance."""
    if _storage is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage not initialized",
        )
    return _storage


StorageDep = Annotated[WebhookStorage, Depends(get_storage)]


async def _ensure_project(storage: WebhookStorage, project_id: str, company_id: str) -> None:
    """A webhook may only be scoped to a project of the caller's company."""
    project = await storage.get_project(project_id)
    if project is None or project.company_id != company_id:
        raise NotFoundError("project", project_id)


async def _load_webhook(
    storage: WebhookStorage, webhook_id: str, member: CompanyMember
) -> Subscription:
    subscription = await storage.get_subscription(webhook_id, member.company_id)
    if subscription is None:
        raise NotFoundError("webhook", webhook_id)
    return subscription


# Leading parts of a FastAPI error location that name where the input came from
REQUEST_LOCATIONS = ("body", "query", "path", "header")


def to_validation_error(exc: pydantic.ValidationError | RequestValidationError) -> ValidationError:
    """Report the first failed field of a pydantic or request validation error."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(part) for part in first.get("loc", ()) if part not in REQUEST_LOCATIONS]
    return ValidationError(".".join(loc) or "body", first.get("msg", "Invalid value"))


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health, including storage connectivity."""
    storage_connected = _storage is not None
    return HealthResponse(
        status="healthy" if storage_connected else "unhealthy",
        version="0.1.0",
        storage_connected=storage_connected,
    )


@router.get("/webhooks", response_model=list[WebhookResponse], tags=["webhooks"])
async def list_webhooks(
    member: MemberDep,
    storage: StorageDep,
    project_id: str | None = None,
) -> list[WebhookResponse]:
    """List the company's webhooks, newest first.

    Any company member may list webhooks. Secrets are never returned.
    Filtering by another company's project is a 404.
    """
    if project_id is not None:
        await _ensure_project(storage, project_id, member.company_id)
    subscriptions = await storage.list_subscriptions(member.company_id, project_id=project_id)
    return [WebhookResponse.from_subscription(s) for s in subscriptions]


@router.get("/webhooks/{webhook_id}", response_model=WebhookResponse, tags=["webhooks"])
async def get_webhook(
    webhook_id: str,
    member: MemberDep,
    storage: StorageDep,
) -> WebhookResponse:
    """Get a single webhook of the caller's company."""
    subscription = await _load_webhook(storage, webhook_id, member)
    return WebhookResponse.from_subscription(subscription)


@router.post(
    "/webhooks",
    response_model=WebhookResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["webhooks"],
)
async def create_webhook(
    request: CreateWebhookRequest,
    member: AdminDep,
    storage: StorageDep,
) -> WebhookResponse:
    """Register a webhook for the caller's company.

    Args:
        request: URL, events and optional project scope and secret.
        member: Calling company OWNER or ADMIN.
        storage: Injected WebhookStorage.

    Returns:
        The created webhook.
    """
    if request.project_id is not None:
        await _ensure_project(storage, request.project_id, member.company_id)

    subscription = Subscription(
        company_id=member.company_id,
        project_id=request.project_id,
        url=request.url,
        secret=request.secret,
        events=request.events,
        active=request.active,
        description=request.description,
    )
    await storage.store_subscription(subscription)

    logger.info(
        "Webhook created",
        webhook_id=subscription.id,
        project_id=subscription.project_id,
        events=subscription.events,
        signed=subscription.is_signed,
    )
    return WebhookResponse.from_subscription(subscription)


@router.patch("/webhooks/{webhook_id}", response_model=WebhookResponse, tags=["webhooks"])
async def update_webhook(
    webhook_id: str,
    request: UpdateWebhookRequest,
    member: AdminDep,
    storage: StorageDep,
) -> WebhookResponse:
    """Update a webhook. Only fields present in the body change.

    Disabling a webhook (``active: false``) also stops its pending retries
    before their next attempt.
    """
    await _load_webhook(storage, webhook_id, member)

    changes = request.changes()
    if changes.get("project_id") is not None:
        await _ensure_project(storage, str(changes["project_id"]), member.company_id)

    try:
        updated = await storage.update_subscription(webhook_id, member.company_id, **changes)
    except pydantic.ValidationError as e:
        raise to_validation_error(e) from e
    if updated is None:
        raise NotFoundError("webhook", webhook_id)

    logger.info("Webhook updated", webhook_id=webhook_id, fields=sorted(changes))
    return WebhookResponse.from_subscription(updated)


@router.delete("/webhooks/{webhook_id}", response_model=DeleteResponse, tags=["webhooks"])
async def delete_webhook(
    webhook_id: str,
    member: AdminDep,
    storage: StorageDep,
) -> DeleteResponse:
    """Delete a webhook together with its delivery logs."""
    deleted = await storage.delete_subscription(webhook_id, member.company_id)
    if not deleted:
        raise NotFoundError("webhook", webhook_id)

    logger.info("Webhook deleted", webhook_id=webhook_id)
    return DeleteResponse(message="Webhook deleted successfully")


@router.get(
    "/webhooks/{webhook_id}/logs",
    response_model=DeliveryLogPage,
    tags=["webhooks"],
)
async def get_webhook_logs(
    webhook_id: str,
    member: AdminDep,
    storage: StorageDep,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> DeliveryLogPage:
    """Page through a webhook's delivery records, newest first."""
    await _load_webhook(storage, webhook_id, member)

    records = await storage.get_delivery_logs(webhook_id, limit=limit, offset=offset)
    total = await storage.count_delivery_logs(webhook_id)

    return DeliveryLogPage(
        data=[DeliveryLogResponse.from_record(r) for r in records],
        pagination=Pagination(total=total, limit=limit, offset=offset),
    )
