"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from agilepm.models import DeliveryAttemptRecord, DeliveryStatus, EventName, Subscription


class CreateWebhookRequest(BaseModel):
    """Request body for registering a webhook.

    Attributes:
        url: Absolute URL that will receive POSTed events.
        events: Event names to subscribe to (at least one).
        project_id: Restrict to one project; omit for the whole company.
        secret: Optional HMAC secret. Without it deliveries are unsigned.
        description: Optional note.
        active: Whether deliveries start immediately.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    url: HttpUrl = Field(description="Endpoint to receive events")
    events: list[EventName] = Field(min_length=1, description="Subscribed event names")
    project_id: str | None = Field(default=None, alias="projectId")
    secret: str | None = Field(default=None, min_length=1, description="HMAC secret")
    description: str | None = Field(default=None, max_length=500)
    active: bool = Field(default=True)


class UpdateWebhookRequest(BaseModel):
    """Partial update of a webhook. Only fields present in the body change.

    Sending ``project_id: null`` widens the webhook to the whole company.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    url: HttpUrl | None = None
    events: list[EventName] | None = Field(default=None, min_length=1)
    project_id: str | None = Field(default=None, alias="projectId")
    secret: str | None = Field(default=None, min_length=1)
    description: str | None = Field(default=None, max_length=500)
    active: bool | None = None

    def changes(self) -> dict[str, object]:
        """Fields explicitly sent by the client, by model field name."""
        data = self.model_dump(include=self.model_fields_set)
        # Only project_id may be cleared with null
        return {k: v for k, v in data.items() if v is not None or k == "project_id"}


class WebhookResponse(BaseModel):
    """Webhook as returned by the API. The secret itself is never exposed."""

    id: str
    company_id: str
    project_id: str | None
    url: str
    events: list[str]
    has_secret: bool
    active: bool
    description: str | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> WebhookResponse:
        return cls(
            id=subscription.id,
            company_id=subscription.company_id,
            project_id=subscription.project_id,
            url=str(subscription.url),
            events=list(subscription.events),
            has_secret=subscription.is_signed,
            active=subscription.active,
            description=subscription.description,
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
        )


class DeliveryLogResponse(BaseModel):
    """One delivery record."""

    id: str
    subscription_id: str
    event: str
    status: DeliveryStatus
    http_status_code: int | None
    response_snippet: str | None
    error: str | None
    retry_count: int
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
    next_retry_at: datetime | None

    @classmethod
    def from_record(cls, record: DeliveryAttemptRecord) -> DeliveryLogResponse:
        return cls.model_validate(record.model_dump(exclude={"company_id"}))


class Pagination(BaseModel):
    total: int = Field(ge=0)
    limit: int = Field(ge=1)
    offset: int = Field(ge=0)


class DeliveryLogPage(BaseModel):
    """Page of delivery records, newest first."""

    data: list[DeliveryLogResponse]
    pagination: Pagination


class DeleteResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    """Health check response.

    Attributes:
        status: Service status (healthy/unhealthy).
        version: API version.
        storage_connected: Whether the store is initialized.
    """

    status: str
    version: str
    storage_connected: bool
