"""Webhook models for outbound event notifications.

Provides subscription registration, the event payload sent to receivers,
and the delivery record that tracks one logical delivery across retries.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

from .base import generate_id, truncate, utc_now

# Event types that can trigger webhooks
EventName = Literal[
    "task.created",
    "task.updated",
    "task.deleted",
    "task.assigned",
    "task.status_changed",
    "project.created",
    "project.updated",
    "project.deleted",
    "project.archived",
    "sprint.created",
    "sprint.updated",
    "sprint.deleted",
    "sprint.started",
    "sprint.completed",
    "comment.created",
    "comment.updated",
    "comment.deleted",
]

ALL_EVENTS: list[EventName] = [
    "task.created",
    "task.updated",
    "task.deleted",
    "task.assigned",
    "task.status_changed",
    "project.created",
    "project.updated",
    "project.deleted",
    "project.archived",
    "sprint.created",
    "sprint.updated",
    "sprint.deleted",
    "sprint.started",
    "sprint.completed",
    "comment.created",
    "comment.updated",
    "comment.deleted",
]

DeliveryStatus = Literal["pending", "success", "failed"]

RESPONSE_SNIPPET_MAX = 1000
ERROR_MAX = 500


class Subscription(BaseModel):
    """A tenant-configured webhook endpoint.

    Attributes:
        id: Unique identifier for this subscription.
        company_id: Tenant that owns the subscription.
        project_id: Project scope, or None for every project in the company.
        url: Absolute endpoint that receives POSTed events.
        secret: Shared HMAC secret. Deliveries are unsigned when absent,
            which gives receivers no way to authenticate the sender.
        events: Event names this subscription wants (never empty).
        active: Inactive subscriptions receive nothing.
        description: Free-text note from the administrator.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    company_id: str = Field(description="Owning company (tenant)")
    project_id: str | None = Field(default=None, description="Project scope (None = company-wide)")
    url: HttpUrl = Field(description="Endpoint to receive events")
    secret: str | None = Field(default=None, description="Shared secret for HMAC-SHA256")
    events: list[EventName] = Field(min_length=1, description="Subscribed event names")
    active: bool = Field(default=True, description="Whether the subscription is active")
    description: str | None = Field(default=None, description="Human-readable description")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("events")
    @classmethod
    def _dedupe_events(cls, value: list[EventName]) -> list[EventName]:
        return list(dict.fromkeys(value))

    @property
    def is_signed(self) -> bool:
        return bool(self.secret)

    def matches(self, event: str, project_id: str | None = None) -> bool:
        """Check whether a dispatch of ``event`` should reach this subscription.

        A company-wide subscription receives events for every project in
        its company. A project-scoped one only receives events carrying
        that exact project; events without a project never reach it.
        """
        if not self.active or event not in self.events:
            return False
        return self.project_id is None or self.project_id == project_id


class EventPayload(BaseModel):
    """Body POSTed to every matching subscription.

    Built once per dispatch. The same serialized bytes go to every
    recipient; only the signature differs per subscription.
    """

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    event: EventName
    timestamp: datetime = Field(default_factory=utc_now)
    data: Any = None
    project_id: str | None = Field(default=None, alias="projectId")

    def to_bytes(self) -> bytes:
        """Serialize to the canonical compact JSON body."""
        body = self.model_dump(mode="json", by_alias=True)
        if body.get("projectId") is None:
            body.pop("projectId", None)
        return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class DeliveryAttemptRecord(BaseModel):
    """Log row for one logical delivery to one subscription.

    Created on the first attempt and updated in place by retries of the
    same delivery. Terminal once status is success or failed.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("dlv"))
    subscription_id: str = Field(description="Subscription this delivery targets")
    company_id: str = Field(description="Owning company of the subscription")
    event: str = Field(description="Event name being delivered")
    status: DeliveryStatus = Field(default="pending")
    http_status_code: int | None = Field(default=None, description="Last HTTP status received")
    response_snippet: str | None = Field(default=None, description="Truncated response body")
    error: str | None = Field(default=None, description="Truncated error message")
    retry_count: int = Field(default=0, ge=0, description="Retries scheduled so far")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = Field(default=None)
    next_retry_at: datetime | None = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status != "pending"

    def mark_success(
        self,
        status_code: int,
        response_body: str | None = None,
        snippet_max: int = RESPONSE_SNIPPET_MAX,
    ) -> DeliveryAttemptRecord:
        """Mark delivery as successful."""
        now = utc_now()
        self.status = "success"
        self.http_status_code = status_code
        self.response_snippet = truncate(response_body, snippet_max)
        self.error = None
        self.next_retry_at = None
        self.completed_at = now
        self.updated_at = now
        return self

    def mark_failed(
        self,
        error: str,
        status_code: int | None = None,
        response_body: str | None = None,
        snippet_max: int = RESPONSE_SNIPPET_MAX,
        error_max: int = ERROR_MAX,
    ) -> DeliveryAttemptRecord:
        """Mark delivery as failed (no more retries)."""
        now = utc_now()
        self.status = "failed"
        self.http_status_code = status_code
        if response_body:
            self.response_snippet = truncate(response_body, snippet_max)
        self.error = truncate(error, error_max)
        self.next_retry_at = None
        self.completed_at = now
        self.updated_at = now
        return self

    def mark_retrying(
        self,
        next_retry_at: datetime,
        error: str,
        status_code: int | None = None,
        error_max: int = ERROR_MAX,
    ) -> DeliveryAttemptRecord:
        """Keep the delivery pending and count one more scheduled retry."""
        self.status = "pending"
        self.retry_count += 1
        self.http_status_code = status_code
        self.error = truncate(error, error_max)
        self.next_retry_at = next_retry_at
        self.updated_at = utc_now()
        return self


class ProjectRef(BaseModel):
    """Project to company mapping used to resolve a dispatch's tenant."""

    model_config = ConfigDict(extra="forbid")

    project_id: str
    company_id: str
    name: str | None = None


__all__ = [
    "ALL_EVENTS",
    "DeliveryAttemptRecord",
    "DeliveryStatus",
    "ERROR_MAX",
    "EventName",
    "EventPayload",
    "ProjectRef",
    "RESPONSE_SNIPPET_MAX",
    "Subscription",
]
