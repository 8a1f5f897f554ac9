"""Webhook domain models for AgilePM.

Models:
    - Subscription: URL + secret + event filter registered by a tenant
    - EventPayload: JSON body POSTed to receivers
    - DeliveryAttemptRecord: Delivery log row, updated in place across retries
    - ProjectRef: Project to company mapping for tenant resolution
"""

from .base import generate_id, truncate, utc_now
from .webhook import (
    ALL_EVENTS,
    ERROR_MAX,
    RESPONSE_SNIPPET_MAX,
    DeliveryAttemptRecord,
    DeliveryStatus,
    EventName,
    EventPayload,
    ProjectRef,
    Subscription,
)

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
    "generate_id",
    "truncate",
    "utc_now",
]
