"""AgilePM webhooks: outbound event delivery for AgilePM tenants.

Companies register HTTPS endpoints for domain events (task, sprint,
project, comment, member). Whenever such an event is committed, every
matching subscription receives a signed JSON POST, retried with
exponential backoff on transient failures and recorded in a delivery log.

Quick Start:
    from agilepm.storage import WebhookStorage
    from agilepm.webhooks import EventDispatcher, set_dispatcher, trigger_webhooks

    storage = WebhookStorage()
    await storage.initialize()
    set_dispatcher(EventDispatcher(storage))

    # After the business transaction commits
    trigger_webhooks("task.created", {"id": "tsk_1", "title": "Ship"}, project_id="prj_1")

Receivers verify ``X-Webhook-Signature`` with ``agilepm.webhooks.verify``.
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings, settings

# Exceptions
from .exceptions import (
    AgilePMError,
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    NotFoundError,
    StorageError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    logger,
    unbind_context,
)

# Models
from .models import (
    ALL_EVENTS,
    DeliveryAttemptRecord,
    EventName,
    EventPayload,
    ProjectRef,
    Subscription,
)

# Delivery entry point
from .webhooks import trigger_webhooks

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "settings",
    # Exceptions
    "AgilePMError",
    "ValidationError",
    "NotFoundError",
    "StorageError",
    "ConfigurationError",
    "AuthenticationError",
    "AuthorizationError",
    # Logging
    "configure_logging",
    "get_logger",
    "logger",
    "bind_context",
    "clear_context",
    "unbind_context",
    # Models
    "ALL_EVENTS",
    "EventName",
    "Subscription",
    "EventPayload",
    "DeliveryAttemptRecord",
    "ProjectRef",
    # Delivery
    "trigger_webhooks",
]
