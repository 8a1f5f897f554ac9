"""Outbound webhook delivery for AgilePM.

Provides HMAC-signed, fire-and-forget webhook delivery with exponential
backoff retry on transient failures.

Example:
    ```python
    from agilepm.webhooks import EventDispatcher, set_dispatcher, trigger_webhooks

    dispatcher = EventDispatcher(storage)
    set_dispatcher(dispatcher)

    # In a task handler, after the task was committed
    trigger_webhooks("task.created", task_data, project_id="prj_123")
    ```
"""

from .delivery import (
    Delivered,
    DeliveryJob,
    DeliveryOutcome,
    DeliveryWorker,
    PermanentFailure,
    TransientFailure,
    classify_response,
)
from .dispatcher import (
    EventDispatcher,
    create_http_client,
    get_dispatcher,
    set_dispatcher,
    trigger_webhooks,
)
from .retention import RetentionWorker, purge_delivery_logs
from .signing import SIGNATURE_HEADER, sign, verify

__all__ = [
    "Delivered",
    "DeliveryJob",
    "DeliveryOutcome",
    "DeliveryWorker",
    "EventDispatcher",
    "PermanentFailure",
    "RetentionWorker",
    "SIGNATURE_HEADER",
    "TransientFailure",
    "classify_response",
    "create_http_client",
    "get_dispatcher",
    "purge_delivery_logs",
    "set_dispatcher",
    "sign",
    "trigger_webhooks",
    "verify",
]
