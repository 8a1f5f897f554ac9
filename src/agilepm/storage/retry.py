"""Retry policy for calls to the Qdrant store.

Subscription lookups sit on the event fan-out path, so a blip on the
store connection is retried a couple of times before the dispatcher
gives up on the event.
"""

from __future__ import annotations

import httpx
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from agilepm.logging import get_logger

logger = get_logger(__name__)

STORE_RETRY_ATTEMPTS = 3


def is_transient_store_error(exc: BaseException) -> bool:
    """Network failures and 5xx answers are worth another try; 4xx are not."""
    if isinstance(exc, UnexpectedResponse):
        return exc.status_code is None or exc.status_code >= 500
    return isinstance(
        exc, (httpx.ConnectError, httpx.TimeoutException, ResponseHandlingException)
    )


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Retrying store operation",
        attempt=retry_state.attempt_number,
        operation=retry_state.fn.__name__ if retry_state.fn else "unknown",
        error=repr(exc),
    )


store_retry = retry(
    stop=stop_after_attempt(STORE_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    retry=retry_if_exception(is_transient_store_error),
    before_sleep=_log_retry,
    reraise=True,
)
