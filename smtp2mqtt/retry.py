"""Publish retries with exponential backoff, driven by RetryConfig."""

from __future__ import annotations

from collections.abc import Callable

import aiomqtt
import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import RetryConfig

logger = structlog.get_logger()

# Broker unreachable or the connection dropped mid-publish.
BROKER_ERRORS: tuple[type[BaseException], ...] = (aiomqtt.MqttError, OSError)


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        "publish_retry",
        attempt=state.attempt_number,
        wait_seconds=state.next_action.sleep if state.next_action else 0,
        error=str(exc),
        error_type=type(exc).__name__,
    )


def with_retry(
    config: RetryConfig,
    *,
    retryable_exceptions: tuple[type[BaseException], ...] = BROKER_ERRORS,
) -> Callable:
    """Return a tenacity retry decorator configured from *config*.

    Only *retryable_exceptions* are retried; anything else propagates on the
    first attempt.  Each retry is logged as ``publish_retry`` before the
    backoff sleep.  After ``max_attempts`` the last exception is re-raised.

    Usage::

        @with_retry(config.retry)
        async def publish(op: PublishOp) -> None: ...
    """
    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.multiplier,
            min=config.initial_wait_seconds,
            max=config.max_wait_seconds,
        ),
        retry=retry_if_exception_type(retryable_exceptions),
        before_sleep=_log_retry,
        reraise=True,
    )
