"""
Module: delivery/retry.py
Description: Retry strategies for webhook and live connection delivery.

Webhook attempts follow a fixed backoff schedule ([1, 5, 15] seconds by
default, the last delay repeating when the budget is longer than the
schedule). Live pushes use exponential backoff. Both run on tenacity's
AsyncRetrying so waits never block the event loop, and both accept an
injectable sleep for tests.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Sequence

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from relay.errors import LivePushError
from relay.models.webhook import AttemptResult
from relay.utils.logger import get_logger

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def schedule_delay(delays: Sequence[float], attempt: int) -> float:
    """Delay after failed attempt number `attempt` (1-based)."""
    return float(delays[min(attempt - 1, len(delays) - 1)])


class wait_schedule(wait_base):
    """Wait strategy reading delays from a fixed schedule."""

    def __init__(self, delays: Sequence[float]):
        if not delays:
            raise ValueError("delays must not be empty")
        self.delays = list(delays)

    def __call__(self, retry_state: RetryCallState) -> float:
        return schedule_delay(self.delays, retry_state.attempt_number)


def _log_webhook_retry(retry_state: RetryCallState) -> None:
    result: Optional[AttemptResult] = None
    if retry_state.outcome is not None and not retry_state.outcome.failed:
        result = retry_state.outcome.result()
    logger.info(
        "Retrying webhook delivery",
        attempt=retry_state.attempt_number,
        next_delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error=result.error if result else None,
        status_code=result.status_code if result else None
    )


def _last_result(retry_state: RetryCallState) -> AttemptResult:
    return retry_state.outcome.result()


def webhook_retrying(
    max_attempts: int,
    delays: Sequence[float],
    sleep: Sleep = asyncio.sleep
) -> AsyncRetrying:
    """
    Retry controller for webhook attempts returning AttemptResult.

    A failed AttemptResult is retried until max_attempts; the last result
    is returned when the budget runs out. Exceptions are not retried.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_schedule(delays),
        retry=retry_if_result(lambda result: not result.ok),
        before_sleep=_log_webhook_retry,
        retry_error_callback=_last_result,
        sleep=sleep,
        reraise=True
    )


def _log_live_push_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "Retrying live push",
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception()) if retry_state.outcome else None
    )


def live_push_retrying(
    max_attempts: int,
    backoff_base: float,
    sleep: Sleep = asyncio.sleep
) -> AsyncRetrying:
    """
    Retry controller for live connection pushes.

    Only LivePushError is retried; ConnectionGoneError and anything else
    propagate immediately. The last LivePushError is re-raised when the
    budget runs out.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=backoff_base, min=backoff_base),
        retry=retry_if_exception_type(LivePushError),
        before_sleep=_log_live_push_retry,
        sleep=sleep,
        reraise=True
    )
