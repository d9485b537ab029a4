"""Bounded exponential-backoff retries for provider calls."""

import threading
from typing import Callable, Optional, TypeVar
from pydantic import BaseModel, Field
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from ..config.models import RetrySettings
from ..utils.errors import ApplyCancelled, ProviderError, ProviderTransientError
from ..utils.logging import get_logger

logger = get_logger("executor.retry")

T = TypeVar("T")


class RetryPolicy(BaseModel):
    max_attempts: int = Field(default=5, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay_seconds,
            max_delay=settings.max_delay_seconds,
        )


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    cancel_event: Optional[threading.Event] = None,
    description: str = "provider call",
) -> T:
    """
    Call ``fn``, retrying ProviderTransientError with exponential backoff.

    Backoff waits on ``cancel_event``, so a cancellation cuts the wait short
    and stops further attempts; a call already in progress is never interrupted.

    Returns:
        Whatever ``fn`` returns

    Raises:
        ApplyCancelled: If cancellation was signalled during a backoff
        ProviderError: If retries are exhausted, or on a permanent failure
    """
    cancel_event = cancel_event or threading.Event()
    attempts = 0

    def attempt() -> T:
        nonlocal attempts
        if attempts and cancel_event.is_set():
            raise ApplyCancelled(f"{description} cancelled during backoff")
        attempts += 1
        return fn()

    def log_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"{description} failed transiently (attempt {retry_state.attempt_number}/{policy.max_attempts}): "
            f"{error}; retrying in {wait:.2f}s"
        )

    retryer = Retrying(
        retry=retry_if_exception_type(ProviderTransientError),
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(multiplier=policy.base_delay, max=policy.max_delay),
        sleep=cancel_event.wait,
        before_sleep=log_retry,
        reraise=True,
    )

    try:
        return retryer(attempt)
    except ProviderTransientError as e:
        raise ProviderError(f"{description} failed after {attempts} attempts: {e}") from e
