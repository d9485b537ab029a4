"""Apply executor: bounded concurrent scheduler with retries."""

from .retry import RetryPolicy, call_with_retry
from .scheduler import ApplyScheduler

__all__ = ["ApplyScheduler", "RetryPolicy", "call_with_retry"]
