"""Application layer - pipeline use cases and the change feed listener."""

from leadsync.application.listener import ChangeFeedListener, ListenerStats, ListenerSubscription
from leadsync.application.retry import RetryPolicy, RetryStep, run_with_retry

__all__ = [
    "ChangeFeedListener",
    "ListenerStats",
    "ListenerSubscription",
    "RetryPolicy",
    "RetryStep",
    "run_with_retry",
]
