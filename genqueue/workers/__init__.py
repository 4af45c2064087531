# Client-side listeners for job completion

from genqueue.workers.change_feed import PostgresChangeFeed, SubscriptionError
from genqueue.workers.completion_listener import (
    AssetPoller,
    CompletionListener,
    EventBus,
    RealtimeSubscription,
    RetryPolicy,
    WorkspaceState,
    WorkspaceSync,
)

__all__ = [
    "PostgresChangeFeed",
    "SubscriptionError",
    "AssetPoller",
    "CompletionListener",
    "EventBus",
    "RealtimeSubscription",
    "RetryPolicy",
    "WorkspaceState",
    "WorkspaceSync",
]
