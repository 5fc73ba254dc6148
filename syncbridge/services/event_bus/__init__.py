from .bus import EventBus
from .handlers import EventHandler, HandlerContext, HandlerResult
from .store import EventStore
from .subscriptions import BackoffStrategy, EventSubscription, default_subscriptions
from .types import EventMetadata, ProcessingRecord, SyncEvent

__all__ = [
    "BackoffStrategy",
    "EventBus",
    "EventHandler",
    "EventMetadata",
    "EventStore",
    "EventSubscription",
    "HandlerContext",
    "HandlerResult",
    "ProcessingRecord",
    "SyncEvent",
    "default_subscriptions",
]
