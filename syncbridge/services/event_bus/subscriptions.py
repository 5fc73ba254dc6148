import random
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from syncbridge.core.enums import BackoffType, EntityType, EventSource, EventType
from syncbridge.services.event_bus.filters import Equals, EventFilter
from syncbridge.services.event_bus.handlers import (
    EventHandler,
    OrderWebhookHandler,
    ProductChangeHandler,
    SystemHealthHandler,
)
from syncbridge.services.event_bus.types import SyncEvent


@dataclass
class BackoffStrategy:
    type: BackoffType = BackoffType.EXPONENTIAL
    initial_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = True


def compute_backoff(strategy: BackoffStrategy, retry_count: int, rng: random.Random = None) -> float:
    """
    Delay in seconds before retry number ``retry_count`` (0-based).

    exponential: initial * multiplier ** retry_count
    linear:      initial + multiplier * retry_count
    fixed:       initial
    Capped at ``max_delay``; jitter scales the result into [50%, 100%].
    """
    if strategy.type == BackoffType.EXPONENTIAL:
        delay = strategy.initial_delay * strategy.multiplier ** retry_count
    elif strategy.type == BackoffType.LINEAR:
        delay = strategy.initial_delay + strategy.multiplier * retry_count
    else:
        delay = strategy.initial_delay

    delay = min(delay, strategy.max_delay)
    if strategy.jitter:
        delay *= 0.5 + (rng or random).random() * 0.5
    return delay


@dataclass
class EventSubscription:
    name: str
    handler: EventHandler
    event_types: List[EventType]
    entity_types: List[EntityType] = field(default_factory=list)
    sources: List[EventSource] = field(default_factory=list)
    filter: Optional[EventFilter] = None
    priority: int = 0
    enabled: bool = True
    timeout: Optional[float] = None
    backoff: BackoffStrategy = field(default_factory=BackoffStrategy)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, event: SyncEvent, view: dict) -> bool:
        """Empty entity_types or sources match everything."""
        if not self.enabled:
            return False
        if event.type not in self.event_types:
            return False
        if self.entity_types and event.entity_type not in self.entity_types:
            return False
        if self.sources and event.source not in self.sources:
            return False
        if self.filter is not None and not self.filter.matches(view):
            return False
        return True

    @property
    def processor_name(self) -> str:
        # Names are unique per bus and stable across restarts
        return self.name


def default_subscriptions() -> List[EventSubscription]:
    return [
        EventSubscription(
            name="Product Change Handler",
            handler=ProductChangeHandler(),
            event_types=[EventType.ENTITY_CREATED, EventType.ENTITY_UPDATED, EventType.ENTITY_DELETED],
            entity_types=[EntityType.PRODUCT, EntityType.INVENTORY],
            sources=[EventSource.NETSUITE, EventSource.SHOPIFY],
            priority=10,
            backoff=BackoffStrategy(BackoffType.EXPONENTIAL, initial_delay=5.0, max_delay=300.0, multiplier=2.0),
        ),
        EventSubscription(
            name="Order Webhook Handler",
            handler=OrderWebhookHandler(),
            event_types=[EventType.WEBHOOK_RECEIVED],
            entity_types=[EntityType.ORDER],
            sources=[EventSource.SHOPIFY],
            filter=EventFilter([Equals("payload.action", "created")]),
            priority=20,
            backoff=BackoffStrategy(BackoffType.LINEAR, initial_delay=10.0, max_delay=120.0, multiplier=10.0),
        ),
        EventSubscription(
            name="System Health Monitor",
            handler=SystemHealthHandler(),
            event_types=[EventType.SYSTEM_HEALTH_CHANGED, EventType.API_RATE_LIMITED],
            sources=[EventSource.SYSTEM],
            priority=5,
            backoff=BackoffStrategy(BackoffType.FIXED, initial_delay=30.0, max_delay=30.0, jitter=False),
        ),
    ]
