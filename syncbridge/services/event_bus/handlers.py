"""
Subscription handlers.

A handler does the work for one subscription. ``handle`` is required;
``rollback`` is an optional compensation hook the bus calls when ``handle``
fails or times out.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from syncbridge.core.enums import (
    AlertSeverity,
    AlertType,
    EntityType,
    EventSource,
    EventType,
    SyncDataType,
    SyncDirection,
)
from syncbridge.services.event_bus.types import SyncEvent
from syncbridge.services.sync.types import SyncFilters, SyncRequest

logger = logging.getLogger(__name__)


@dataclass
class HandlerContext:
    """What a handler may touch. Built once per bus."""
    trigger_sync: Optional[Callable[[str, SyncRequest], Awaitable[Any]]] = None
    alert_service: Any = None


@dataclass
class HandlerResult:
    success: bool = True
    message: str = ""
    events: List[SyncEvent] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)


class EventHandler(ABC):
    name: str = "handler"

    @abstractmethod
    async def handle(self, event: SyncEvent, context: HandlerContext) -> HandlerResult:
        """Process the event. Raise to have the bus retry it with backoff."""

    async def rollback(self, event: SyncEvent, context: HandlerContext, error: BaseException) -> None:
        return None


def _direction_from(source: EventSource) -> SyncDirection:
    if source == EventSource.SHOPIFY:
        return SyncDirection.SHOPIFY_TO_NETSUITE
    return SyncDirection.NETSUITE_TO_SHOPIFY


class ProductChangeHandler(EventHandler):
    """Runs a targeted sync for a product or inventory record that changed on one side."""
    name = "product_change"

    async def handle(self, event: SyncEvent, context: HandlerContext) -> HandlerResult:
        if event.type == EventType.ENTITY_DELETED:
            logger.info(f"Product {event.entity_id} deleted on {event.source.value}; no sync triggered")
            return HandlerResult(message="deletion recorded")

        if context.trigger_sync is None:
            raise RuntimeError("No sync trigger configured for product change handler")

        data_type = SyncDataType.INVENTORY if event.entity_type == EntityType.INVENTORY else SyncDataType.PRODUCTS
        request = SyncRequest(
            direction=_direction_from(event.source),
            data_types=[data_type],
            filters=SyncFilters(product_ids=[event.entity_id]),
            triggered_by=f"event:{event.id}",
        )
        result = await context.trigger_sync(event.user_id, request)

        follow_up = event.derive(
            type=EventType.SYNC_COMPLETED if result.success else EventType.SYNC_FAILED,
            source=EventSource.SYSTEM,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            payload={"sync_log_id": result.sync_log_id, "status": result.status.value},
        )
        return HandlerResult(
            success=True,
            message=f"sync {result.status.value}",
            events=[follow_up],
            data={"sync_log_id": result.sync_log_id},
        )


class OrderWebhookHandler(EventHandler):
    """Pushes newly created storefront orders into the ERP."""
    name = "order_webhook"

    async def handle(self, event: SyncEvent, context: HandlerContext) -> HandlerResult:
        if context.trigger_sync is None:
            raise RuntimeError("No sync trigger configured for order webhook handler")

        request = SyncRequest(
            direction=SyncDirection.SHOPIFY_TO_NETSUITE,
            data_types=[SyncDataType.ORDERS],
            filters=SyncFilters(order_ids=[event.entity_id]),
            triggered_by=f"event:{event.id}",
        )
        result = await context.trigger_sync(event.user_id, request)
        return HandlerResult(
            success=True,
            message=f"order sync {result.status.value}",
            data={"sync_log_id": result.sync_log_id},
        )


class SystemHealthHandler(EventHandler):
    """Turns health and throttling events into operator alerts."""
    name = "system_health"

    async def handle(self, event: SyncEvent, context: HandlerContext) -> HandlerResult:
        if context.alert_service is None:
            logger.warning(f"System event {event.type.value} received but no alert service is configured")
            return HandlerResult(message="no alert service")

        if event.type == EventType.API_RATE_LIMITED:
            severity = AlertSeverity.LOW
            title = f"API throttled: {event.payload.get('platform', 'unknown')}"
        else:
            severity = AlertSeverity(event.payload.get("severity", AlertSeverity.MEDIUM.value))
            title = event.payload.get("title") or f"System health changed: {event.payload.get('status', 'unknown')}"

        await context.alert_service.create_alert(
            AlertType.SYSTEM_HEALTH,
            severity,
            title,
            event.payload.get("message", ""),
            user_id=event.user_id,
            source="event_bus",
            metadata={"event_id": event.id, "payload": event.payload},
        )
        return HandlerResult(message="alert recorded")
