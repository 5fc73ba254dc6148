# syncbridge/routes/events.py
import logging

from fastapi import APIRouter, Depends

from syncbridge.context import EngineContext
from syncbridge.dependencies import get_context, get_user_id
from syncbridge.schemas.events import EventPublishRequest, EventPublishResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/events", tags=["events"])


@router.post("", response_model=EventPublishResponse, status_code=202)
async def publish_event(
    body: EventPublishRequest,
    user_id: str = Depends(get_user_id),
    context: EngineContext = Depends(get_context),
):
    """Store an event and hand it to the bus (critical events are processed before returning)."""
    event = body.to_event(user_id)
    event_id = await context.event_bus.publish(event)
    logger.info(f"Published {event.type.value} {event_id} for {event.entity_type.value}:{event.entity_id}")
    return EventPublishResponse(event_id=event_id)
