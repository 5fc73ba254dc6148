from typing import Any, Dict, List, Optional

from pydantic import Field

from syncbridge.core.enums import BusinessImpact, EntityType, EventPriority, EventSource, EventType
from syncbridge.schemas.base import CamelSchema
from syncbridge.services.event_bus.types import EventMetadata, SyncEvent


class EventMetadataIn(CamelSchema):
    priority: EventPriority = EventPriority.NORMAL
    max_retries: Optional[int] = Field(default=None, ge=0)
    business_impact: Optional[BusinessImpact] = None
    tags: List[str] = []


class EventPublishRequest(CamelSchema):
    type: EventType
    source: EventSource
    entity_type: EntityType
    entity_id: str
    payload: Dict[str, Any] = {}
    metadata: EventMetadataIn = Field(default_factory=EventMetadataIn)
    correlation_id: Optional[str] = None
    causation_id: Optional[str] = None

    def to_event(self, user_id: str) -> SyncEvent:
        metadata = {
            "priority": self.metadata.priority,
            "business_impact": self.metadata.business_impact,
            "tags": list(self.metadata.tags),
        }
        # Left unset so the bus applies its configured default
        if self.metadata.max_retries is not None:
            metadata["max_retries"] = self.metadata.max_retries
        return SyncEvent(
            type=self.type,
            source=self.source,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            user_id=user_id,
            payload=self.payload,
            metadata=EventMetadata(**metadata),
            correlation_id=self.correlation_id,
            causation_id=self.causation_id,
        )


class EventPublishResponse(CamelSchema):
    event_id: str
