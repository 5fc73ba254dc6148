"""
Event envelope shared by publishers, the store and subscription handlers.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from syncbridge.core.enums import (
    BusinessImpact,
    EntityType,
    EventPriority,
    EventSource,
    EventStatus,
    EventType,
    ProcessingResult,
)
from syncbridge.core.utils import utcnow


class ProcessingRecord(BaseModel):
    processor: str
    timestamp: datetime = Field(default_factory=utcnow)
    result: ProcessingResult
    duration_ms: int = 0
    error: Optional[str] = None


class EventMetadata(BaseModel):
    priority: EventPriority = EventPriority.NORMAL
    retry_count: int = 0
    max_retries: int = 3
    processing_history: List[ProcessingRecord] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    business_impact: Optional[BusinessImpact] = None


class SyncEvent(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: EventType
    source: EventSource
    entity_type: EntityType
    entity_id: str
    user_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    payload: Dict[str, Any] = Field(default_factory=dict)
    correlation_id: Optional[str] = None
    causation_id: Optional[str] = None
    version: int = 1
    metadata: EventMetadata = Field(default_factory=EventMetadata)
    status: EventStatus = EventStatus.CREATED

    def succeeded_processors(self) -> set:
        return {
            record.processor
            for record in self.metadata.processing_history
            if record.result == ProcessingResult.SUCCESS
        }

    def derive(self, **fields) -> "SyncEvent":
        """A follow-up event in the same correlation chain, caused by this one."""
        fields.setdefault("user_id", self.user_id)
        fields.setdefault("correlation_id", self.correlation_id or self.id)
        fields.setdefault("causation_id", self.id)
        return SyncEvent(**fields)


def event_view(event: SyncEvent) -> Dict[str, Any]:
    """
    Plain-data view of an event that filter conditions are evaluated against.
    Enum members are flattened to their values so conditions compare strings.
    """
    return event.model_dump(mode="json")
