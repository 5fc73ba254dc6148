# syncbridge/models/sync_event.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text

from syncbridge.core.utils import utcnow
from syncbridge.database import Base


class SyncEventRecord(Base):
    """
    Append-only log of every event published on the event bus.
    The event body never changes after insert; only the dispatch state
    columns (status, retry_count, next_attempt_at) move.
    """
    __tablename__ = "sync_events"

    id = Column(String(36), primary_key=True)
    event_type = Column(String(64), nullable=False, index=True)
    source = Column(String(32), nullable=False, index=True)
    entity_type = Column(String(32), nullable=False, index=True)
    entity_id = Column(String(255), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    correlation_id = Column(String(64), nullable=True, index=True)
    causation_id = Column(String(64), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    priority = Column(String(16), nullable=False, default="normal")
    max_retries = Column(Integer, nullable=False, default=3)
    tags = Column(JSON, nullable=False, default=list)
    business_impact = Column(String(16), nullable=True)

    # Dispatch state
    status = Column(String(16), nullable=False, default="created", index=True)
    retry_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)

    occurred_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return (f"<SyncEventRecord(id='{self.id}', type='{self.event_type}', source='{self.source}', "
                f"entity='{self.entity_type}:{self.entity_id}', status='{self.status}')>")


class EventProcessingHistory(Base):
    """One row per handler attempt against an event."""
    __tablename__ = "event_processing_history"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(36), ForeignKey("sync_events.id", ondelete="CASCADE"), nullable=False, index=True)
    processor = Column(String(128), nullable=False)
    result = Column(String(16), nullable=False)  # success, failure, deferred
    duration_ms = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<EventProcessingHistory(event_id='{self.event_id}', processor='{self.processor}', result='{self.result}')>"
