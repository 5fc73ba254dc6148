# syncbridge/models/sync_log.py
from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, JSON, String, Text

from syncbridge.core.utils import utcnow
from syncbridge.database import Base


class SyncLog(Base):
    """One row per sync run. A row in 'running' blocks new runs for the user."""
    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    direction = Column(String(32), nullable=False)
    data_types = Column(JSON, nullable=False, default=list)
    filters = Column(JSON, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default="running", index=True)

    items_processed = Column(Integer, nullable=False, default=0)
    items_succeeded = Column(Integer, nullable=False, default=0)
    items_failed = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=False, default=list)
    warnings = Column(JSON, nullable=False, default=list)
    details = Column(JSON, nullable=False, default=dict)
    error_message = Column(Text, nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)

    def __repr__(self):
        return (f"<SyncLog(id={self.id}, user_id='{self.user_id}', direction='{self.direction}', "
                f"status='{self.status}', processed={self.items_processed})>")


class SyncHistory(Base):
    """Per-entity outcome inside a sync run."""
    __tablename__ = "sync_history"

    id = Column(Integer, primary_key=True, index=True)
    sync_log_id = Column(Integer, ForeignKey("sync_logs.id"), nullable=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(32), nullable=False)
    source_id = Column(String(255), nullable=False)
    target_id = Column(String(255), nullable=True)
    platform = Column(String(32), nullable=False)
    operation = Column(String(16), nullable=False)  # create, update, skip
    status = Column(String(16), nullable=False)  # success, failed
    error_message = Column(Text, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<SyncHistory(entity='{self.entity_type}:{self.source_id}', op='{self.operation}', status='{self.status}')>"


class SystemMetric(Base):
    __tablename__ = "system_metrics"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    metric_name = Column(String(64), nullable=False, index=True)
    metric_type = Column(String(64), nullable=False)
    metric_value = Column(Float, nullable=False)
    unit = Column(String(32), nullable=True)
    platform = Column(String(32), nullable=True)
    tags = Column(JSON, nullable=False, default=dict)
    recorded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<SystemMetric(name='{self.metric_name}', type='{self.metric_type}', value={self.metric_value})>"
