# syncbridge/models/change_log.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String

from syncbridge.core.utils import utcnow
from syncbridge.database import Base


class ChangeLogEntry(Base):
    """Field-level audit row. Written once, never updated."""
    __tablename__ = "change_log"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(String(255), nullable=False, index=True)
    platform = Column(String(32), nullable=False)
    operation = Column(String(16), nullable=False)  # create, update, delete
    field_name = Column(String(128), nullable=True)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    value_diff = Column(JSON, nullable=True)
    change_source = Column(String(16), nullable=False, default="sync")
    triggered_by = Column(String(128), nullable=True)
    sync_log_id = Column(Integer, ForeignKey("sync_logs.id"), nullable=True, index=True)
    before_snapshot_id = Column(Integer, ForeignKey("product_snapshots.id"), nullable=True)
    after_snapshot_id = Column(Integer, ForeignKey("product_snapshots.id"), nullable=True)
    changed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return (f"<ChangeLogEntry(id={self.id}, entity='{self.platform}:{self.entity_id}', "
                f"op='{self.operation}', field='{self.field_name}')>")
