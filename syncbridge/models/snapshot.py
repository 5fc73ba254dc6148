# syncbridge/models/snapshot.py
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text

from syncbridge.core.utils import utcnow
from syncbridge.database import Base


class ProductSnapshot(Base):
    """Immutable, versioned capture of one entity at a point in time."""
    __tablename__ = "product_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    entity_id = Column(String(255), nullable=False, index=True)
    platform = Column(String(32), nullable=False, index=True)
    snapshot_type = Column(String(16), nullable=False)  # pre_sync, post_sync, manual
    data = Column(JSON, nullable=False)
    checksum = Column(String(64), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    previous_snapshot_id = Column(Integer, ForeignKey("product_snapshots.id"), nullable=True)
    sync_log_id = Column(Integer, ForeignKey("sync_logs.id"), nullable=True, index=True)
    restore_point_id = Column(Integer, ForeignKey("restore_points.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return (f"<ProductSnapshot(id={self.id}, entity='{self.platform}:{self.entity_id}', "
                f"v{self.version}, type='{self.snapshot_type}')>")


class RestorePoint(Base):
    __tablename__ = "restore_points"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    point_type = Column(String(16), nullable=False, default="manual")
    status = Column(String(16), nullable=False, default="active")
    total_snapshots = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    restored_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<RestorePoint(id={self.id}, name='{self.name}', status='{self.status}', snapshots={self.total_snapshots})>"


class RollbackOperation(Base):
    """Audit row for a rollback run, moved from running to completed or failed."""
    __tablename__ = "rollback_operations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    restore_point_id = Column(Integer, ForeignKey("restore_points.id"), nullable=True)
    target_timestamp = Column(DateTime(timezone=True), nullable=True)
    dry_run = Column(Boolean, nullable=False, default=False)
    platforms = Column(JSON, nullable=False, default=list)
    entity_ids = Column(JSON, nullable=True)
    status = Column(String(16), nullable=False, default="running")
    items_restored = Column(Integer, nullable=False, default=0)
    items_failed = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=False, default=list)
    warnings = Column(JSON, nullable=False, default=list)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<RollbackOperation(id={self.id}, status='{self.status}', restored={self.items_restored}, failed={self.items_failed})>"
