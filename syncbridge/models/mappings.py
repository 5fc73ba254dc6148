# syncbridge/models/mappings.py
"""
Cross-system identity mappings.

A mapping row ties a record on the source platform to its counterpart on the
target platform. Rows are unique per (user, source platform, source id) and
the target id, once bound, does not change.
"""
from sqlalchemy import Column, DateTime, Float, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import declared_attr

from syncbridge.core.utils import utcnow
from syncbridge.database import Base


class MappingMixin:
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    source_platform = Column(String(32), nullable=False)
    source_system_id = Column(String(255), nullable=False)
    target_platform = Column(String(32), nullable=False)
    target_system_id = Column(String(255), nullable=True, index=True)
    sync_status = Column(String(16), nullable=False, default="pending")
    last_synced = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(String(1000), nullable=True)
    mapping_metadata = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @declared_attr
    def __table_args__(cls):
        return (
            UniqueConstraint(
                'user_id', 'source_platform', 'source_system_id',
                name=f'uq_{cls.__tablename__}_source',
            ),
        )

    def __repr__(self):
        return (f"<{type(self).__name__}(id={self.id}, {self.source_platform}:{self.source_system_id} -> "
                f"{self.target_platform}:{self.target_system_id}, status='{self.sync_status}')>")


class ItemMapping(MappingMixin, Base):
    __tablename__ = "item_mappings"

    sku = Column(String(255), nullable=True, index=True)


class OrderMapping(MappingMixin, Base):
    __tablename__ = "order_mappings"

    order_number = Column(String(64), nullable=True)
    currency = Column(String(3), nullable=True)
    total_amount = Column(Float, nullable=True)
    base_currency = Column(String(3), nullable=True)
    exchange_rate = Column(Float, nullable=True)
    converted_amount = Column(Float, nullable=True)


class CustomerMapping(MappingMixin, Base):
    __tablename__ = "customer_mappings"

    email = Column(String(255), nullable=True, index=True)
