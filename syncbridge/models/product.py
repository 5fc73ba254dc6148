# syncbridge/models/product.py
from sqlalchemy import Boolean, Column, DateTime, Float, Integer, JSON, String, Text, UniqueConstraint

from syncbridge.core.utils import utcnow
from syncbridge.database import Base


class Product(Base):
    """
    Local mirror of a catalog record as last seen on one platform.

    The reconciler refreshes these rows as it reads and writes platform data;
    snapshots capture them and rollbacks restore them.
    """
    __tablename__ = "products"

    # Columns a snapshot carries and a rollback writes back
    RESTORABLE_FIELDS = (
        "sku", "name", "description", "price", "inventory_quantity",
        "is_active", "attributes",
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    platform = Column(String(32), nullable=False, index=True)
    platform_product_id = Column(String(255), nullable=False)

    sku = Column(String(255), nullable=True, index=True)
    name = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=True)
    inventory_quantity = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    attributes = Column(JSON, nullable=False, default=dict)

    last_platform_sync = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'platform', 'platform_product_id', name='uq_product_platform_record'),
    )

    def state(self) -> dict:
        """Serializable view of the restorable state plus identity."""
        data = {field: getattr(self, field) for field in self.RESTORABLE_FIELDS}
        data.update(
            id=self.id,
            user_id=self.user_id,
            platform=self.platform,
            platform_product_id=self.platform_product_id,
        )
        return data

    def __repr__(self):
        return f"<Product(id={self.id}, platform='{self.platform}', external_id='{self.platform_product_id}', sku='{self.sku}')>"
