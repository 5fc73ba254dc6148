from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from syncbridge.core.enums import SyncDataType, SyncDirection, SyncRunStatus


@dataclass
class SyncFilters:
    product_ids: Optional[List[str]] = None
    order_ids: Optional[List[str]] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    changed_since_last_sync: bool = False
    full_sync: bool = False
    inventory_threshold: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_ids": self.product_ids,
            "order_ids": self.order_ids,
            "date_from": self.date_from.isoformat() if self.date_from else None,
            "date_to": self.date_to.isoformat() if self.date_to else None,
            "changed_since_last_sync": self.changed_since_last_sync,
            "full_sync": self.full_sync,
            "inventory_threshold": self.inventory_threshold,
        }


@dataclass
class SyncRequest:
    direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    data_types: List[SyncDataType] = field(
        default_factory=lambda: [SyncDataType.PRODUCTS, SyncDataType.INVENTORY, SyncDataType.ORDERS]
    )
    filters: SyncFilters = field(default_factory=SyncFilters)
    triggered_by: str = "manual"


@dataclass
class ItemError:
    item_id: str
    error: str

    def to_dict(self) -> Dict[str, str]:
        return {"item_id": self.item_id, "error": self.error}


@dataclass
class PassResult:
    """Outcome of one entity kind in one direction."""
    data_type: SyncDataType
    direction: SyncDirection
    items_processed: int = 0
    items_succeeded: int = 0
    items_failed: int = 0
    items_skipped: int = 0
    quantity_updates: int = 0
    errors: List[ItemError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def record_failure(self, item_id: str, error: BaseException):
        self.items_failed += 1
        self.errors.append(ItemError(str(item_id), str(error)))

    def merge(self, other: "PassResult"):
        self.items_processed += other.items_processed
        self.items_succeeded += other.items_succeeded
        self.items_failed += other.items_failed
        self.items_skipped += other.items_skipped
        self.quantity_updates += other.quantity_updates
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data_type": self.data_type.value,
            "direction": self.direction.value,
            "items_processed": self.items_processed,
            "items_succeeded": self.items_succeeded,
            "items_failed": self.items_failed,
            "items_skipped": self.items_skipped,
            "quantity_updates": self.quantity_updates,
        }


@dataclass
class SyncRunResult:
    sync_log_id: Optional[int]
    status: SyncRunStatus
    items_processed: int = 0
    items_succeeded: int = 0
    items_failed: int = 0
    errors: List[ItemError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    passes: List[PassResult] = field(default_factory=list)
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == SyncRunStatus.COMPLETED
