from datetime import datetime
from typing import List, Optional

from pydantic import Field

from syncbridge.core.enums import SyncDataType, SyncDirection, SyncRunStatus
from syncbridge.schemas.base import CamelSchema
from syncbridge.services.sync.types import SyncFilters, SyncRequest, SyncRunResult


class DataTypesSelection(CamelSchema):
    products: bool = True
    inventory: bool = True
    orders: bool = True

    def selected(self) -> List[SyncDataType]:
        return [data_type for data_type in SyncDataType if getattr(self, data_type.value)]


class SyncFiltersSchema(CamelSchema):
    product_ids: Optional[List[str]] = None
    order_ids: Optional[List[str]] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    changed_since_last_sync: bool = False
    full_sync: bool = False
    inventory_threshold: Optional[int] = Field(default=None, ge=0)


class SyncRequestSchema(CamelSchema):
    direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    data_types: DataTypesSelection = Field(default_factory=DataTypesSelection)
    filters: Optional[SyncFiltersSchema] = None

    def to_request(self, triggered_by: str = "api") -> SyncRequest:
        filters = self.filters or SyncFiltersSchema()
        return SyncRequest(
            direction=self.direction,
            data_types=self.data_types.selected(),
            filters=SyncFilters(**filters.model_dump()),
            triggered_by=triggered_by,
        )


class ItemErrorSchema(CamelSchema):
    item_id: str
    error: str


class SyncResponse(CamelSchema):
    sync_log_id: Optional[int]
    status: SyncRunStatus
    items_processed: int
    items_succeeded: int
    items_failed: int
    errors: List[ItemErrorSchema] = []
    warnings: List[str] = []

    @classmethod
    def from_result(cls, result: SyncRunResult) -> "SyncResponse":
        return cls(
            sync_log_id=result.sync_log_id,
            status=result.status,
            items_processed=result.items_processed,
            items_succeeded=result.items_succeeded,
            items_failed=result.items_failed,
            errors=[ItemErrorSchema(item_id=e.item_id, error=e.error) for e in result.errors],
            warnings=result.warnings,
        )


class SyncLogRead(CamelSchema):
    id: int
    user_id: str
    direction: str
    data_types: List[str]
    status: str
    items_processed: int
    items_succeeded: int
    items_failed: int
    errors: List[dict] = []
    warnings: List[str] = []
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
