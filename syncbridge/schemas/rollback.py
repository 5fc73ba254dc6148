from datetime import datetime
from typing import List, Optional

from pydantic import Field, model_validator

from syncbridge.core.enums import PlatformName, RestorePointType
from syncbridge.schemas.base import BaseSchema, CamelSchema


class RollbackRequest(CamelSchema):
    restore_point_id: Optional[int] = None
    target_timestamp: Optional[datetime] = None
    dry_run: bool = False
    platforms: Optional[List[PlatformName]] = None
    entity_ids: Optional[List[str]] = None

    @model_validator(mode="after")
    def check_target(self):
        if (self.restore_point_id is None) == (self.target_timestamp is None):
            raise ValueError("Provide exactly one of restorePointId or targetTimestamp")
        return self


class RollbackResponse(BaseSchema):
    success: bool
    items_restored: int
    items_failed: int
    errors: List[str] = []
    warnings: List[str] = []
    rollback_operation_id: Optional[int] = None
    dry_run: bool = False


class RollbackValidateRequest(CamelSchema):
    restore_point_id: int
    platforms: Optional[List[PlatformName]] = None


class RollbackValidationResponse(BaseSchema):
    valid: bool
    snapshot_count: int
    invalid_snapshot_ids: List[int] = []
    warnings: List[str] = []


class RestorePointCreate(CamelSchema):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    point_type: RestorePointType = RestorePointType.MANUAL
    platforms: Optional[List[PlatformName]] = None


class RestorePointRead(BaseSchema):
    id: int
    user_id: str
    name: str
    description: Optional[str] = None
    point_type: str
    status: str
    total_snapshots: int
    created_at: datetime
    restored_at: Optional[datetime] = None
