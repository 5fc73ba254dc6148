# syncbridge/routes/rollback.py
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from syncbridge.context import EngineContext
from syncbridge.core.exceptions import RestorePointNotFoundError, ValidationError
from syncbridge.dependencies import get_context, get_user_id
from syncbridge.schemas.rollback import (
    RestorePointCreate,
    RestorePointRead,
    RollbackRequest,
    RollbackResponse,
    RollbackValidateRequest,
    RollbackValidationResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["rollback"])


@router.post("/rollback", response_model=RollbackResponse)
async def rollback(
    body: RollbackRequest,
    user_id: str = Depends(get_user_id),
    context: EngineContext = Depends(get_context),
):
    try:
        result = await context.rollback.rollback(
            user_id,
            restore_point_id=body.restore_point_id,
            target_timestamp=body.target_timestamp,
            dry_run=body.dry_run,
            platforms=body.platforms,
            entity_ids=body.entity_ids,
        )
    except RestorePointNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return RollbackResponse.model_validate(result)


@router.post("/rollback/validate", response_model=RollbackValidationResponse)
async def validate_rollback(
    body: RollbackValidateRequest,
    user_id: str = Depends(get_user_id),
    context: EngineContext = Depends(get_context),
):
    try:
        validation = await context.rollback.validate_rollback(user_id, body.restore_point_id, body.platforms)
    except RestorePointNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return RollbackValidationResponse.model_validate(validation)


@router.post("/restore-points", response_model=RestorePointRead, status_code=201)
async def create_restore_point(
    body: RestorePointCreate,
    user_id: str = Depends(get_user_id),
    context: EngineContext = Depends(get_context),
):
    restore_point = await context.restore_points.create_restore_point(
        user_id,
        body.name,
        description=body.description,
        point_type=body.point_type,
        platforms=body.platforms,
    )
    return RestorePointRead.from_orm_model(restore_point)


@router.get("/restore-points", response_model=List[RestorePointRead])
async def list_restore_points(
    limit: int = Query(50, ge=1, le=500),
    user_id: str = Depends(get_user_id),
    context: EngineContext = Depends(get_context),
):
    restore_points = await context.restore_points.list_restore_points(user_id, limit=limit)
    return [RestorePointRead.from_orm_model(rp) for rp in restore_points]
