# syncbridge/routes/sync.py
import logging

from fastapi import APIRouter, Depends, HTTPException

from syncbridge.context import EngineContext
from syncbridge.core.exceptions import SyncInProgressError
from syncbridge.dependencies import get_context, get_user_id
from syncbridge.schemas.sync import SyncLogRead, SyncRequestSchema, SyncResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.post("", response_model=SyncResponse)
async def trigger_sync(
    body: SyncRequestSchema,
    user_id: str = Depends(get_user_id),
    context: EngineContext = Depends(get_context),
):
    """
    Run a sync for the caller and return the aggregate outcome.
    Answers 409 while another run for the same user is in progress.
    """
    try:
        result = await context.runner.run(user_id, body.to_request(triggered_by="api"))
    except SyncInProgressError as e:
        logger.warning(f"Rejected sync for {user_id}: {e}")
        raise HTTPException(
            status_code=409,
            detail={"message": str(e), "syncLogId": e.sync_log_id},
        )
    return SyncResponse.from_result(result)


@router.get("/{sync_log_id}", response_model=SyncLogRead)
async def get_sync_log(
    sync_log_id: int,
    user_id: str = Depends(get_user_id),
    context: EngineContext = Depends(get_context),
):
    sync_log = await context.runner.get_sync_log(sync_log_id)
    if sync_log is None or sync_log.user_id != user_id:
        raise HTTPException(status_code=404, detail=f"Sync log {sync_log_id} not found")
    return SyncLogRead.from_orm_model(sync_log)
