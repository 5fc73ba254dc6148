# syncbridge/routes/rate_limits.py
import logging

from fastapi import APIRouter, Depends, HTTPException

from syncbridge.context import EngineContext
from syncbridge.core.enums import PlatformName
from syncbridge.core.exceptions import ValidationError
from syncbridge.dependencies import get_context, get_user_id
from syncbridge.schemas.rate_limit import RateLimitConfigSchema, RateLimitConfigUpdate, RateLimitStatus

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/rate-limits", tags=["rate-limits"])


@router.get("/{platform}", response_model=RateLimitStatus)
async def get_rate_limit_status(
    platform: PlatformName,
    user_id: str = Depends(get_user_id),
    context: EngineContext = Depends(get_context),
):
    status = await context.rate_gate.get_status(user_id, platform)
    return RateLimitStatus.model_validate(status)


@router.put("/{platform}", response_model=RateLimitConfigSchema)
async def update_rate_limit_config(
    platform: PlatformName,
    body: RateLimitConfigUpdate,
    user_id: str = Depends(get_user_id),
    context: EngineContext = Depends(get_context),
):
    """Persist per-platform overrides; running processes pick them up without a restart."""
    overrides = body.model_dump(exclude_none=True)
    if not overrides:
        raise HTTPException(status_code=422, detail="No rate limit settings supplied")
    try:
        config = await context.rate_gate.update_config(platform, overrides)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    logger.info(f"User {user_id} updated {platform.value} rate limits: {overrides}")
    return RateLimitConfigSchema.model_validate(config.to_dict())
