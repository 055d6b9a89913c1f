"""
Engagement API routes - likes and votes are buffered, then flushed in batches
"""
from fastapi import APIRouter, Depends, Header, status
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
import logging

from .auth import CurrentUser, get_current_user
from .config import config
from .dependencies import get_engagement_queue
from .exceptions import Unauthorized
from .services.engagement_queue import EngagementQueue
from .services.signing import verify_shared_secret

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/engagement", tags=["engagement"])


class EngagementEventRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_type: str = Field(..., alias="eventType", description="'like' or 'vote'")
    target_id: str = Field(..., alias="targetId")


class FlushRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    max_batch_size: Optional[int] = Field(None, alias="maxBatchSize")


@router.post("/events", status_code=status.HTTP_202_ACCEPTED)
async def record_engagement(
    request: EngagementEventRequest,
    current_user: CurrentUser = Depends(get_current_user),
    queue: EngagementQueue = Depends(get_engagement_queue),
):
    """Buffer a like or vote; counters catch up on the next flush"""
    key = queue.record(request.event_type, request.target_id, current_user.id)
    return {"accepted": True, "key": key}


@router.post("/flush")
async def flush_engagement(
    request: Optional[FlushRequest] = None,
    x_scheduler_secret: Optional[str] = Header(None, alias="X-Scheduler-Secret"),
    queue: EngagementQueue = Depends(get_engagement_queue),
):
    """
    Trigger a flush from an external scheduler

    Authenticated with the shared scheduler secret. A flush that finds
    another one running returns immediately with lockAcquired=false.
    """
    if not verify_shared_secret(config.SCHEDULER_SECRET, x_scheduler_secret):
        logger.warning("Rejected engagement flush with invalid scheduler secret")
        raise Unauthorized("Invalid scheduler secret")

    batch_size = config.ENGAGEMENT_FLUSH_BATCH_SIZE
    if request is not None and request.max_batch_size is not None:
        batch_size = request.max_batch_size

    result = queue.flush(batch_size)
    return {
        "lockAcquired": result.lock_acquired,
        "drained": result.drained,
        "applied": result.applied,
        "duplicates": result.duplicates,
        "discarded": result.discarded,
        "remaining": result.remaining,
    }
