"""
Moderation API routes
"""
from fastapi import APIRouter, Depends, Request, Header, status
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
import logging

from .auth import CurrentUser, get_current_user
from .dependencies import get_moderation_dispatcher
from .exceptions import NotFound
from .services.moderation_service import ModerationDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/moderation", tags=["moderation"])


class ModerationJobRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    post_id: str = Field(..., alias="postId")
    media_url: str = Field(..., alias="mediaUrl")


@router.post("/jobs", status_code=status.HTTP_202_ACCEPTED)
async def submit_for_moderation(
    request: ModerationJobRequest,
    current_user: CurrentUser = Depends(get_current_user),
    dispatcher: ModerationDispatcher = Depends(get_moderation_dispatcher),
):
    """Queue a post's media for review; the post stays hidden until a verdict arrives"""
    job_id = dispatcher.enqueue(request.post_id, request.media_url, current_user.id)
    return {"jobId": job_id, "status": "queued"}


@router.get("/jobs/{job_id}")
async def get_moderation_job(
    job_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    dispatcher: ModerationDispatcher = Depends(get_moderation_dispatcher),
):
    job = dispatcher.get_job(job_id)
    if job.submitter_id != current_user.id:
        raise NotFound(f"Moderation job {job_id} not found", {"job_id": job_id})
    return job.to_dict()


@router.post("/callback")
async def moderation_callback(
    request: Request,
    x_signature: Optional[str] = Header(None, alias="X-Signature"),
    dispatcher: ModerationDispatcher = Depends(get_moderation_dispatcher),
):
    """
    Verdict callback from the moderation service

    The body must be signed with the shared callback secret (HMAC-SHA256 hex).
    A second verdict for a resolved job is a 409.
    """
    body = await request.body()
    job = dispatcher.handle_callback(body, x_signature)
    logger.info(f"Moderation job {job.id} resolved as {job.status}")
    return {"jobId": job.id, "status": job.status}
