"""Upload API: presigned direct-to-bucket upload, then confirmation that queues the transcode."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import Field

from models.video import VideoStatus
from routes.dependencies import CamelModel, get_video_service, to_http_error
from services.errors import VideoPipelineError
from services.videos import VideoService, validate_video_id

router = APIRouter(tags=["upload"])
logger = logging.getLogger(__name__)


class PresignRequest(CamelModel):
    file_name: str = Field(..., description="Original file name, e.g. beach-trip.mp4")
    file_type: str = Field(..., description="video/mp4, video/mov, video/avi or video/quicktime")
    file_size: int = Field(..., description="Size in bytes")


class PresignResponse(CamelModel):
    video_id: str
    upload_url: str
    key: str
    expires_in: int


class ConfirmResponse(CamelModel):
    video_id: str
    status: VideoStatus
    message: str


@router.post("/upload/presign", response_model=PresignResponse)
async def presign_upload(
    body: PresignRequest,
    service: VideoService = Depends(get_video_service),
) -> PresignResponse:
    """Create an UPLOADING video record and return a signed PUT URL for the raw file."""
    logger.info("[upload] POST /api/upload/presign file=%s size=%d", body.file_name, body.file_size)
    try:
        ticket = await service.request_upload(body.file_name, body.file_type, body.file_size)
    except VideoPipelineError as e:
        raise to_http_error(e) from e
    return PresignResponse(
        video_id=ticket.video_id,
        upload_url=ticket.upload_url,
        key=ticket.object_key,
        expires_in=ticket.expires_in,
    )


@router.post("/upload/confirm/{video_id}", response_model=ConfirmResponse)
async def confirm_upload(
    video_id: str,
    service: VideoService = Depends(get_video_service),
) -> ConfirmResponse:
    """Mark the upload complete and queue it for processing (UPLOADED -> PROCESSING)."""
    logger.info("[upload] POST /api/upload/confirm/%s", video_id)
    try:
        video = await service.confirm_upload(validate_video_id(video_id))
    except VideoPipelineError as e:
        raise to_http_error(e) from e
    return ConfirmResponse(
        video_id=video.id,
        status=video.status,
        message="Video processing started. This may take a few minutes.",
    )
