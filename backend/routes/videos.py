"""Video library REST API: listing, search, metadata edits, delete and DASH playback redirects."""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse

from models.video import Video, VideoStatus
from routes.dependencies import CamelModel, get_video_service, to_http_error
from services.errors import VideoPipelineError
from services.videos import VideoService, validate_video_id

router = APIRouter(tags=["videos"])
logger = logging.getLogger(__name__)


class VideoResponse(CamelModel):
    id: str
    title: str
    description: str | None = None
    filename: str
    file_size: int
    duration: float | None = None
    status: VideoStatus
    thumbnail_url: str | None = None
    video_url: str | None = None
    manifest_url: str | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_video(cls, video: Video) -> VideoResponse:
        return cls(
            id=video.id,
            title=video.title,
            description=video.description,
            filename=video.filename,
            file_size=video.file_size,
            duration=video.duration,
            status=video.status,
            thumbnail_url=video.thumbnail_url,
            video_url=video.video_url,
            manifest_url=video.manifest_url,
            error_message=video.error_message,
            created_at=video.created_at,
            updated_at=video.updated_at,
        )


class VideoStatusResponse(CamelModel):
    video_id: str
    status: VideoStatus
    manifest_url: str | None = None
    error_message: str | None = None
    updated_at: datetime


class VideoStatsResponse(CamelModel):
    total: int
    by_status: dict[str, int]
    total_size: int


class VideoUpdateRequest(CamelModel):
    title: str | None = None
    description: str | None = None


class VideoDeleteResponse(CamelModel):
    video_id: str
    deleted: bool


def _video_id(video_id: str) -> str:
    try:
        return validate_video_id(video_id)
    except VideoPipelineError as e:
        raise to_http_error(e) from e


@router.get("/videos", response_model=list[VideoResponse])
def list_videos(service: VideoService = Depends(get_video_service)) -> list[VideoResponse]:
    return [VideoResponse.from_video(v) for v in service.list_videos()]


@router.get("/videos/search", response_model=list[VideoResponse])
def search_videos(
    q: str = Query("", description="Case-insensitive text matched against title and description"),
    service: VideoService = Depends(get_video_service),
) -> list[VideoResponse]:
    try:
        videos = service.search_videos(q)
    except VideoPipelineError as e:
        raise to_http_error(e) from e
    return [VideoResponse.from_video(v) for v in videos]


@router.get("/videos/stats", response_model=VideoStatsResponse)
def video_stats(service: VideoService = Depends(get_video_service)) -> VideoStatsResponse:
    stats = service.stats()
    return VideoStatsResponse(
        total=stats["total"],
        by_status=stats["by_status"],
        total_size=stats["total_size"],
    )


@router.get("/videos/status/{status}", response_model=list[VideoResponse])
def videos_by_status(status: str, service: VideoService = Depends(get_video_service)) -> list[VideoResponse]:
    try:
        videos = service.videos_by_status(status)
    except VideoPipelineError as e:
        raise to_http_error(e) from e
    return [VideoResponse.from_video(v) for v in videos]


@router.get("/videos/{video_id}", response_model=VideoResponse)
def get_video(video_id: str, service: VideoService = Depends(get_video_service)) -> VideoResponse:
    try:
        video = service.get_video(_video_id(video_id))
    except VideoPipelineError as e:
        raise to_http_error(e) from e
    return VideoResponse.from_video(video)


@router.get("/videos/{video_id}/status", response_model=VideoStatusResponse)
def get_video_status(video_id: str, service: VideoService = Depends(get_video_service)) -> VideoStatusResponse:
    """Lightweight polling endpoint for clients without a live connection."""
    try:
        video = service.get_video(_video_id(video_id))
    except VideoPipelineError as e:
        raise to_http_error(e) from e
    return VideoStatusResponse(
        video_id=video.id,
        status=video.status,
        manifest_url=video.manifest_url,
        error_message=video.error_message,
        updated_at=video.updated_at,
    )


@router.put("/videos/{video_id}", response_model=VideoResponse)
def update_video(
    video_id: str,
    body: VideoUpdateRequest,
    service: VideoService = Depends(get_video_service),
) -> VideoResponse:
    if body.title is None and body.description is None:
        raise HTTPException(status_code=400, detail="Nothing to update: provide title and/or description")
    try:
        video = service.update_video(_video_id(video_id), title=body.title, description=body.description)
    except VideoPipelineError as e:
        raise to_http_error(e) from e
    logger.info("[videos] Updated metadata video_id=%s", video.id)
    return VideoResponse.from_video(video)


@router.delete("/videos/{video_id}", response_model=VideoDeleteResponse)
def delete_video(video_id: str, service: VideoService = Depends(get_video_service)) -> VideoDeleteResponse:
    video_id = _video_id(video_id)
    if not service.delete_video(video_id):
        raise HTTPException(status_code=404, detail=f"Video {video_id} not found")
    logger.info("[videos] Deleted video_id=%s (storage cleanup scheduled)", video_id)
    return VideoDeleteResponse(video_id=video_id, deleted=True)


@router.get("/videos/{video_id}/manifest")
@router.get("/videos/{video_id}/manifest.mpd")
async def get_manifest(video_id: str, service: VideoService = Depends(get_video_service)) -> RedirectResponse:
    """Redirect to a short-lived signed URL for the DASH manifest. 400 until the video is READY."""
    try:
        url = await service.manifest_url(_video_id(video_id))
    except VideoPipelineError as e:
        raise to_http_error(e) from e
    return RedirectResponse(url, status_code=307)


@router.get("/videos/{video_id}/segments/{name}")
async def get_segment(
    video_id: str,
    name: str,
    service: VideoService = Depends(get_video_service),
) -> RedirectResponse:
    try:
        url = await service.segment_url(_video_id(video_id), name)
    except VideoPipelineError as e:
        raise to_http_error(e) from e
    return RedirectResponse(url, status_code=307)
