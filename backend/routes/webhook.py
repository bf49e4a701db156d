"""Worker callbacks: completion / failure and encode progress."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from routes.dependencies import CamelModel, get_notifier, get_settings, to_http_error
from services.callback_token import verify_callback_token
from services.config import Settings
from services.errors import VideoPipelineError, WebhookValidationError
from services.notifier import StatusNotifier, WebhookEvent

router = APIRouter(tags=["webhook"])
logger = logging.getLogger(__name__)


class ProcessingCompletePayload(CamelModel):
    # Optional so a missing field surfaces as our own 400, not a 422.
    video_id: str | None = None
    status: str | None = None
    manifest_url: str | None = None
    error: str | None = None
    duration: float | None = None


class ProcessingProgressPayload(CamelModel):
    video_id: str
    progress: int


class WebhookAck(CamelModel):
    success: bool = True
    video_id: str
    status: str | None = None


def _authorize(request: Request, settings: Settings, video_id: str) -> None:
    """With WEBHOOK_SECRET set, callbacks must carry a bearer token issued for this video."""
    if not settings.webhook_secret:
        return
    header = request.headers.get("authorization", "")
    token = header[7:].strip() if header.lower().startswith("bearer ") else ""
    verify_callback_token(settings.webhook_secret, token, video_id)


@router.post("/webhook/processing-complete", response_model=WebhookAck)
@router.post("/webhook/video-processed", response_model=WebhookAck)
async def processing_complete(
    body: ProcessingCompletePayload,
    request: Request,
    notifier: StatusNotifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
) -> WebhookAck:
    logger.info("[webhook] Processing webhook video_id=%s status=%s", body.video_id, body.status)
    try:
        if not body.video_id:
            raise WebhookValidationError("Missing videoId in webhook payload")
        _authorize(request, settings, body.video_id)
        video = await notifier.on_webhook(
            WebhookEvent(
                video_id=body.video_id,
                status=body.status or "",
                manifest_url=body.manifest_url,
                error=body.error,
                duration=body.duration,
            )
        )
    except VideoPipelineError as e:
        logger.warning("[webhook] Rejected video_id=%s: %s", body.video_id, e)
        raise to_http_error(e) from e
    return WebhookAck(video_id=video.id, status=video.status.value)


@router.post("/webhook/processing-progress", response_model=WebhookAck)
async def processing_progress(
    body: ProcessingProgressPayload,
    request: Request,
    notifier: StatusNotifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
) -> WebhookAck:
    try:
        _authorize(request, settings, body.video_id)
        await notifier.on_progress(body.video_id, body.progress)
    except VideoPipelineError as e:
        raise to_http_error(e) from e
    return WebhookAck(video_id=body.video_id)


@router.get("/webhook/health")
def webhook_health() -> dict[str, str]:
    return {"status": "ok", "service": "webhook-handler"}
