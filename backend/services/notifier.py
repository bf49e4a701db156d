"""Apply worker callbacks to the status store and push the result to live subscribers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from models.video import Video, VideoStatus
from services.errors import WebhookValidationError
from services.store import VideoStore
from services.video_hub import VideoRoomHub

logger = logging.getLogger(__name__)

VIDEO_STATUS_EVENT = "video-status"
PROGRESS_EVENT = "processing-progress"
PROGRESS_STEP = 10


@dataclass
class WebhookEvent:
    video_id: str
    status: str
    manifest_url: str | None = None
    error: str | None = None
    duration: float | None = None


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class StatusNotifier:
    def __init__(self, store: VideoStore, hub: VideoRoomHub) -> None:
        self._store = store
        self._hub = hub

    async def publish_status(self, video: Video, **extra: Any) -> int:
        payload: dict[str, Any] = {
            "videoId": video.id,
            "status": video.status.value,
            "timestamp": _timestamp(),
        }
        payload.update({k: v for k, v in extra.items() if v is not None})
        return await self._hub.publish(video.id, VIDEO_STATUS_EVENT, payload)

    async def on_webhook(self, event: WebhookEvent) -> Video:
        """
        Store the worker-reported status, then broadcast it.

        Raises WebhookValidationError for an unknown status or a READY without a manifest,
        NotFoundError for an unknown video and InvalidTransitionError for a move the
        lifecycle does not allow. The record is untouched in every error case.
        """
        if not event.video_id:
            raise WebhookValidationError("Missing videoId in webhook payload")
        status = VideoStatus.parse(event.status)

        if status is VideoStatus.READY:
            if not event.manifest_url:
                raise WebhookValidationError("A ready webhook must carry manifestUrl")
            video = self._store.update_status(
                event.video_id,
                VideoStatus.READY,
                manifest_url=event.manifest_url,
                duration=event.duration,
            )
            logger.info("[notifier] video_id=%s marked READY manifest=%s", video.id, video.manifest_url)
            extra: dict[str, Any] = {"manifestUrl": video.manifest_url, "message": "Video is ready to stream"}
        elif status is VideoStatus.ERROR:
            message = event.error or "Processing failed"
            video = self._store.update_status(event.video_id, VideoStatus.ERROR, error_message=message)
            logger.info("[notifier] video_id=%s processing failed: %s", video.id, message)
            extra = {"error": message}
        else:
            video = self._store.update_status(event.video_id, status, duration=event.duration)
            extra = {}

        delivered = await self.publish_status(video, **extra)
        logger.info(
            "[notifier] Emitted %s for %s: %s (%d subscribers)",
            VIDEO_STATUS_EVENT,
            video.id,
            video.status.value,
            delivered,
        )
        return video

    async def on_progress(self, video_id: str, progress: int) -> bool:
        """Forward encode progress; only whole PROGRESS_STEP increments are pushed."""
        if not 0 <= progress <= 100:
            raise WebhookValidationError("progress must be within [0, 100]")
        if progress % PROGRESS_STEP != 0:
            return False
        await self._hub.publish(
            video_id,
            PROGRESS_EVENT,
            {"videoId": video_id, "progress": progress, "timestamp": _timestamp()},
        )
        return True
