"""Upload / playback orchestration: status store + storage gateway + job queue + notifier."""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from collections import deque
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Protocol

from models.job import JobMessage
from models.video import Video, VideoStatus
from services.errors import NotFoundError, QueueError, ValidationError
from services.gcs import StorageGateway
from services.notifier import StatusNotifier
from services.store import VideoStore

logger = logging.getLogger(__name__)

MAX_FILENAME_LENGTH = 255
MAX_TITLE_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 1000
_CONTENT_TYPE_RE = re.compile(r"^video/(mp4|mov|avi|quicktime)$")
_SEGMENT_RE = re.compile(r"^[a-zA-Z0-9\-_.]+\.(m4s|mpd)$")


class JobQueue(Protocol):
    def enqueue(self, message: dict[str, Any]) -> str: ...


@dataclass
class UploadTicket:
    video_id: str
    upload_url: str
    object_key: str
    expires_in: int


class ObjectCleanup:
    """
    Best-effort background deletion of storage objects.

    Callers never wait on it and its outcome never changes theirs. A failure is logged and
    kept in `failures`; the object is then orphaned.
    """

    def __init__(self, *, max_workers: int = 2, max_failures: int = 100) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="object-cleanup")
        self.failures: deque[tuple[str, BaseException]] = deque(maxlen=max_failures)

    def schedule(self, description: str, fn: Callable[..., Any], *args: Any) -> Future:
        future = self._executor.submit(fn, *args)

        def _done(f: Future) -> None:
            exc = f.exception()
            if exc is not None:
                self.failures.append((description, exc))
                logger.error("[cleanup] %s failed: %s", description, exc)
            else:
                logger.info("[cleanup] %s done", description)

        future.add_done_callback(_done)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def validate_video_id(video_id: str) -> str:
    try:
        return str(uuid.UUID(video_id))
    except (TypeError, ValueError):
        raise ValidationError("Video ID must be a valid UUID") from None


def _parse_status(value: str) -> VideoStatus:
    try:
        return VideoStatus(value.lower())
    except ValueError:
        raise ValidationError("Invalid status") from None


class VideoService:
    def __init__(
        self,
        store: VideoStore,
        raw_storage: StorageGateway,
        processed_storage: StorageGateway,
        queue: JobQueue,
        notifier: StatusNotifier,
        *,
        cleanup: ObjectCleanup | None = None,
        max_upload_bytes: int = 5 * 1024 * 1024 * 1024,
    ) -> None:
        self._store = store
        self._raw = raw_storage
        self._processed = processed_storage
        self._queue = queue
        self._notifier = notifier
        self.cleanup = cleanup or ObjectCleanup()
        self._max_upload_bytes = max_upload_bytes

    def _validate_upload(self, filename: str, content_type: str, size: int) -> None:
        if not filename or len(filename) > MAX_FILENAME_LENGTH:
            raise ValidationError(f"File name must be between 1 and {MAX_FILENAME_LENGTH} characters")
        if "/" in filename or "\\" in filename:
            raise ValidationError("File name must not contain path separators")
        if not _CONTENT_TYPE_RE.match(content_type or ""):
            raise ValidationError("File type must be a valid video format (mp4, mov, avi)")
        if size < 1 or size > self._max_upload_bytes:
            raise ValidationError(f"File size must be between 1 byte and {self._max_upload_bytes} bytes")

    def _require(self, video_id: str) -> Video:
        video = self._store.get(video_id)
        if video is None:
            raise NotFoundError(video_id)
        return video

    async def request_upload(self, filename: str, content_type: str, size: int) -> UploadTicket:
        """
        Issue a signed upload URL and create the UPLOADING record.

        The URL is signed first: if signing fails nothing is stored, and the record is the
        last step, so no handle is ever returned without a matching record.
        """
        self._validate_upload(filename, content_type, size)
        video = Video(
            id=str(uuid.uuid4()),
            filename=filename,
            file_size=size,
            content_type=content_type,
        )
        upload_url = await asyncio.to_thread(self._raw.issue_upload_handle, video.raw_key, content_type)
        video = self._store.create(video)
        logger.info("[upload] Upload handle issued video_id=%s key=%s", video.id, video.raw_key)
        await self._notifier.publish_status(
            video,
            filename=video.filename,
            fileSize=video.file_size,
            message="Video upload started",
        )
        return UploadTicket(
            video_id=video.id,
            upload_url=upload_url,
            object_key=video.raw_key,
            expires_in=self._raw.expiration_seconds,
        )

    async def confirm_upload(self, video_id: str) -> Video:
        """
        UPLOADING -> UPLOADED -> enqueue -> PROCESSING.

        An enqueue failure moves the record to ERROR and re-raises the QueueError.
        """
        self._require(video_id)
        video = self._store.update_status(video_id, VideoStatus.UPLOADED, expected_status=VideoStatus.UPLOADING)
        await self._notifier.publish_status(video, message="Upload complete! Processing will start shortly.")

        job = JobMessage(
            bucket_name=self._raw.bucket_name,
            file_name=video.raw_key,
            video_id=video.id,
            file_size=video.file_size,
        )
        try:
            await asyncio.to_thread(self._queue.enqueue, job.to_dict())
        except QueueError as exc:
            logger.error("[upload] Failed to queue video_id=%s: %s", video_id, exc)
            failed = self._store.update_status(video_id, VideoStatus.ERROR, error_message="Failed to start processing")
            await self._notifier.publish_status(
                failed,
                error="Failed to start processing",
                message="Failed to queue video for processing. Please upload again.",
            )
            raise

        video = self._store.update_status(video_id, VideoStatus.PROCESSING, expected_status=VideoStatus.UPLOADED)
        await self._notifier.publish_status(video, message="Video processing started. This may take a few minutes.")
        logger.info("[upload] Queued video_id=%s for processing", video_id)
        return video

    def list_videos(self) -> list[Video]:
        return self._store.list()

    def get_video(self, video_id: str) -> Video:
        return self._require(video_id)

    def search_videos(self, query: str) -> list[Video]:
        if not query or not query.strip():
            raise ValidationError("Search query is required")
        return self._store.search(query.strip())

    def videos_by_status(self, status: str) -> list[Video]:
        return self._store.list_by_status(_parse_status(status))

    def stats(self) -> dict[str, Any]:
        return self._store.stats()

    def update_video(self, video_id: str, *, title: str | None = None, description: str | None = None) -> Video:
        if title is not None and not 1 <= len(title) <= MAX_TITLE_LENGTH:
            raise ValidationError(f"Title must be between 1 and {MAX_TITLE_LENGTH} characters")
        if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(f"Description must be less than {MAX_DESCRIPTION_LENGTH} characters")
        return self._store.update_fields(video_id, title=title, description=description)

    def delete_video(self, video_id: str) -> bool:
        """Delete the record now; storage objects are removed in the background (may be orphaned)."""
        video = self._store.delete(video_id)
        if video is None:
            return False
        self.cleanup.schedule(f"delete raw object {video.raw_key}", self._raw.delete, video.raw_key)
        self.cleanup.schedule(
            f"delete processed outputs {video.output_prefix}",
            self._processed.delete_prefix,
            video.output_prefix,
        )
        return True

    def _require_ready(self, video_id: str) -> Video:
        video = self._require(video_id)
        if video.status is not VideoStatus.READY:
            raise ValidationError("Video is not ready for streaming")
        return video

    async def manifest_url(self, video_id: str) -> str:
        video = self._require_ready(video_id)
        key = video.manifest_url or f"{video.output_prefix}manifest.mpd"
        return await asyncio.to_thread(self._processed.issue_download_handle, key)

    async def segment_url(self, video_id: str, name: str) -> str:
        if not _SEGMENT_RE.match(name):
            raise ValidationError("Segment must be a valid DASH segment file")
        video = self._require_ready(video_id)
        return await asyncio.to_thread(self._processed.issue_download_handle, f"{video.output_prefix}{name}")
