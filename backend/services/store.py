"""In-memory video status store. Keyed by video ID."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from models.video import Video, VideoStatus, ensure_transition
from services.errors import InvalidTransitionError, NotFoundError

logger = logging.getLogger(__name__)

_MUTABLE_FIELDS = {
    "duration",
    "thumbnail_url",
    "video_url",
    "manifest_url",
    "error_message",
}


class VideoStore:
    """
    Holds one Video per id.

    Status writes are compare-and-set against the stored status under the lock: the
    transition is validated against the record as it is at write time, so a webhook racing
    a delete or another status write cannot resurrect a record or move it backwards. All
    other field writes are last-writer-wins.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._videos: dict[str, Video] = {}

    def create(self, video: Video) -> Video:
        with self._lock:
            if video.id in self._videos:
                raise ValueError(f"Video {video.id} already exists")
            self._videos[video.id] = replace(video)
        logger.info("[store] Created video_id=%s status=%s", video.id, video.status.value)
        return replace(video)

    def get(self, video_id: str) -> Video | None:
        with self._lock:
            video = self._videos.get(video_id)
            return replace(video) if video else None

    def list(self) -> list[Video]:
        with self._lock:
            # reversed: equal timestamps stay newest first
            videos = [replace(v) for v in reversed(self._videos.values())]
        return sorted(videos, key=lambda v: v.created_at, reverse=True)

    def search(self, text: str) -> list[Video]:
        needle = text.lower()
        return [
            v
            for v in self.list()
            if needle in v.title.lower() or (v.description is not None and needle in v.description.lower())
        ]

    def list_by_status(self, status: VideoStatus) -> list[Video]:
        return [v for v in self.list() if v.status is status]

    def update_status(
        self,
        video_id: str,
        new_status: VideoStatus,
        *,
        expected_status: VideoStatus | None = None,
        **fields: Any,
    ) -> Video:
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown video fields: {sorted(unknown)}")
        if fields.get("manifest_url") is not None and new_status is not VideoStatus.READY:
            raise ValueError("manifest_url can only be set together with READY")
        with self._lock:
            video = self._videos.get(video_id)
            if video is None:
                raise NotFoundError(video_id)
            if expected_status is not None and video.status is not expected_status:
                raise InvalidTransitionError(video.status.value, new_status.value)
            ensure_transition(video.status, new_status)
            previous = video.status
            video.status = new_status
            for name, value in fields.items():
                if value is not None:
                    setattr(video, name, value)
            video.updated_at = datetime.now(timezone.utc)
            video.version += 1
            updated = replace(video)
        logger.info("[store] video_id=%s status %s -> %s", video_id, previous.value, new_status.value)
        return updated

    def update_fields(
        self,
        video_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
    ) -> Video:
        with self._lock:
            video = self._videos.get(video_id)
            if video is None:
                raise NotFoundError(video_id)
            if title is not None:
                video.title = title
            if description is not None:
                video.description = description
            video.updated_at = datetime.now(timezone.utc)
            video.version += 1
            return replace(video)

    def delete(self, video_id: str) -> Video | None:
        """Remove and return the record, or None if it did not exist."""
        with self._lock:
            video = self._videos.pop(video_id, None)
        if video is not None:
            logger.info("[store] Deleted video_id=%s", video_id)
        return video

    def stats(self) -> dict[str, Any]:
        videos = self.list()
        by_status = {status.value: 0 for status in VideoStatus}
        for v in videos:
            by_status[v.status.value] += 1
        return {
            "total": len(videos),
            "by_status": by_status,
            "total_size": sum(v.file_size for v in videos),
        }

    def clear(self) -> None:
        with self._lock:
            self._videos.clear()

    def __contains__(self, video_id: object) -> bool:
        with self._lock:
            return video_id in self._videos

    def __len__(self) -> int:
        with self._lock:
            return len(self._videos)
