from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from services.errors import InvalidTransitionError, WebhookValidationError


class VideoStatus(str, Enum):
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (VideoStatus.READY, VideoStatus.ERROR)

    @classmethod
    def parse(cls, value: str | None) -> VideoStatus:
        """Map a wire status string to a member, rejecting anything unknown."""
        if not isinstance(value, str) or not value.strip():
            raise WebhookValidationError("Missing status")
        normalized = value.strip().lower()
        normalized = _STATUS_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            raise WebhookValidationError(f"Unknown status {value!r}") from None


# Older workers report completion with these words.
_STATUS_ALIASES = {
    "completed": "ready",
    "failed": "error",
}

_FORWARD: dict[VideoStatus, VideoStatus] = {
    VideoStatus.UPLOADING: VideoStatus.UPLOADED,
    VideoStatus.UPLOADED: VideoStatus.PROCESSING,
    VideoStatus.PROCESSING: VideoStatus.READY,
}


def can_transition(current: VideoStatus, new: VideoStatus) -> bool:
    if current == new:
        return True
    if current.is_terminal:
        return False
    if new is VideoStatus.ERROR:
        return True
    return _FORWARD.get(current) is new


def ensure_transition(current: VideoStatus, new: VideoStatus) -> None:
    if not can_transition(current, new):
        raise InvalidTransitionError(current.value, new.value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Video:
    id: str                                  # uuid4, assigned before any queue message exists
    filename: str
    file_size: int
    title: str = ""
    description: str | None = None
    content_type: str | None = None
    duration: float | None = None
    status: VideoStatus = VideoStatus.UPLOADING
    thumbnail_url: str | None = None
    video_url: str | None = None
    manifest_url: str | None = None          # only set once READY
    error_message: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    version: int = 1

    def __post_init__(self) -> None:
        if not self.title:
            self.title = self.filename

    @property
    def raw_key(self) -> str:
        return f"videos/{self.id}/{self.filename}"

    @property
    def output_prefix(self) -> str:
        return f"{self.id}/"
