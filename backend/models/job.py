from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from services.errors import ValidationError


class ProcessingTier(str, Enum):
    COST_OPTIMIZED = "cost_optimized"
    STANDARD = "standard"

    @property
    def capacity_provider(self) -> str:
        return "FARGATE_SPOT" if self is ProcessingTier.COST_OPTIMIZED else "FARGATE"

    def worker_flags(self) -> dict[str, str]:
        """Environment flags the transcode worker reads to pick its encoder preset."""
        if self is ProcessingTier.COST_OPTIMIZED:
            return {
                "INSTANCE_TYPE": "spot",
                "PROCESSING_PRIORITY": "low",
                "FFMPEG_PRESET": "fast",
            }
        return {
            "INSTANCE_TYPE": "on-demand",
            "PROCESSING_PRIORITY": "normal",
            "FFMPEG_PRESET": "medium",
        }


_REQUIRED_FIELDS = ("bucketName", "fileName", "videoId")


@dataclass
class JobMessage:
    bucket_name: str
    file_name: str                 # object key of the raw upload
    video_id: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    file_size: int | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "bucketName": self.bucket_name,
            "fileName": self.file_name,
            "videoId": self.video_id,
            "timestamp": self.timestamp,
        }
        if self.file_size is not None:
            body["fileSize"] = self.file_size
        return body

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, body: str | bytes) -> JobMessage:
        try:
            data = json.loads(body)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Failed to parse job message: {exc}") from exc
        if not isinstance(data, dict):
            raise ValidationError("Job message must be a JSON object")
        missing = [name for name in _REQUIRED_FIELDS if not data.get(name)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        size = data.get("fileSize")
        return cls(
            bucket_name=str(data["bucketName"]),
            file_name=str(data["fileName"]),
            video_id=str(data["videoId"]),
            timestamp=str(data.get("timestamp") or ""),
            file_size=int(size) if isinstance(size, (int, float)) else None,
        )


@dataclass
class LaunchResult:
    message_id: str
    status: str                    # started | failed
    video_id: str | None = None
    task_arn: str | None = None
    tier: ProcessingTier | None = None
    error: str | None = None

    @property
    def started(self) -> bool:
        return self.status == "started"


@dataclass
class BatchReport:
    results: list[LaunchResult] = field(default_factory=list)

    @property
    def failed_ids(self) -> list[str]:
        return [r.message_id for r in self.results if not r.started]

    @property
    def started_ids(self) -> list[str]:
        return [r.message_id for r in self.results if r.started]

    @property
    def has_failures(self) -> bool:
        return bool(self.failed_ids)

    def batch_item_failures(self) -> dict[str, list[dict[str, str]]]:
        """SQS partial batch response: only the failed messages are redelivered."""
        return {"batchItemFailures": [{"itemIdentifier": mid} for mid in self.failed_ids]}
