"""Process configuration read from the environment (optionally via backend/.env)."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

DEFAULT_RAW_BUCKET = "visionsync-raw"
DEFAULT_PROCESSED_BUCKET = "visionsync-processed"
DEFAULT_REGION = "ap-southeast-1"
GIB = 1024 * 1024 * 1024

_LAUNCH_KEYS = {
    "ecs_cluster": "ECS_CLUSTER",
    "ecs_task_definition": "ECS_TASK_DEFINITION",
    "subnet_ids": "SUBNET_IDS",
    "security_group_ids": "SECURITY_GROUP_ID",
    "processed_bucket": "PROCESSED_BUCKET",
}


def _get(env: Mapping[str, str], key: str, default: str = "") -> str:
    return env.get(key, "").strip() or default


def _split(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    raw_bucket: str = DEFAULT_RAW_BUCKET
    processed_bucket: str = DEFAULT_PROCESSED_BUCKET
    signed_url_expiration_seconds: int = 3600
    max_upload_bytes: int = 5 * GIB
    region: str = DEFAULT_REGION
    queue_url: str = ""
    ecs_cluster: str = ""
    ecs_task_definition: str = ""
    subnet_ids: tuple[str, ...] = ()
    security_group_ids: tuple[str, ...] = ()
    worker_container_name: str = "video-processor"
    webhook_url: str = ""
    webhook_secret: str = ""
    progress_webhook_url: str = ""
    spot_fraction: float = 0.7
    spot_max_input_bytes: int = GIB
    cors_origins: tuple[str, ...] = field(default_factory=lambda: ("*",))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        return cls(
            raw_bucket=_get(env, "RAW_BUCKET", DEFAULT_RAW_BUCKET),
            processed_bucket=_get(env, "PROCESSED_BUCKET", DEFAULT_PROCESSED_BUCKET),
            signed_url_expiration_seconds=int(_get(env, "SIGNED_URL_EXPIRATION_SECONDS", "3600")),
            max_upload_bytes=int(_get(env, "MAX_UPLOAD_BYTES", str(5 * GIB))),
            region=_get(env, "AWS_REGION", DEFAULT_REGION),
            queue_url=_get(env, "SQS_QUEUE_URL"),
            ecs_cluster=_get(env, "ECS_CLUSTER"),
            ecs_task_definition=_get(env, "ECS_TASK_DEFINITION"),
            subnet_ids=_split(_get(env, "SUBNET_IDS")),
            security_group_ids=_split(_get(env, "SECURITY_GROUP_ID")),
            worker_container_name=_get(env, "WORKER_CONTAINER_NAME", "video-processor"),
            webhook_url=_get(env, "WEBHOOK_URL"),
            webhook_secret=_get(env, "WEBHOOK_SECRET"),
            progress_webhook_url=_get(env, "PROGRESS_WEBHOOK_URL"),
            spot_fraction=float(_get(env, "SPOT_FRACTION", "0.7")),
            spot_max_input_bytes=int(_get(env, "SPOT_MAX_INPUT_BYTES", str(GIB))),
            cors_origins=_split(_get(env, "FRONTEND_URL", "*")) or ("*",),
        )

    def missing_launch_settings(self) -> list[str]:
        """Env var names the dispatcher needs but that are unset."""
        return [env_name for attr, env_name in _LAUNCH_KEYS.items() if not getattr(self, attr)]
