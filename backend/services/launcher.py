"""Launch one transcode worker task per job on ECS (Fargate Spot or on-demand Fargate)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from models.job import JobMessage, ProcessingTier
from services.callback_token import create_callback_token
from services.config import Settings
from services.errors import LaunchError

logger = logging.getLogger(__name__)

# ECS failure reasons / API error codes that mean "no capacity right now" rather than a bad request.
_CAPACITY_MARKERS = ("capacity", "resource:", "insufficient")
_RETRYABLE_CODES = frozenset({"ThrottlingException", "ServerException", "LimitExceededException"})


class WorkerLauncher(Protocol):
    def launch(self, job: JobMessage, tier: ProcessingTier) -> str: ...


def is_capacity_failure(reason: str) -> bool:
    lowered = reason.lower()
    return any(marker in lowered for marker in _CAPACITY_MARKERS)


def build_worker_environment(
    job: JobMessage,
    tier: ProcessingTier,
    *,
    output_bucket: str,
    webhook_url: str = "",
    webhook_secret: str = "",
    progress_webhook_url: str = "",
    region: str = "",
) -> list[dict[str, str]]:
    """Per-job parameters injected into the worker container as environment variables."""
    env = {
        "VIDEO_BUCKET": job.bucket_name,
        "VIDEO_FILE_NAME": job.file_name,
        "VIDEO_ID": job.video_id,
        "OUTPUT_BUCKET": output_bucket,
        "WEBHOOK_URL": webhook_url,
        "PROGRESS_WEBHOOK_URL": progress_webhook_url,
        "AWS_DEFAULT_REGION": region,
        **tier.worker_flags(),
    }
    if webhook_secret:
        env["WEBHOOK_TOKEN"] = create_callback_token(webhook_secret, job.video_id)
    return [{"name": name, "value": value} for name, value in env.items()]


class EcsWorkerLauncher:
    def __init__(self, settings: Settings, *, client: Any = None) -> None:
        self._settings = settings
        if client is None:
            import boto3

            client = boto3.client("ecs", region_name=settings.region)
        self._ecs = client

    def _run_task_request(self, job: JobMessage, tier: ProcessingTier) -> dict[str, Any]:
        s = self._settings
        return {
            "cluster": s.ecs_cluster,
            "taskDefinition": s.ecs_task_definition,
            "capacityProviderStrategy": [{"capacityProvider": tier.capacity_provider, "weight": 1}],
            "networkConfiguration": {
                "awsvpcConfiguration": {
                    "subnets": list(s.subnet_ids),
                    "securityGroups": list(s.security_group_ids),
                    "assignPublicIp": "ENABLED",
                },
            },
            "overrides": {
                "containerOverrides": [
                    {
                        "name": s.worker_container_name,
                        "environment": build_worker_environment(
                            job,
                            tier,
                            output_bucket=s.processed_bucket,
                            webhook_url=s.webhook_url,
                            webhook_secret=s.webhook_secret,
                            progress_webhook_url=s.progress_webhook_url,
                            region=s.region,
                        ),
                    }
                ],
            },
            "tags": [
                {"key": "VideoId", "value": job.video_id},
                {"key": "Purpose", "value": "VideoProcessing"},
                {"key": "Timestamp", "value": datetime.now(timezone.utc).isoformat()},
            ],
        }

    def launch(self, job: JobMessage, tier: ProcessingTier) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        logger.info(
            "[launcher] run_task video_id=%s tier=%s cluster=%s",
            job.video_id,
            tier.value,
            self._settings.ecs_cluster,
        )
        try:
            result = self._ecs.run_task(**self._run_task_request(job, tier))
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            message = exc.response.get("Error", {}).get("Message", str(exc))
            raise LaunchError(
                f"ECS run_task failed ({code}): {message}",
                retryable=code in _RETRYABLE_CODES or is_capacity_failure(message),
            ) from exc
        except BotoCoreError as exc:
            raise LaunchError(f"ECS run_task failed: {exc}") from exc

        failures = result.get("failures") or []
        if failures:
            reason = failures[0].get("reason", "")
            detail = failures[0].get("detail", "")
            raise LaunchError(
                f"ECS task failed: {reason} - {detail}".rstrip(" -"),
                retryable=is_capacity_failure(reason),
            )
        tasks = result.get("tasks") or []
        if not tasks:
            raise LaunchError("No ECS tasks were started")
        task_arn = tasks[0].get("taskArn")
        if not task_arn:
            raise LaunchError("ECS task started but no ARN returned")
        logger.info("[launcher] Task started video_id=%s task_arn=%s", job.video_id, task_arn)
        return task_arn
