"""Queue consumer: one worker task per job message, processed strictly one at a time."""

from __future__ import annotations

import logging
import random
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from models.job import BatchReport, JobMessage, LaunchResult, ProcessingTier
from services.errors import LaunchError, QueueError, ValidationError
from services.job_queue import QueueMessage
from services.launcher import WorkerLauncher

logger = logging.getLogger(__name__)

DEFAULT_SPOT_FRACTION = 0.7
DEFAULT_SPOT_MAX_INPUT_BYTES = 1024 * 1024 * 1024  # 1 GiB


class JobSource(Protocol):
    def receive(self, max_messages: int = 1, wait_seconds: int = 20) -> list[QueueMessage]: ...

    def ack(self, message: QueueMessage) -> None: ...


class JobDispatcher:
    """
    Parse queue messages and launch exactly one worker per message.

    - Tier: a spot_fraction share of jobs go to the cost-optimized tier, unless the input
      is larger than spot_max_input_bytes (always standard).
    - A cost-optimized launch that fails for lack of capacity is retried once, immediately,
      on the standard tier. Every other launch failure is reported as failed for that message.
    - Per-message failures never raise; they end up in the BatchReport so only those
      messages are redelivered.
    """

    def __init__(
        self,
        launcher: WorkerLauncher,
        *,
        spot_fraction: float = DEFAULT_SPOT_FRACTION,
        spot_max_input_bytes: int = DEFAULT_SPOT_MAX_INPUT_BYTES,
        rng: Callable[[], float] = random.random,
    ) -> None:
        if not 0.0 <= spot_fraction <= 1.0:
            raise ValueError("spot_fraction must be within [0, 1]")
        self._launcher = launcher
        self._spot_fraction = spot_fraction
        self._spot_max_input_bytes = spot_max_input_bytes
        self._rng = rng

    def choose_tier(self, job: JobMessage) -> ProcessingTier:
        if job.file_size is not None and job.file_size > self._spot_max_input_bytes:
            return ProcessingTier.STANDARD
        if self._rng() < self._spot_fraction:
            return ProcessingTier.COST_OPTIMIZED
        return ProcessingTier.STANDARD

    def _launch_with_fallback(self, job: JobMessage) -> tuple[str, ProcessingTier]:
        tier = self.choose_tier(job)
        try:
            return self._launcher.launch(job, tier), tier
        except LaunchError as exc:
            if tier is not ProcessingTier.COST_OPTIMIZED or not exc.retryable:
                raise
            logger.warning(
                "[dispatcher] Cost-optimized capacity unavailable for video_id=%s (%s); retrying on standard",
                job.video_id,
                exc,
            )
        tier = ProcessingTier.STANDARD
        return self._launcher.launch(job, tier), tier

    def dispatch(self, message_id: str, body: str) -> LaunchResult:
        logger.info("[dispatcher] Processing message_id=%s", message_id)
        try:
            job = JobMessage.from_json(body)
        except ValidationError as exc:
            logger.error("[dispatcher] Bad message message_id=%s: %s", message_id, exc)
            return LaunchResult(message_id=message_id, status="failed", error=str(exc))

        try:
            task_arn, tier = self._launch_with_fallback(job)
        except LaunchError as exc:
            logger.error(
                "[dispatcher] Launch failed message_id=%s video_id=%s: %s",
                message_id,
                job.video_id,
                exc,
            )
            return LaunchResult(
                message_id=message_id,
                status="failed",
                video_id=job.video_id,
                error=str(exc),
            )
        return LaunchResult(
            message_id=message_id,
            status="started",
            video_id=job.video_id,
            task_arn=task_arn,
            tier=tier,
        )

    def process_batch(self, messages: Iterable[tuple[str, str]]) -> BatchReport:
        """Process (message_id, body) pairs sequentially."""
        report = BatchReport()
        for message_id, body in messages:
            report.results.append(self.dispatch(message_id, body))
        logger.info(
            "[dispatcher] Batch done: total=%d started=%d failed=%d",
            len(report.results),
            len(report.started_ids),
            len(report.failed_ids),
        )
        return report

    def handle_sqs_event(self, event: dict[str, Any]) -> dict[str, list[dict[str, str]]]:
        """Lambda-style SQS trigger entry; returns a partial batch response."""
        records = event.get("Records") or []
        report = self.process_batch((r["messageId"], r.get("body", "")) for r in records)
        return report.batch_item_failures()

    def poll_once(self, queue: JobSource, *, max_messages: int = 1, wait_seconds: int = 20) -> BatchReport:
        """
        Pull up to max_messages and ack only the ones whose worker started.

        Failed messages stay on the queue; the redrive policy sends them to the
        dead-letter queue once their delivery budget is spent.
        """
        messages = queue.receive(max_messages=max_messages, wait_seconds=wait_seconds)
        by_id = {m.message_id: m for m in messages}
        report = self.process_batch((m.message_id, m.body) for m in messages)
        for message_id in report.started_ids:
            try:
                queue.ack(by_id[message_id])
            except QueueError as exc:
                # The worker is already running; a redelivery would launch a duplicate.
                logger.error("[dispatcher] Failed to ack message_id=%s: %s", message_id, exc)
        return report
