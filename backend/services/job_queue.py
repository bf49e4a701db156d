"""
Job queue adapter.

SQS in production. Delivery is at-least-once: a message that is not acked within the
visibility window is redelivered, and after max_receive_count deliveries the redrive
policy moves it to the dead-letter queue. Bodies are opaque JSON to this layer.
"""

from __future__ import annotations

import itertools
import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from services.errors import QueueError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECEIVE_COUNT = 3
DEFAULT_VISIBILITY_TIMEOUT = 960  # 16 min, longer than one dispatch cycle


@dataclass
class QueueMessage:
    message_id: str
    receipt_handle: str
    body: str
    receive_count: int = 1

    def json(self) -> Any:
        return json.loads(self.body)


class SqsJobQueue:
    def __init__(self, queue_url: str, *, client: Any = None, region_name: str | None = None) -> None:
        if not queue_url:
            raise ValueError("queue_url is required")
        self.queue_url = queue_url
        if client is None:
            import boto3

            client = boto3.client("sqs", region_name=region_name)
        self._sqs = client

    def enqueue(self, message: dict[str, Any]) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        attributes: dict[str, Any] = {}
        video_id = message.get("videoId")
        if video_id:
            attributes["videoId"] = {"DataType": "String", "StringValue": str(video_id)}
        try:
            response = self._sqs.send_message(
                QueueUrl=self.queue_url,
                MessageBody=json.dumps(message),
                MessageAttributes=attributes,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("[queue] send_message failed video_id=%s: %s", video_id, exc)
            raise QueueError(f"Failed to queue video for processing: {exc}") from exc
        message_id = response["MessageId"]
        logger.info("[queue] Enqueued video_id=%s message_id=%s", video_id, message_id)
        return message_id

    def receive(self, max_messages: int = 1, wait_seconds: int = 20) -> list[QueueMessage]:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            response = self._sqs.receive_message(
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=max(1, min(max_messages, 10)),
                WaitTimeSeconds=wait_seconds,
                AttributeNames=["ApproximateReceiveCount"],
                MessageAttributeNames=["All"],
            )
        except (BotoCoreError, ClientError) as exc:
            raise QueueError(f"Failed to receive messages: {exc}") from exc
        return [
            QueueMessage(
                message_id=raw["MessageId"],
                receipt_handle=raw["ReceiptHandle"],
                body=raw.get("Body", ""),
                receive_count=int(raw.get("Attributes", {}).get("ApproximateReceiveCount", 1)),
            )
            for raw in response.get("Messages", [])
        ]

    def ack(self, message: QueueMessage) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._sqs.delete_message(QueueUrl=self.queue_url, ReceiptHandle=message.receipt_handle)
        except (BotoCoreError, ClientError) as exc:
            raise QueueError(f"Failed to delete message {message.message_id}: {exc}") from exc

    def change_visibility(self, message: QueueMessage, seconds: int) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._sqs.change_message_visibility(
                QueueUrl=self.queue_url,
                ReceiptHandle=message.receipt_handle,
                VisibilityTimeout=seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            raise QueueError(f"Failed to change visibility of {message.message_id}: {exc}") from exc


def create_queue_with_dead_letter(
    sqs: Any,
    queue_name: str,
    *,
    max_receive_count: int = DEFAULT_MAX_RECEIVE_COUNT,
    visibility_timeout: int = DEFAULT_VISIBILITY_TIMEOUT,
) -> tuple[str, str]:
    """
    Create (or look up) the job queue and its dead-letter queue.

    The retry bound lives in the redrive policy, not in application code.
    Returns (queue_url, dlq_url).
    """
    from botocore.exceptions import ClientError

    def _create(name: str, attributes: dict[str, str]) -> str:
        try:
            return sqs.create_queue(QueueName=name, Attributes=attributes)["QueueUrl"]
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") != "QueueAlreadyExists":
                raise
            logger.warning("[queue] %s already exists with different attributes; reusing it", name)
            return sqs.get_queue_url(QueueName=name)["QueueUrl"]

    dlq_name = f"{queue_name}-dlq"
    dlq_url = _create(dlq_name, {"MessageRetentionPeriod": "1209600"})
    dlq_arn = sqs.get_queue_attributes(QueueUrl=dlq_url, AttributeNames=["QueueArn"])["Attributes"]["QueueArn"]
    queue_url = _create(
        queue_name,
        {
            "VisibilityTimeout": str(visibility_timeout),
            "MessageRetentionPeriod": "1209600",
            "ReceiveMessageWaitTimeSeconds": "20",
            "RedrivePolicy": json.dumps(
                {"deadLetterTargetArn": dlq_arn, "maxReceiveCount": str(max_receive_count)}
            ),
        },
    )
    logger.info("[queue] Queue %s ready (dlq=%s, maxReceiveCount=%d)", queue_name, dlq_name, max_receive_count)
    return queue_url, dlq_url


@dataclass
class _Entry:
    message_id: str
    body: str
    receive_count: int = 0
    visible_at: float = 0.0
    receipt_handle: str | None = None


class InMemoryJobQueue:
    """
    Same delivery contract as SqsJobQueue, in process.

    Used for local runs without AWS and in tests. A received message becomes visible
    again after visibility_timeout unless acked; once it has been delivered
    max_receive_count times without an ack it moves to dead_letters.
    """

    def __init__(
        self,
        *,
        visibility_timeout: float = DEFAULT_VISIBILITY_TIMEOUT,
        max_receive_count: int = DEFAULT_MAX_RECEIVE_COUNT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.visibility_timeout = visibility_timeout
        self.max_receive_count = max_receive_count
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: list[_Entry] = []
        self._ids = itertools.count(1)
        self.dead_letters: list[QueueMessage] = []

    def enqueue(self, message: dict[str, Any]) -> str:
        with self._lock:
            message_id = f"msg-{next(self._ids)}"
            self._entries.append(_Entry(message_id=message_id, body=json.dumps(message)))
        logger.info("[queue] Enqueued video_id=%s message_id=%s (in-memory)", message.get("videoId"), message_id)
        return message_id

    def receive(self, max_messages: int = 1, wait_seconds: int = 0) -> list[QueueMessage]:
        now = self._clock()
        delivered: list[QueueMessage] = []
        with self._lock:
            for entry in list(self._entries):
                if len(delivered) >= max_messages:
                    break
                if entry.visible_at > now:
                    continue
                if entry.receive_count >= self.max_receive_count:
                    self._entries.remove(entry)
                    self.dead_letters.append(
                        QueueMessage(entry.message_id, "", entry.body, entry.receive_count)
                    )
                    logger.warning(
                        "[queue] message_id=%s moved to dead-letter queue after %d deliveries",
                        entry.message_id,
                        entry.receive_count,
                    )
                    continue
                entry.receive_count += 1
                entry.visible_at = now + self.visibility_timeout
                entry.receipt_handle = f"{entry.message_id}:{entry.receive_count}"
                delivered.append(
                    QueueMessage(entry.message_id, entry.receipt_handle, entry.body, entry.receive_count)
                )
        return delivered

    def ack(self, message: QueueMessage) -> None:
        with self._lock:
            for entry in self._entries:
                if entry.receipt_handle == message.receipt_handle:
                    self._entries.remove(entry)
                    return
        raise QueueError(f"Unknown or stale receipt handle for {message.message_id}")

    def change_visibility(self, message: QueueMessage, seconds: int) -> None:
        with self._lock:
            for entry in self._entries:
                if entry.receipt_handle == message.receipt_handle:
                    entry.visible_at = self._clock() + seconds
                    return
        raise QueueError(f"Unknown or stale receipt handle for {message.message_id}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
