from __future__ import annotations

import json

import pytest

from models.job import JobMessage, ProcessingTier
from services.dispatcher import JobDispatcher
from services.errors import LaunchError
from services.job_queue import InMemoryJobQueue


class FakeLauncher:
    """Launches succeed unless the video id (or (video id, tier)) is listed in failures."""

    def __init__(self, failures: dict | None = None) -> None:
        self.failures = failures or {}
        self.calls: list[tuple[str, ProcessingTier]] = []

    def launch(self, job: JobMessage, tier: ProcessingTier) -> str:
        self.calls.append((job.video_id, tier))
        error = self.failures.get((job.video_id, tier)) or self.failures.get(job.video_id)
        if error is not None:
            raise error
        return f"arn:aws:ecs:task/{job.video_id}"


def _body(video_id: str, file_size: int | None = None) -> str:
    return JobMessage(
        bucket_name="raw",
        file_name=f"videos/{video_id}/a.mp4",
        video_id=video_id,
        file_size=file_size,
    ).to_json()


def _always(value: float):
    return lambda: value


def test_batch_reports_exactly_the_failed_messages() -> None:
    launcher = FakeLauncher({"v2": LaunchError("Invalid task definition")})
    dispatcher = JobDispatcher(launcher, rng=_always(0.9))

    report = dispatcher.process_batch([("m1", _body("v1")), ("m2", _body("v2")), ("m3", _body("v3"))])

    assert report.started_ids == ["m1", "m3"]
    assert report.failed_ids == ["m2"]
    assert [video_id for video_id, _ in launcher.calls] == ["v1", "v2", "v3"]


def test_handle_sqs_event_returns_partial_batch_response() -> None:
    launcher = FakeLauncher({"v1": LaunchError("boom")})
    dispatcher = JobDispatcher(launcher, rng=_always(0.9))
    event = {
        "Records": [
            {"messageId": "a", "body": _body("v1")},
            {"messageId": "b", "body": "{not json"},
            {"messageId": "c", "body": _body("v3")},
        ]
    }
    assert dispatcher.handle_sqs_event(event) == {
        "batchItemFailures": [{"itemIdentifier": "a"}, {"itemIdentifier": "b"}]
    }


def test_malformed_message_fails_without_launch() -> None:
    launcher = FakeLauncher()
    result = JobDispatcher(launcher).dispatch("m1", json.dumps({"videoId": "v1"}))
    assert not result.started
    assert "Missing required fields" in result.error
    assert launcher.calls == []


@pytest.mark.parametrize(
    "roll, file_size, expected",
    [
        (0.1, None, ProcessingTier.COST_OPTIMIZED),
        (0.69, 10, ProcessingTier.COST_OPTIMIZED),
        (0.7, 10, ProcessingTier.STANDARD),
        (0.1, 2 * 1024 * 1024 * 1024, ProcessingTier.STANDARD),
    ],
)
def test_choose_tier(roll, file_size, expected) -> None:
    dispatcher = JobDispatcher(FakeLauncher(), rng=_always(roll))
    job = JobMessage.from_json(_body("v1", file_size))
    assert dispatcher.choose_tier(job) is expected


def test_capacity_failure_on_spot_falls_back_to_standard_once() -> None:
    launcher = FakeLauncher(
        {("v1", ProcessingTier.COST_OPTIMIZED): LaunchError("Capacity is unavailable", retryable=True)}
    )
    result = JobDispatcher(launcher, rng=_always(0.0)).dispatch("m1", _body("v1"))

    assert result.started
    assert result.tier is ProcessingTier.STANDARD
    assert launcher.calls == [("v1", ProcessingTier.COST_OPTIMIZED), ("v1", ProcessingTier.STANDARD)]


def test_non_retryable_failure_is_not_retried() -> None:
    launcher = FakeLauncher({"v1": LaunchError("AccessDenied")})
    result = JobDispatcher(launcher, rng=_always(0.0)).dispatch("m1", _body("v1"))

    assert not result.started
    assert launcher.calls == [("v1", ProcessingTier.COST_OPTIMIZED)]


def test_failed_fallback_is_reported_failed() -> None:
    launcher = FakeLauncher({"v1": LaunchError("Capacity is unavailable", retryable=True)})
    result = JobDispatcher(launcher, rng=_always(0.0)).dispatch("m1", _body("v1"))

    assert not result.started
    assert len(launcher.calls) == 2


def test_spot_fraction_must_be_a_probability() -> None:
    with pytest.raises(ValueError):
        JobDispatcher(FakeLauncher(), spot_fraction=1.5)


def test_poll_once_acks_only_started_messages() -> None:
    queue = InMemoryJobQueue(visibility_timeout=0)
    queue.enqueue(json.loads(_body("v1")))
    queue.enqueue(json.loads(_body("v2")))
    dispatcher = JobDispatcher(FakeLauncher({"v2": LaunchError("boom")}), rng=_always(0.9))

    report = dispatcher.poll_once(queue, max_messages=10, wait_seconds=0)

    assert len(report.started_ids) == 1
    assert len(report.failed_ids) == 1
    [remaining] = queue.receive()
    assert json.loads(remaining.body)["videoId"] == "v2"


def test_poll_once_dead_letters_a_message_that_keeps_failing() -> None:
    queue = InMemoryJobQueue(visibility_timeout=0, max_receive_count=3)
    queue.enqueue(json.loads(_body("v1")))
    dispatcher = JobDispatcher(FakeLauncher({"v1": LaunchError("boom")}), rng=_always(0.9))

    for _ in range(4):
        dispatcher.poll_once(queue, wait_seconds=0)

    assert len(queue) == 0
    assert len(queue.dead_letters) == 1
