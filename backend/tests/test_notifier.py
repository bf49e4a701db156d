from __future__ import annotations

import pytest

from models.video import Video, VideoStatus
from services.errors import InvalidTransitionError, NotFoundError, WebhookValidationError
from services.notifier import PROGRESS_EVENT, VIDEO_STATUS_EVENT, StatusNotifier, WebhookEvent
from services.store import VideoStore
from services.video_hub import VideoRoomHub


def _processing(store: VideoStore, video_id: str = "v1") -> Video:
    store.create(Video(id=video_id, filename="clip.mp4", file_size=10))
    store.update_status(video_id, VideoStatus.UPLOADED)
    return store.update_status(video_id, VideoStatus.PROCESSING)


@pytest.mark.asyncio
async def test_ready_webhook_updates_store_then_pushes_to_room() -> None:
    store, hub = VideoStore(), VideoRoomHub()
    notifier = StatusNotifier(store, hub)
    _processing(store)
    conn = await hub.connect()
    await hub.join(conn, "v1")

    video = await notifier.on_webhook(WebhookEvent("v1", "ready", manifest_url="v1/manifest.mpd", duration=8.0))

    assert video.status is VideoStatus.READY
    assert store.get("v1").manifest_url == "v1/manifest.mpd"
    frame = conn.queue.get_nowait()
    assert frame["event"] == VIDEO_STATUS_EVENT
    assert frame["data"]["videoId"] == "v1"
    assert frame["data"]["status"] == "ready"
    assert frame["data"]["manifestUrl"] == "v1/manifest.mpd"
    assert "timestamp" in frame["data"]


@pytest.mark.asyncio
async def test_other_statuses_are_applied_as_sent() -> None:
    store, hub = VideoStore(), VideoRoomHub()
    notifier = StatusNotifier(store, hub)
    store.create(Video(id="v1", filename="clip.mp4", file_size=10))
    store.update_status("v1", VideoStatus.UPLOADED)
    conn = await hub.connect()
    await hub.join(conn, "v1")

    video = await notifier.on_webhook(WebhookEvent("v1", "processing"))

    assert video.status is VideoStatus.PROCESSING
    frame = conn.queue.get_nowait()
    assert frame["event"] == VIDEO_STATUS_EVENT
    assert frame["data"]["status"] == "processing"


@pytest.mark.asyncio
async def test_error_webhook_defaults_message() -> None:
    store, hub = VideoStore(), VideoRoomHub()
    notifier = StatusNotifier(store, hub)
    _processing(store)

    video = await notifier.on_webhook(WebhookEvent("v1", "failed"))

    assert video.status is VideoStatus.ERROR
    assert video.error_message == "Processing failed"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "event, error",
    [
        (WebhookEvent("v1", "encoding"), WebhookValidationError),
        (WebhookEvent("v1", ""), WebhookValidationError),
        (WebhookEvent("", "ready", manifest_url="x"), WebhookValidationError),
        (WebhookEvent("v1", "ready"), WebhookValidationError),
        (WebhookEvent("v1", "uploading"), InvalidTransitionError),
        (WebhookEvent("missing", "error"), NotFoundError),
    ],
)
async def test_rejected_webhooks_change_nothing_and_push_nothing(event, error) -> None:
    store, hub = VideoStore(), VideoRoomHub()
    notifier = StatusNotifier(store, hub)
    before = _processing(store)
    conn = await hub.connect()
    await hub.join(conn, "v1")

    with pytest.raises(error):
        await notifier.on_webhook(event)

    assert store.get("v1") == before
    assert conn.queue.empty()


@pytest.mark.asyncio
async def test_progress_only_on_ten_percent_steps() -> None:
    hub = VideoRoomHub()
    notifier = StatusNotifier(VideoStore(), hub)
    conn = await hub.connect()
    await hub.join(conn, "v1")

    pushed = [await notifier.on_progress("v1", p) for p in (5, 10, 15, 20)]

    assert pushed == [False, True, False, True]
    frames = [conn.queue.get_nowait(), conn.queue.get_nowait()]
    assert [f["event"] for f in frames] == [PROGRESS_EVENT, PROGRESS_EVENT]
    assert [f["data"]["progress"] for f in frames] == [10, 20]
    with pytest.raises(WebhookValidationError):
        await notifier.on_progress("v1", 101)
