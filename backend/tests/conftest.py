"""Shared fixtures: an in-memory stand-in for the google-cloud-storage client and a wired test app."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterator
from typing import Any

import pytest
from fastapi import FastAPI

from app.main import create_app
from models.video import Video, VideoStatus
from services.config import Settings
from services.gcs import StorageGateway
from services.job_queue import InMemoryJobQueue
from services.store import VideoStore
from services.video_hub import VideoRoomHub


class FakeBlob:
    def __init__(self, client: FakeGcsClient, bucket: str, name: str) -> None:
        self._client = client
        self.bucket_name = bucket
        self.name = name
        self.cache_control: str | None = None
        self.metadata: dict[str, str] | None = None

    def generate_signed_url(self, **kwargs: Any) -> str:
        if self._client.fail_signing:
            raise RuntimeError("signing credentials unavailable")
        self._client.signed.append((self.bucket_name, self.name, kwargs["method"]))
        return f"https://storage.test/{self.bucket_name}/{self.name}?X-Goog-Signature=sig"

    def upload_from_string(self, data: bytes, content_type: str | None = None) -> None:
        self._client.objects[(self.bucket_name, self.name)] = bytes(data)
        self._client.uploads[(self.bucket_name, self.name)] = {
            "content_type": content_type,
            "cache_control": self.cache_control,
            "metadata": self.metadata,
        }

    def upload_from_filename(self, path: str, content_type: str | None = None) -> None:
        with open(path, "rb") as f:
            self.upload_from_string(f.read(), content_type=content_type)

    def download_as_bytes(self) -> bytes:
        return self._client.objects[(self.bucket_name, self.name)]

    def download_to_filename(self, path: str) -> None:
        data = self.download_as_bytes()
        with open(path, "wb") as f:
            f.write(data)

    def delete(self) -> None:
        if (self.bucket_name, self.name) not in self._client.objects:
            raise FileNotFoundError(f"No such object: {self.bucket_name}/{self.name}")
        del self._client.objects[(self.bucket_name, self.name)]
        self._client.deleted.append((self.bucket_name, self.name))


class FakeBucket:
    def __init__(self, client: FakeGcsClient, name: str) -> None:
        self._client = client
        self.name = name

    def blob(self, name: str) -> FakeBlob:
        return FakeBlob(self._client, self.name, name)


class FakeGcsClient:
    """Just enough of google.cloud.storage.Client for StorageGateway."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.uploads: dict[tuple[str, str], dict[str, Any]] = {}
        self.signed: list[tuple[str, str, str]] = []
        self.deleted: list[tuple[str, str]] = []
        self.fail_signing = False

    def bucket(self, name: str) -> FakeBucket:
        return FakeBucket(self, name)

    def list_blobs(self, bucket: str, prefix: str = "") -> list[FakeBlob]:
        return [
            FakeBlob(self, b, name)
            for (b, name) in list(self.objects)
            if b == bucket and name.startswith(prefix)
        ]


RAW_BUCKET = "raw-bucket"
PROCESSED_BUCKET = "processed-bucket"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def gcs_client() -> FakeGcsClient:
    return FakeGcsClient()


@pytest.fixture
def raw_storage(gcs_client: FakeGcsClient) -> StorageGateway:
    return StorageGateway(RAW_BUCKET, client=gcs_client, expiration_seconds=900)


@pytest.fixture
def processed_storage(gcs_client: FakeGcsClient) -> StorageGateway:
    return StorageGateway(PROCESSED_BUCKET, client=gcs_client, expiration_seconds=900)


@pytest.fixture
def job_queue() -> InMemoryJobQueue:
    return InMemoryJobQueue()


@pytest.fixture
def settings() -> Settings:
    return Settings(raw_bucket=RAW_BUCKET, processed_bucket=PROCESSED_BUCKET)


@pytest.fixture
def api(
    settings: Settings,
    raw_storage: StorageGateway,
    processed_storage: StorageGateway,
    job_queue: InMemoryJobQueue,
) -> Iterator[FastAPI]:
    app = create_app(
        settings,
        store=VideoStore(),
        hub=VideoRoomHub(),
        raw_storage=raw_storage,
        processed_storage=processed_storage,
        queue=job_queue,
    )
    yield app
    app.state.video_service.cleanup.shutdown(wait=True)


def seed_video(store: VideoStore, status: VideoStatus = VideoStatus.UPLOADING, **kwargs: Any) -> Video:
    """Create a record and walk it forward to `status` through legal transitions."""
    video = store.create(
        Video(
            id=kwargs.pop("id", None) or str(uuid.uuid4()),
            filename=kwargs.pop("filename", "clip.mp4"),
            file_size=kwargs.pop("file_size", 1024),
            **kwargs,
        )
    )
    path = [VideoStatus.UPLOADED, VideoStatus.PROCESSING]
    if status is VideoStatus.ERROR:
        return store.update_status(video.id, VideoStatus.ERROR, error_message="Processing failed")
    for step in path:
        if video.status is status:
            break
        video = store.update_status(video.id, step)
    if status is VideoStatus.READY:
        video = store.update_status(video.id, VideoStatus.READY, manifest_url=f"{video.id}/manifest.mpd")
    return video



@pytest.fixture
def seed(api: FastAPI) -> Callable[..., Video]:
    def _seed(status: VideoStatus = VideoStatus.UPLOADING, **kwargs: Any) -> Video:
        return seed_video(api.state.store, status, **kwargs)

    return _seed
