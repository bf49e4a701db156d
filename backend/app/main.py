"""
VisionSync API server.

Run from backend/:  uvicorn app.main:app --reload
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from routes.upload import router as upload_router
from routes.video_ws import router as video_ws_router
from routes.videos import router as videos_router
from routes.webhook import router as webhook_router
from services.config import Settings
from services.gcs import StorageGateway
from services.job_queue import InMemoryJobQueue, SqsJobQueue
from services.notifier import StatusNotifier
from services.store import VideoStore
from services.video_hub import VideoRoomHub
from services.videos import JobQueue, ObjectCleanup, VideoService

load_dotenv(os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env"))
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _default_queue(settings: Settings) -> JobQueue:
    if settings.queue_url:
        return SqsJobQueue(settings.queue_url, region_name=settings.region)
    logger.warning("[app] SQS_QUEUE_URL not set; jobs go to an in-memory queue nobody consumes")
    return InMemoryJobQueue()


def create_app(
    settings: Settings | None = None,
    *,
    store: VideoStore | None = None,
    hub: VideoRoomHub | None = None,
    raw_storage: StorageGateway | Any = None,
    processed_storage: StorageGateway | Any = None,
    queue: JobQueue | None = None,
) -> FastAPI:
    """Wire the services once per app; routes reach them through app.state."""
    settings = settings or Settings.from_env()
    store = store if store is not None else VideoStore()
    hub = hub if hub is not None else VideoRoomHub()
    notifier = StatusNotifier(store, hub)
    video_service = VideoService(
        store,
        raw_storage or StorageGateway(settings.raw_bucket, expiration_seconds=settings.signed_url_expiration_seconds),
        processed_storage
        or StorageGateway(settings.processed_bucket, expiration_seconds=settings.signed_url_expiration_seconds),
        queue if queue is not None else _default_queue(settings),
        notifier,
        cleanup=ObjectCleanup(),
        max_upload_bytes=settings.max_upload_bytes,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        video_service.cleanup.shutdown(wait=False)

    app = FastAPI(title="VisionSync API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.store = store
    app.state.video_hub = hub
    app.state.notifier = notifier
    app.state.video_service = video_service

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(upload_router, prefix="/api")
    app.include_router(videos_router, prefix="/api")
    app.include_router(webhook_router, prefix="/api")
    app.include_router(video_ws_router, prefix="/api")
    return app


app = create_app()
