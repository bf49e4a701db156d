"""Request-scoped access to the services wired onto app.state, and domain error -> HTTP mapping."""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from services.config import Settings
from services.errors import (
    InvalidTransitionError,
    NotFoundError,
    QueueError,
    StorageError,
    ValidationError,
    VideoPipelineError,
    WebhookAuthError,
    WebhookValidationError,
)
from services.notifier import StatusNotifier
from services.videos import VideoService

logger = logging.getLogger(__name__)

_STATUS_CODES: list[tuple[type[VideoPipelineError], int]] = [
    (ValidationError, 400),
    (WebhookValidationError, 400),
    (WebhookAuthError, 401),
    (NotFoundError, 404),
    (InvalidTransitionError, 409),
    (StorageError, 502),
    (QueueError, 502),
]


class CamelModel(BaseModel):
    """Wire models use camelCase keys; Python code uses snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def get_video_service(request: Request) -> VideoService:
    return request.app.state.video_service


def get_notifier(request: Request) -> StatusNotifier:
    return request.app.state.notifier


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def to_http_error(exc: VideoPipelineError) -> HTTPException:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    logger.error("[api] Unhandled pipeline error: %s", exc)
    return HTTPException(status_code=500, detail="Internal server error")
