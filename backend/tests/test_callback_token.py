"""Tests for signed worker callback tokens."""

import time

import jwt
import pytest

from services.callback_token import create_callback_token, verify_callback_token
from services.errors import WebhookAuthError

SECRET = "test-secret-for-callbacks"


def test_token_payload_structure() -> None:
    token = create_callback_token(SECRET, "video-1", expiration_seconds=3600)
    decoded = jwt.decode(token, SECRET, algorithms=["HS256"])
    assert decoded["video_id"] == "video-1"
    now = int(time.time())
    assert now - 65 <= decoded["iat"] <= now - 55
    assert decoded["exp"] - now in range(3590, 3601)


def test_verify_accepts_matching_video() -> None:
    verify_callback_token(SECRET, create_callback_token(SECRET, "video-1"), "video-1")


@pytest.mark.parametrize(
    "token",
    [
        "",
        "not-a-jwt",
        create_callback_token("another-secret", "video-1"),
        create_callback_token(SECRET, "video-2"),
        create_callback_token(SECRET, "video-1", expiration_seconds=-120),
    ],
)
def test_verify_rejects(token) -> None:
    with pytest.raises(WebhookAuthError):
        verify_callback_token(SECRET, token, "video-1")
