"""Signed callback tokens (JWT) that let a transcode worker report on exactly one video."""

import time

import jwt

from services.errors import WebhookAuthError

CALLBACK_TOKEN_TTL_SECONDS = 6 * 3600
_ALGORITHM = "HS256"


def create_callback_token(
    secret: str,
    video_id: str,
    expiration_seconds: int = CALLBACK_TOKEN_TTL_SECONDS,
) -> str:
    """Create a worker callback JWT scoped to video_id.
    Sets iat 60s in the past so a worker whose clock runs slightly behind the
    API server is not rejected.
    """
    now = int(time.time())
    payload = {
        "video_id": video_id,
        "iat": now - 60,
        "exp": now + expiration_seconds,
    }
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def verify_callback_token(secret: str, token: str, video_id: str) -> None:
    """Raise WebhookAuthError unless token is valid and was issued for video_id."""
    if not token:
        raise WebhookAuthError("Missing callback token")
    try:
        claims = jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except jwt.PyJWTError as exc:
        raise WebhookAuthError(f"Invalid callback token: {exc}") from exc
    if claims.get("video_id") != video_id:
        raise WebhookAuthError("Callback token was issued for another video")
