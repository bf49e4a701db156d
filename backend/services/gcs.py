"""GCS storage gateway: signed upload/download handles and object I/O for raw and processed videos."""

from __future__ import annotations

import logging
import mimetypes
import os
from datetime import datetime, timedelta, timezone
from typing import Any

from services.errors import StorageError

logger = logging.getLogger(__name__)

DEFAULT_EXPIRATION_SECONDS = 3600  # 1 hour

MANIFEST_CACHE_CONTROL = "public, max-age=300"
SEGMENT_CACHE_CONTROL = "public, max-age=31536000, immutable"
DEFAULT_CACHE_CONTROL = "no-cache"

_CONTENT_TYPES = {
    ".mpd": "application/dash+xml",
    ".m4s": "video/mp4",
}


def cache_control_for(key: str) -> str:
    """Manifests change on re-encode and stay short-lived; segments never change once written."""
    if key.endswith(".mpd"):
        return MANIFEST_CACHE_CONTROL
    if key.endswith(".m4s"):
        return SEGMENT_CACHE_CONTROL
    return DEFAULT_CACHE_CONTROL


def content_type_for(key: str) -> str:
    _, ext = os.path.splitext(key)
    return _CONTENT_TYPES.get(ext) or mimetypes.guess_type(key)[0] or "application/octet-stream"


def _default_client() -> Any:
    from google.cloud import storage

    return storage.Client()


def generate_signed_url(
    blob_name: str,
    *,
    bucket_name: str,
    expiration_seconds: int = DEFAULT_EXPIRATION_SECONDS,
    method: str = "GET",
    content_type: str | None = None,
    client: Any = None,
) -> str:
    """
    Generate a V4 signed URL for a GCS object.

    Uses default credentials (GOOGLE_APPLICATION_CREDENTIALS or ADC) unless a client is given.
    Expiry is enforced by GCS; nothing is tracked locally.

    :param blob_name: Object path in bucket, e.g. "videos/{id}/clip.mp4" or "{id}/manifest.mpd"
    :param bucket_name: GCS bucket
    :param expiration_seconds: URL validity in seconds
    :param method: "PUT" for uploads, "GET" for downloads
    :param content_type: Content-Type the uploader must send (PUT only)
    :return: Signed URL string
    """
    client = client or _default_client()
    blob = client.bucket(bucket_name).blob(blob_name)
    expiration = datetime.now(timezone.utc) + timedelta(seconds=expiration_seconds)
    kwargs: dict[str, Any] = {
        "expiration": expiration,
        "method": method,
        "version": "v4",
    }
    if content_type:
        kwargs["content_type"] = content_type
    return blob.generate_signed_url(**kwargs)


class StorageGateway:
    """
    One bucket's worth of object operations.

    Every failure of the underlying client is raised as StorageError(operation, key);
    the gateway never retries.
    """

    def __init__(
        self,
        bucket_name: str,
        *,
        client: Any = None,
        expiration_seconds: int = DEFAULT_EXPIRATION_SECONDS,
    ) -> None:
        self.bucket_name = bucket_name
        self.expiration_seconds = expiration_seconds
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = _default_client()
        return self._client

    def _blob(self, key: str) -> Any:
        return self.client.bucket(self.bucket_name).blob(key)

    def issue_upload_handle(self, key: str, content_type: str) -> str:
        try:
            return generate_signed_url(
                key,
                bucket_name=self.bucket_name,
                expiration_seconds=self.expiration_seconds,
                method="PUT",
                content_type=content_type,
                client=self.client,
            )
        except Exception as exc:  # noqa: BLE001
            raise StorageError("sign_upload", key, str(exc)) from exc

    def issue_download_handle(self, key: str) -> str:
        try:
            return generate_signed_url(
                key,
                bucket_name=self.bucket_name,
                expiration_seconds=self.expiration_seconds,
                method="GET",
                client=self.client,
            )
        except Exception as exc:  # noqa: BLE001
            raise StorageError("sign_download", key, str(exc)) from exc

    def _prepare(self, key: str, metadata: dict[str, str] | None) -> Any:
        blob = self._blob(key)
        blob.cache_control = cache_control_for(key)
        if metadata:
            blob.metadata = dict(metadata)
        return blob

    def put(self, key: str, data: bytes, metadata: dict[str, str] | None = None) -> None:
        try:
            blob = self._prepare(key, metadata)
            blob.upload_from_string(data, content_type=content_type_for(key))
        except Exception as exc:  # noqa: BLE001
            raise StorageError("put", key, str(exc)) from exc
        logger.debug("[storage] put gs://%s/%s (%d bytes)", self.bucket_name, key, len(data))

    def upload_file(self, key: str, path: str, metadata: dict[str, str] | None = None) -> int:
        """Upload a local file under the same cache policy as put(); returns its size."""
        try:
            blob = self._prepare(key, metadata)
            blob.upload_from_filename(path, content_type=content_type_for(key))
            size = os.path.getsize(path)
        except Exception as exc:  # noqa: BLE001
            raise StorageError("put", key, str(exc)) from exc
        logger.debug("[storage] uploaded %s -> gs://%s/%s (%d bytes)", path, self.bucket_name, key, size)
        return size

    def get(self, key: str) -> bytes:
        try:
            return self._blob(key).download_as_bytes()
        except Exception as exc:  # noqa: BLE001
            raise StorageError("get", key, str(exc)) from exc

    def download_to_file(self, key: str, path: str) -> int:
        try:
            self._blob(key).download_to_filename(path)
            return os.path.getsize(path)
        except Exception as exc:  # noqa: BLE001
            raise StorageError("get", key, str(exc)) from exc

    def delete(self, key: str) -> None:
        try:
            self._blob(key).delete()
        except Exception as exc:  # noqa: BLE001
            raise StorageError("delete", key, str(exc)) from exc
        logger.info("[storage] deleted gs://%s/%s", self.bucket_name, key)

    def delete_prefix(self, prefix: str) -> int:
        """Delete every object under prefix (e.g. a video's processed outputs)."""
        count = 0
        try:
            for blob in self.client.list_blobs(self.bucket_name, prefix=prefix):
                blob.delete()
                count += 1
        except Exception as exc:  # noqa: BLE001
            raise StorageError("delete", prefix, str(exc)) from exc
        logger.info("[storage] deleted %d objects under gs://%s/%s", count, self.bucket_name, prefix)
        return count
