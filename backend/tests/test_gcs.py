"""Tests for the GCS storage gateway: signed URLs, cache policy, object I/O and error wrapping."""

import sys
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from services.errors import StorageError
from services.gcs import (
    MANIFEST_CACHE_CONTROL,
    SEGMENT_CACHE_CONTROL,
    StorageGateway,
    cache_control_for,
    content_type_for,
    generate_signed_url,
)


def _mock_storage_modules(mock_client: MagicMock) -> dict:
    mock_storage = MagicMock()
    mock_storage.Client.return_value = mock_client
    # Satisfy "from google.cloud import storage" without real credentials
    mock_cloud = MagicMock()
    mock_cloud.storage = mock_storage
    return {"google": MagicMock(), "google.cloud": mock_cloud, "google.cloud.storage": mock_storage}


def test_generate_signed_url_builds_v4_put_with_content_type() -> None:
    mock_blob = MagicMock()
    mock_blob.generate_signed_url.return_value = "https://storage.example.com/signed"
    mock_client = MagicMock()
    mock_client.bucket.return_value.blob.return_value = mock_blob

    with patch.dict(sys.modules, _mock_storage_modules(mock_client)):
        url = generate_signed_url(
            "videos/abc/clip.mp4",
            bucket_name="visionsync-raw",
            expiration_seconds=3600,
            method="PUT",
            content_type="video/mp4",
        )

    assert url == "https://storage.example.com/signed"
    mock_client.bucket.assert_called_once_with("visionsync-raw")
    mock_client.bucket.return_value.blob.assert_called_once_with("videos/abc/clip.mp4")
    call_kw = mock_blob.generate_signed_url.call_args[1]
    assert call_kw["method"] == "PUT"
    assert call_kw["version"] == "v4"
    assert call_kw["content_type"] == "video/mp4"
    now_utc = datetime.now(timezone.utc)
    assert abs((call_kw["expiration"] - now_utc).total_seconds() - 3600) < 5


def test_download_handle_has_no_content_type(gcs_client) -> None:
    gateway = StorageGateway("visionsync-processed", client=gcs_client)
    url = gateway.issue_download_handle("abc/manifest.mpd")
    assert url.startswith("https://storage.test/visionsync-processed/abc/manifest.mpd")
    assert gcs_client.signed == [("visionsync-processed", "abc/manifest.mpd", "GET")]


def test_signing_failure_is_wrapped(gcs_client) -> None:
    gcs_client.fail_signing = True
    gateway = StorageGateway("raw", client=gcs_client)
    with pytest.raises(StorageError) as exc_info:
        gateway.issue_upload_handle("videos/abc/clip.mp4", "video/mp4")
    assert exc_info.value.operation == "sign_upload"
    assert exc_info.value.key == "videos/abc/clip.mp4"


@pytest.mark.parametrize(
    "key, expected",
    [
        ("abc/manifest.mpd", MANIFEST_CACHE_CONTROL),
        ("abc/chunk-0-00001.m4s", SEGMENT_CACHE_CONTROL),
        ("abc/init-0.m4s", SEGMENT_CACHE_CONTROL),
        ("abc/thumb.jpg", "no-cache"),
    ],
)
def test_cache_control_for(key, expected) -> None:
    assert cache_control_for(key) == expected


def test_content_type_for() -> None:
    assert content_type_for("a/manifest.mpd") == "application/dash+xml"
    assert content_type_for("a/chunk-1-1.m4s") == "video/mp4"
    assert content_type_for("a/blob.unknownext") == "application/octet-stream"


def test_put_get_delete_round_trip_applies_cache_policy(gcs_client) -> None:
    gateway = StorageGateway("processed", client=gcs_client)
    gateway.put("abc/manifest.mpd", b"<MPD/>", {"video-id": "abc"})

    upload = gcs_client.uploads[("processed", "abc/manifest.mpd")]
    assert upload["cache_control"] == MANIFEST_CACHE_CONTROL
    assert upload["content_type"] == "application/dash+xml"
    assert upload["metadata"] == {"video-id": "abc"}
    assert gateway.get("abc/manifest.mpd") == b"<MPD/>"

    gateway.delete("abc/manifest.mpd")
    with pytest.raises(StorageError):
        gateway.get("abc/manifest.mpd")


def test_upload_and_download_files(gcs_client, tmp_path) -> None:
    gateway = StorageGateway("processed", client=gcs_client)
    src = tmp_path / "chunk-0-1.m4s"
    src.write_bytes(b"segment-bytes")

    size = gateway.upload_file("abc/chunk-0-1.m4s", str(src))
    dest = tmp_path / "copy.m4s"
    downloaded = gateway.download_to_file("abc/chunk-0-1.m4s", str(dest))

    assert size == downloaded == len(b"segment-bytes")
    assert dest.read_bytes() == b"segment-bytes"
    assert gcs_client.uploads[("processed", "abc/chunk-0-1.m4s")]["cache_control"] == SEGMENT_CACHE_CONTROL


def test_delete_prefix_only_touches_that_video(gcs_client) -> None:
    gcs_client.objects[("processed", "abc/manifest.mpd")] = b"m"
    gcs_client.objects[("processed", "abc/chunk-0-1.m4s")] = b"s"
    gcs_client.objects[("processed", "abcd/manifest.mpd")] = b"other"
    gateway = StorageGateway("processed", client=gcs_client)

    assert gateway.delete_prefix("abc/") == 2
    assert list(gcs_client.objects) == [("processed", "abcd/manifest.mpd")]


def test_delete_missing_object_raises_storage_error(gcs_client) -> None:
    gateway = StorageGateway("raw", client=gcs_client)
    with pytest.raises(StorageError) as exc_info:
        gateway.delete("videos/nope/clip.mp4")
    assert exc_info.value.operation == "delete"
