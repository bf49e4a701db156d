"""Transcode worker: download the raw upload, encode to DASH, upload outputs, call back the API."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any

import av
import httpx

from models.job import ProcessingTier
from services.encoder import (
    BATCH_PROGRESS_LOG_INTERVAL,
    PRESETS,
    EncoderInvoker,
    EncoderPreset,
    ProgressSample,
)
from services.gcs import StorageGateway

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 10.0
USER_AGENT = "VisionSync-VideoProcessor/1.0"


@dataclass(frozen=True)
class WorkerParams:
    video_bucket: str
    video_file_name: str
    video_id: str
    output_bucket: str
    webhook_url: str = ""
    progress_webhook_url: str = ""
    webhook_token: str = ""
    instance_type: str = "on-demand"
    processing_priority: str = "normal"
    ffmpeg_preset: str = ""
    ffmpeg_threads: int = 2
    batch_mode: bool = False
    max_processing_time: int = 1800
    temp_dir: str = ""

    @property
    def tier(self) -> ProcessingTier:
        if self.processing_priority == "low":
            return ProcessingTier.COST_OPTIMIZED
        return ProcessingTier.STANDARD

    @property
    def manifest_key(self) -> str:
        return f"{self.video_id}/manifest.mpd"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> WorkerParams:
        env = os.environ if environ is None else environ

        def get(key: str, default: str = "") -> str:
            return env.get(key, "").strip() or default

        required = {
            "VIDEO_BUCKET": get("VIDEO_BUCKET"),
            "VIDEO_FILE_NAME": get("VIDEO_FILE_NAME"),
            "VIDEO_ID": get("VIDEO_ID"),
            "OUTPUT_BUCKET": get("OUTPUT_BUCKET"),
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")
        return cls(
            video_bucket=required["VIDEO_BUCKET"],
            video_file_name=required["VIDEO_FILE_NAME"],
            video_id=required["VIDEO_ID"],
            output_bucket=required["OUTPUT_BUCKET"],
            webhook_url=get("WEBHOOK_URL"),
            progress_webhook_url=get("PROGRESS_WEBHOOK_URL"),
            webhook_token=get("WEBHOOK_TOKEN"),
            instance_type=get("INSTANCE_TYPE", "on-demand"),
            processing_priority=get("PROCESSING_PRIORITY", "normal"),
            ffmpeg_preset=get("FFMPEG_PRESET"),
            ffmpeg_threads=int(get("FFMPEG_THREADS", "2")),
            batch_mode=get("ENABLE_BATCH_MODE").lower() == "true",
            max_processing_time=int(get("MAX_PROCESSING_TIME", "1800")),
            temp_dir=get("TEMP_DIR"),
        )


def probe_duration(path: str) -> float | None:
    """Container duration in seconds, or None when PyAV cannot tell (best effort)."""
    try:
        with av.open(path) as container:
            if container.duration is None:
                return None
            return container.duration / av.time_base
    except Exception as exc:  # noqa: BLE001
        logger.warning("[worker] Duration probe failed for %s: %s", path, exc)
        return None


class ProgressForwarder:
    """Turn encoder samples into whole 10 % steps and post each step once."""

    def __init__(self, duration: float, post: Callable[[int], None]) -> None:
        self._duration = duration
        self._post = post
        self._last_step = -1

    def __call__(self, sample: ProgressSample) -> None:
        seconds = sample.time_seconds
        if seconds is None or self._duration <= 0:
            return
        pct = min(100, int(seconds * 100 / self._duration))
        step = pct - pct % 10
        if step > self._last_step:
            self._last_step = step
            self._post(step)


class TranscodeWorker:
    def __init__(
        self,
        params: WorkerParams,
        *,
        source: StorageGateway,
        output: StorageGateway,
        encoder: EncoderInvoker | None = None,
        http: httpx.Client | None = None,
        probe: Callable[[str], float | None] = probe_duration,
    ) -> None:
        self.params = params
        self._source = source
        self._output = output
        self._encoder = encoder or EncoderInvoker(
            timeout_seconds=params.max_processing_time,
            progress_log_interval=BATCH_PROGRESS_LOG_INTERVAL if params.batch_mode else 5.0,
        )
        self._http = http or httpx.Client(timeout=WEBHOOK_TIMEOUT_SECONDS)
        self._probe = probe

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        if self.params.webhook_token:
            headers["Authorization"] = f"Bearer {self.params.webhook_token}"
        return headers

    def _post(self, url: str, payload: dict[str, Any]) -> None:
        try:
            response = self._http.post(url, json=payload, headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("[worker] Webhook to %s failed: %s", url, exc)

    def send_webhook(self, status: str, **fields: Any) -> None:
        if not self.params.webhook_url:
            logger.info("[worker] No webhook URL configured, skipping webhook")
            return
        payload = {
            "videoId": self.params.video_id,
            "status": status,
            "instanceType": self.params.instance_type,
            "processingMode": "batch" if self.params.batch_mode else "single",
            **{k: v for k, v in fields.items() if v is not None},
        }
        logger.info("[worker] Sending webhook status=%s video_id=%s", status, self.params.video_id)
        self._post(self.params.webhook_url, payload)

    def _send_progress(self, progress: int) -> None:
        self._post(
            self.params.progress_webhook_url,
            {"videoId": self.params.video_id, "progress": progress},
        )

    def _preset(self) -> EncoderPreset:
        preset = PRESETS[self.params.tier]
        if self.params.ffmpeg_preset:
            preset = replace(preset, speed_preset=self.params.ffmpeg_preset)
        return preset

    def _upload_outputs(self, output_dir: str) -> int:
        files = sorted(os.listdir(output_dir))
        logger.info("[worker] Uploading %d files for video_id=%s", len(files), self.params.video_id)
        metadata = {
            "video-id": self.params.video_id,
            "processed-by": "visionsync-processor",
            "instance-type": self.params.instance_type,
            "ffmpeg-preset": self._preset().speed_preset,
        }
        total = 0
        for name in files:
            path = os.path.join(output_dir, name)
            if os.path.isfile(path):
                total += self._output.upload_file(f"{self.params.video_id}/{name}", path, metadata)
        return total

    def run(self) -> str:
        """Process the job; returns the manifest key. Any failure is reported as error and re-raised."""
        p = self.params
        started = time.monotonic()
        work_dir = tempfile.mkdtemp(prefix=f"video-{p.video_id[:8]}-", dir=p.temp_dir or None)
        logger.info(
            "[worker] Starting video_id=%s tier=%s instance=%s batch=%s",
            p.video_id,
            p.tier.value,
            p.instance_type,
            p.batch_mode,
        )
        try:
            input_path = os.path.join(work_dir, "input" + (os.path.splitext(p.video_file_name)[1] or ".mp4"))
            output_dir = os.path.join(work_dir, "output")
            size = self._source.download_to_file(p.video_file_name, input_path)
            logger.info("[worker] Downloaded %s (%.2f MB)", p.video_file_name, size / 1024 / 1024)

            duration = self._probe(input_path)
            on_progress = None
            if duration and p.progress_webhook_url:
                on_progress = ProgressForwarder(duration, self._send_progress)

            self._encoder.encode(
                input_path,
                output_dir,
                p.tier,
                preset=self._preset(),
                threads=p.ffmpeg_threads,
                segment_seconds=6 if p.batch_mode else 4,
                on_progress=on_progress,
            )
            uploaded = self._upload_outputs(output_dir)
            self.send_webhook("ready", manifestUrl=p.manifest_key, duration=duration)
            logger.info(
                "[worker] Done video_id=%s in %.2fs, uploaded %.2f MB, manifest=%s",
                p.video_id,
                time.monotonic() - started,
                uploaded / 1024 / 1024,
                p.manifest_key,
            )
            return p.manifest_key
        except Exception as exc:
            logger.error(
                "[worker] Processing failed video_id=%s after %.2fs: %s",
                p.video_id,
                time.monotonic() - started,
                exc,
            )
            self.send_webhook("error", error=str(exc))
            raise
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)
