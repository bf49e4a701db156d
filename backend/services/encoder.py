"""Run ffmpeg to produce a DASH manifest plus segments at several renditions."""

from __future__ import annotations

import logging
import os
import re
import subprocess
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from models.job import ProcessingTier
from services.errors import EncodeTimeout, NonZeroExit, SpawnFailed

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.mpd"
DEFAULT_TIMEOUT_SECONDS = 1800  # 30 minutes
PROGRESS_LOG_INTERVAL = 5.0
BATCH_PROGRESS_LOG_INTERVAL = 10.0

_RE_FRAME = re.compile(r"frame=\s*(\d+)")
_RE_FPS = re.compile(r"fps=\s*([\d.]+)")
_RE_TIME = re.compile(r"time=(\d{2}):(\d{2}):(\d{2})\.(\d{2})")
_RE_BITRATE = re.compile(r"bitrate=\s*([\d.]+\w+)")
_RE_SIZE = re.compile(r"size=\s*(\d+\w+)")


@dataclass(frozen=True)
class Rendition:
    width: int
    height: int
    bitrate_kbps: int

    @property
    def maxrate_kbps(self) -> int:
        return self.bitrate_kbps * 11 // 10

    @property
    def bufsize_kbps(self) -> int:
        return self.bitrate_kbps * 2


@dataclass(frozen=True)
class EncoderPreset:
    renditions: tuple[Rendition, ...]
    speed_preset: str
    crf: int
    tune: str | None = None


PRESETS: dict[ProcessingTier, EncoderPreset] = {
    ProcessingTier.COST_OPTIMIZED: EncoderPreset(
        renditions=(
            Rendition(1280, 720, 2500),
            Rendition(854, 480, 1200),
            Rendition(640, 360, 600),
        ),
        speed_preset="fast",
        crf=25,
        tune="fastdecode",
    ),
    ProcessingTier.STANDARD: EncoderPreset(
        renditions=(
            Rendition(1920, 1080, 5000),
            Rendition(1280, 720, 3000),
            Rendition(854, 480, 1500),
            Rendition(640, 360, 800),
        ),
        speed_preset="medium",
        crf=23,
    ),
}


@dataclass
class ProgressSample:
    frame: int | None = None
    fps: float | None = None
    time: str | None = None
    bitrate: str | None = None
    size: str | None = None

    @property
    def time_seconds(self) -> float | None:
        if self.time is None:
            return None
        h, m, rest = self.time.split(":")
        return int(h) * 3600 + int(m) * 60 + float(rest)


def parse_progress(line: str) -> ProgressSample | None:
    """Pull frame/fps/time/bitrate/size out of one ffmpeg stderr status line."""
    sample = ProgressSample()
    found = False
    if m := _RE_FRAME.search(line):
        sample.frame = int(m.group(1))
        found = True
    if m := _RE_FPS.search(line):
        sample.fps = float(m.group(1))
        found = True
    if m := _RE_TIME.search(line):
        sample.time = f"{m.group(1)}:{m.group(2)}:{m.group(3)}.{m.group(4)}"
        found = True
    if m := _RE_BITRATE.search(line):
        sample.bitrate = m.group(1)
        found = True
    if m := _RE_SIZE.search(line):
        sample.size = m.group(1)
        found = True
    return sample if found else None


def build_filter_complex(renditions: tuple[Rendition, ...]) -> str:
    count = len(renditions)
    parts = [f"[0:v]split={count}" + "".join(f"[v{i + 1}]" for i in range(count))]
    for i, r in enumerate(renditions, start=1):
        parts.append(f"[v{i}]scale={r.width}:{r.height}[v{i}out]")
    return "; ".join(parts)


def build_ffmpeg_args(
    input_path: str,
    output_dir: str,
    preset: EncoderPreset,
    *,
    threads: int = 2,
    segment_seconds: int = 4,
) -> list[str]:
    args = [
        "-y",
        "-i", input_path,
        "-threads", str(threads),
        "-filter_complex", build_filter_complex(preset.renditions),
    ]
    for i, r in enumerate(preset.renditions):
        args += [
            "-map", f"[v{i + 1}out]",
            f"-c:v:{i}", "libx264",
            f"-b:v:{i}", f"{r.bitrate_kbps}k",
            f"-maxrate:{i}", f"{r.maxrate_kbps}k",
            f"-bufsize:{i}", f"{r.bufsize_kbps}k",
        ]
    args += [
        "-map", "0:a?",
        "-c:a", "aac",
        "-b:a", "128k",
        "-ar", "48000",
        "-g", "48",
        "-sc_threshold", "0",
        "-keyint_min", "48",
        "-preset", preset.speed_preset,
        "-profile:v", "high",
        "-level", "4.0",
        "-crf", str(preset.crf),
    ]
    if preset.tune:
        args += ["-tune", preset.tune]
    seg = str(segment_seconds)
    args += [
        "-adaptation_sets", "id=0,streams=v id=1,streams=a",
        "-f", "dash",
        "-seg_duration", seg,
        "-frag_duration", seg,
        "-min_seg_duration", seg,
        "-use_template", "1",
        "-use_timeline", "1",
        "-init_seg_name", "init-$RepresentationID$.m4s",
        "-media_seg_name", "chunk-$RepresentationID$-$Number$.m4s",
        os.path.join(output_dir, MANIFEST_NAME),
    ]
    return args


class EncoderInvoker:
    """
    Wraps the ffmpeg binary.

    encode() blocks until ffmpeg exits or the wall-clock timeout fires. Failures raise
    SpawnFailed, NonZeroExit or EncodeTimeout and are never retried here.
    """

    def __init__(
        self,
        *,
        ffmpeg_bin: str = "ffmpeg",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        progress_log_interval: float = PROGRESS_LOG_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.timeout_seconds = timeout_seconds
        self.progress_log_interval = progress_log_interval
        self._clock = clock

    def encode(
        self,
        input_path: str,
        output_dir: str,
        tier: ProcessingTier,
        *,
        preset: EncoderPreset | None = None,
        threads: int = 2,
        segment_seconds: int = 4,
        on_progress: Callable[[ProgressSample], None] | None = None,
    ) -> str:
        preset = preset or PRESETS[tier]
        os.makedirs(output_dir, exist_ok=True)
        cmd = [self.ffmpeg_bin] + build_ffmpeg_args(
            input_path,
            output_dir,
            preset,
            threads=threads,
            segment_seconds=segment_seconds,
        )
        logger.info(
            "[encoder] Starting ffmpeg tier=%s renditions=%d preset=%s timeout=%.0fs",
            tier.value,
            len(preset.renditions),
            preset.speed_preset,
            self.timeout_seconds,
        )
        logger.debug("[encoder] cmd=%s", " ".join(cmd))

        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                bufsize=1,
            )
        except OSError as exc:
            raise SpawnFailed(f"Failed to start {self.ffmpeg_bin}: {exc}") from exc

        stderr_tail: deque[str] = deque(maxlen=50)
        reader = threading.Thread(
            target=self._read_stderr,
            args=(proc, stderr_tail, on_progress),
            name="ffmpeg-stderr",
            daemon=True,
        )
        reader.start()

        try:
            code = proc.wait(timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired:
            logger.warning("[encoder] Timeout reached (%.0fs), terminating ffmpeg", self.timeout_seconds)
            proc.terminate()
            try:
                proc.wait(timeout=10)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
            reader.join(timeout=5)
            raise EncodeTimeout(self.timeout_seconds) from None

        reader.join(timeout=5)
        if code != 0:
            tail = "".join(stderr_tail)
            logger.error("[encoder] ffmpeg failed with code %s: %s", code, tail[-500:])
            raise NonZeroExit(code, tail)

        manifest = os.path.join(output_dir, MANIFEST_NAME)
        logger.info("[encoder] ffmpeg finished: %s", manifest)
        return manifest

    def _read_stderr(
        self,
        proc: subprocess.Popen,
        tail: deque[str],
        on_progress: Callable[[ProgressSample], None] | None,
    ) -> None:
        last_logged = float("-inf")
        for line in proc.stderr or []:
            tail.append(line)
            sample = parse_progress(line)
            if sample is None:
                if "error" in line.lower():
                    logger.error("[encoder] ffmpeg: %s", line.strip())
                continue
            if on_progress is not None:
                try:
                    on_progress(sample)
                except Exception:  # noqa: BLE001
                    logger.exception("[encoder] progress callback failed")
            now = self._clock()
            if now - last_logged >= self.progress_log_interval:
                last_logged = now
                logger.info(
                    "[encoder] progress frame=%s fps=%s time=%s bitrate=%s size=%s",
                    sample.frame,
                    sample.fps,
                    sample.time,
                    sample.bitrate,
                    sample.size,
                )
