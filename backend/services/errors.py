"""Error taxonomy shared by the API, dispatcher and worker."""

from __future__ import annotations


class VideoPipelineError(Exception):
    """Base class for every error raised by the pipeline components."""


class ValidationError(VideoPipelineError):
    """Bad input shape, size or type. Raised before any state change."""


class NotFoundError(VideoPipelineError):
    def __init__(self, video_id: str) -> None:
        self.video_id = video_id
        super().__init__(f"Video {video_id} not found")


class InvalidTransitionError(VideoPipelineError):
    def __init__(self, current: str, new: str) -> None:
        self.current = current
        self.new = new
        super().__init__(f"Illegal status transition {current} -> {new}")


class StorageError(VideoPipelineError):
    def __init__(self, operation: str, key: str, message: str = "") -> None:
        self.operation = operation
        self.key = key
        detail = f": {message}" if message else ""
        super().__init__(f"Storage {operation} failed for {key!r}{detail}")


class QueueError(VideoPipelineError):
    """Enqueue (or receive/ack) against the job queue failed."""


class LaunchError(VideoPipelineError):
    def __init__(self, message: str, *, retryable: bool = False) -> None:
        self.retryable = retryable
        super().__init__(message)


class EncodeError(VideoPipelineError):
    """The external encoder did not produce output. Never retried in-process."""


class SpawnFailed(EncodeError):
    pass


class NonZeroExit(EncodeError):
    def __init__(self, code: int, stderr_tail: str = "") -> None:
        self.code = code
        self.stderr_tail = stderr_tail
        super().__init__(f"Encoder exited with code {code}")


class EncodeTimeout(EncodeError):
    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Encoder timed out after {timeout_seconds:.0f}s")


class WebhookValidationError(VideoPipelineError):
    """Unknown status value or missing required field in a worker callback."""


class WebhookAuthError(VideoPipelineError):
    """Callback token missing, expired or issued for another video."""
