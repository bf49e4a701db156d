from .job import BatchReport, JobMessage, LaunchResult, ProcessingTier
from .video import Video, VideoStatus, can_transition, ensure_transition

__all__ = [
    "Video",
    "VideoStatus",
    "can_transition",
    "ensure_transition",
    "JobMessage",
    "ProcessingTier",
    "LaunchResult",
    "BatchReport",
]
