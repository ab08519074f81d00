"""Background worker that drives fal Rodin generation jobs to stored results."""

from rodin_worker.config import WorkerConfig
from rodin_worker.contracts import JobResult, Outcome, Phase, TaskState, TextureAsset
from rodin_worker.scheduler import WorkerScheduler
from rodin_worker.task_processor import TaskProcessor
from rodin_worker.task_queue import TaskQueue
from rodin_worker.thumbnail_renderer import ThumbnailRenderer

__all__ = [
    "JobResult",
    "Outcome",
    "Phase",
    "TaskProcessor",
    "TaskQueue",
    "TaskState",
    "TextureAsset",
    "ThumbnailRenderer",
    "WorkerConfig",
    "WorkerScheduler",
]
