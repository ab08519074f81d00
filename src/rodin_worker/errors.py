"""
Exception hierarchy for the Rodin mesh worker.

Job errors carry their kind in the type: ``JobNotReadyError`` means the
remote job is still computing and should be polled again, everything else
is a fatal candidate for the task processor.
"""


class WorkerError(Exception):
    """Base exception for worker errors."""
    pass


class ConfigError(WorkerError):
    """Invalid worker configuration."""
    pass


class JobError(WorkerError):
    """Generation job query failed."""

    def __init__(self, message: str, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class JobNotReadyError(JobError):
    """Job result is not available yet."""
    pass


class JobFailedError(JobError):
    """Job query failed for a reason other than the job still running."""
    pass


class DownloadError(WorkerError):
    """Remote asset could not be fetched to local storage."""
    pass


class RenderError(WorkerError):
    """Thumbnail could not be produced."""
    pass


class UnsupportedImageFormatError(RenderError):
    """Thumbnail output path has an extension with no image codec."""
    pass


class RenderLoadError(RenderError):
    """Model failed to load in the render session."""
    pass


class RenderCaptureError(RenderError):
    """Loaded model could not be captured to an image."""
    pass


class RenderTimeoutError(RenderError):
    """Render deadline elapsed before the model finished loading."""
    pass


class ResultStoreError(WorkerError):
    """Persisting task results failed."""
    pass


class RecordNotFoundError(ResultStoreError):
    """No mesh record exists for the task id."""
    pass
