"""
Worker configuration.

Values come from dataclass defaults, then ``FAL_KEY`` / ``RODIN_WORKER_*``
environment variables, then CLI overrides applied with ``dataclasses.replace``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

from rodin_worker.errors import ConfigError

ENV_PREFIX = "RODIN_WORKER_"

DEFAULT_PLACEHOLDER_IMAGE_URL = "https://veloxiai.app/icon.png"


@dataclass(frozen=True)
class WorkerConfig:
    """Configuration for the Rodin mesh worker."""

    base_url: str = "http://localhost:3000"
    storage_dir: str = "storage"

    # Generation job API
    fal_key: str = ""
    fal_app: str = "fal-ai/hyper3d/rodin"
    fal_queue_url: str = "https://queue.fal.run"
    request_timeout_seconds: float = 30.0

    # Polling and escalation
    poll_interval_seconds: float = 5.0
    queue_poll_interval_seconds: float = 5.0
    max_duration_seconds: float = 600.0      # 10 minutes per task
    fatal_error_window_seconds: float = 60.0
    retry_fatal_errors: bool = False

    # Thumbnail rendering
    render_deadline_seconds: float = 30.0
    render_settle_seconds: float = 2.0
    placeholder_image_url: str = DEFAULT_PLACEHOLDER_IMAGE_URL

    # Collaborators
    database_path: str = "storage/worker.db"
    webhook_url: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "WorkerConfig":
        """Build a config from ``RODIN_WORKER_<FIELD>`` variables.

        ``FAL_KEY`` is read without the prefix, matching the fal SDKs.
        """
        env = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            values[f.name] = _coerce(f.name, raw, f.default)
        if "fal_key" not in values and env.get("FAL_KEY"):
            values["fal_key"] = env["FAL_KEY"]
        config = cls(**values)
        config.validate()
        return config

    def validate(self) -> None:
        positive = (
            "request_timeout_seconds",
            "poll_interval_seconds",
            "queue_poll_interval_seconds",
            "max_duration_seconds",
            "fatal_error_window_seconds",
            "render_deadline_seconds",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        if self.render_settle_seconds < 0:
            raise ConfigError("render_settle_seconds must not be negative")
        if not self.base_url:
            raise ConfigError("base_url is required")


def _coerce(name: str, raw: str, default):
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, float):
        try:
            return float(raw)
        except ValueError:
            raise ConfigError(f"{ENV_PREFIX}{name.upper()} must be a number, got {raw!r}")
    if default is None:
        return raw or None
    return raw
