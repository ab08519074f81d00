"""Shared data types for the Rodin mesh worker."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from rodin_worker.asset_paths import safe_file_name
from rodin_worker.errors import JobFailedError

PBR_TEXTURE = "pbr_texture"


class Phase(str, Enum):
    """Progress statuses pushed to the notifier."""
    QUEUED = "queued"
    PROCESSING = "processing"
    WAITING = "waiting"
    DOWNLOADING = "downloading"
    GENERATING_THUMBNAIL = "generating_thumbnail"
    GENERATING_THUMBNAIL_DONE = "generating_thumbnail_done"
    GENERATING_THUMBNAIL_FAILED = "generating_thumbnail_failed"
    DONE = "done"
    TIMEOUT = "timeout"
    FATAL_TIMEOUT = "fatal_timeout"
    ERROR = "error"
    CANCELLED = "cancelled"


class TaskState(str, Enum):
    """Terminal states written to the result store."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Outcome(str, Enum):
    """How a processing session ended."""
    SUCCEEDED = "succeeded"
    TIMEOUT = "timeout"
    ERROR = "error"
    FATAL_TIMEOUT = "fatal_timeout"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TextureAsset:
    url: str
    file_name: str


@dataclass
class JobResult:
    """Completed generation job payload."""
    model_url: str
    textures: List[TextureAsset] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "JobResult":
        """Parse a fal ``hyper3d/rodin`` result payload.

        Accepts both the bare result and the SDK-style ``{"data": ...}``
        wrapper. A payload without ``model_mesh.url`` raises
        ``JobFailedError``.
        """
        data = payload.get("data", payload) if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise JobFailedError(f"Unexpected job result payload: {payload!r}")

        model_mesh = data.get("model_mesh") or {}
        model_url = model_mesh.get("url") if isinstance(model_mesh, dict) else None
        if not model_url:
            raise JobFailedError("Job result is missing model_mesh.url")

        textures = []
        for item in data.get("textures") or []:
            if not isinstance(item, dict) or not item.get("url"):
                continue
            file_name = safe_file_name(item.get("file_name") or urlparse(item["url"]).path)
            textures.append(TextureAsset(url=item["url"], file_name=file_name))

        return cls(model_url=model_url, textures=textures, raw=data)


@dataclass
class ProcessingSession:
    """In-memory state of one task processor run. Never persisted."""
    task_id: str
    started_at: float
    first_fatal_at: Optional[float] = None
    phase: Phase = Phase.PROCESSING

    def elapsed(self, now: float) -> float:
        return now - self.started_at


@dataclass(frozen=True)
class MeshRecord:
    id: int
    task_id: str
    state: Optional[str]
    model_url: Optional[str]
    preview_url: Optional[str]


@dataclass(frozen=True)
class TextureRecord:
    id: int
    mesh_id: int
    type: str
    url: str
