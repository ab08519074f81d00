"""Deterministic local paths and servable URLs for task assets."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

MODELS_DIR = "assets/models"
IMAGES_DIR = "assets/images"

DEFAULT_MODEL_EXT = ".glb"
DEFAULT_IMAGE_EXT = ".png"


@dataclass(frozen=True)
class AssetLocation:
    local_path: Path
    relative_path: str
    url: str


def url_extension(url: str, default: str) -> str:
    """Return the file extension of a URL's path, or *default*."""
    ext = posixpath.splitext(urlparse(url).path)[1]
    return ext or default


def safe_file_name(name: str, default: str = "texture") -> str:
    """Reduce a remote file name to a bare name that stays in its directory."""
    base = posixpath.basename((name or "").replace("\\", "/"))
    if base in ("", ".", ".."):
        return default
    return base


class AssetPaths:
    """Maps a task id and asset role to a storage path and a public URL.

    Same task id and same remote URL always give the same location.
    """

    def __init__(self, storage_dir: str | Path, base_url: str):
        self.storage_dir = Path(storage_dir)
        self.base_url = base_url.rstrip("/")

    def _location(self, relative_path: str) -> AssetLocation:
        return AssetLocation(
            local_path=self.storage_dir / relative_path,
            relative_path=relative_path,
            url=f"{self.base_url}/{relative_path}",
        )

    def model(self, task_id: str, model_url: str) -> AssetLocation:
        ext = url_extension(model_url, DEFAULT_MODEL_EXT)
        return self._location(f"{MODELS_DIR}/{task_id}{ext}")

    def preview(self, task_id: str, image_url: str) -> AssetLocation:
        ext = url_extension(image_url, DEFAULT_IMAGE_EXT)
        return self._location(f"{IMAGES_DIR}/{task_id}_refine{ext}")

    def thumbnail(self, task_id: str) -> AssetLocation:
        return self._location(f"{IMAGES_DIR}/{task_id}_thumb.png")

    def texture(self, task_id: str, file_name: str) -> AssetLocation:
        return self._location(f"{IMAGES_DIR}/{task_id}_{safe_file_name(file_name)}")
