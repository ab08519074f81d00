"""Streaming download of remote assets to local storage."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import requests

from rodin_worker.errors import DownloadError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192


class Downloader:
    """Fetches a URL to a local path without buffering the whole body.

    The body is written to ``<path>.part`` and renamed once complete, so a
    failed transfer never leaves a file at the target path.
    """

    def __init__(self, timeout: float = 30.0, session: requests.Session | None = None):
        self.timeout = timeout
        self.session = session

    def fetch(self, url: str, local_path) -> Path:
        if not url:
            raise DownloadError("No URL to download")

        target = Path(local_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(target.name + ".part")

        getter = self.session.get if self.session is not None else requests.get
        logger.debug("Downloading %s -> %s", url, target)
        try:
            with getter(url, stream=True, timeout=self.timeout) as resp:
                resp.raise_for_status()
                with open(partial, "wb") as f:
                    for chunk in resp.iter_content(CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
        except requests.RequestException as e:
            _remove_quietly(partial)
            raise DownloadError(f"Download of {url} failed: {e}") from e
        except OSError as e:
            _remove_quietly(partial)
            raise DownloadError(f"Writing {target} failed: {e}") from e

        os.replace(partial, target)
        logger.info("Downloaded %s (%d bytes)", target, target.stat().st_size)
        return target


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
