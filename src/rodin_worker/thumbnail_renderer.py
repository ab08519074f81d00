"""
Thumbnail rendering with a hard deadline.

``ThumbnailRenderer.render`` opens a ``RenderSession``, races
"model loaded + settle delay" against the render deadline, captures one
frame and always closes the session, whichever way the race ended.

The default session runs ``rodin_worker.render_child`` in a separate
Python process, so a hung load can be killed outright.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

from rodin_worker.errors import (
    RenderCaptureError,
    RenderError,
    RenderLoadError,
    RenderTimeoutError,
    UnsupportedImageFormatError,
)

logger = logging.getLogger(__name__)

IMAGE_FORMATS = {
    ".png": "png",
    ".jpg": "jpeg",
    ".jpeg": "jpeg",
    ".webp": "webp",
}

_PACKAGE_PARENT = Path(__file__).resolve().parents[1]


def image_format_for(output_path) -> str:
    """Return the image codec for *output_path*'s extension."""
    ext = Path(output_path).suffix.lower()
    try:
        return IMAGE_FORMATS[ext]
    except KeyError:
        raise UnsupportedImageFormatError(
            f"Invalid output file extension: {output_path} "
            f"(expected one of {', '.join(sorted(IMAGE_FORMATS))})"
        ) from None


class RenderSession(ABC):
    """One isolated rendering environment holding one loaded model."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...

    @abstractmethod
    async def start(self, model_ref: str) -> None:
        """Launch the environment and begin loading *model_ref*."""
        ...

    @abstractmethod
    async def wait_until_loaded(self) -> None:
        """Return once the model has loaded; raise RenderLoadError on failure."""
        ...

    @abstractmethod
    async def capture(self, output_path: str, image_format: str) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        """Tear the environment down. Safe to call more than once."""
        ...


class SubprocessRenderSession(RenderSession):
    """Render session backed by a ``render_child`` process."""

    def __init__(self, python: str = sys.executable, capture_timeout: float = 60.0):
        self.python = python
        self.capture_timeout = capture_timeout
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._closed = False

    @property
    def closed(self):
        return self._closed

    @property
    def returncode(self):
        return self._proc.returncode if self._proc else None

    def _child_env(self):
        env = dict(os.environ)
        env["MPLBACKEND"] = "Agg"
        existing = env.get("PYTHONPATH")
        env["PYTHONPATH"] = os.pathsep.join(
            p for p in (str(_PACKAGE_PARENT), existing) if p
        )
        return env

    async def start(self, model_ref):
        try:
            self._proc = await asyncio.create_subprocess_exec(
                self.python, "-m", "rodin_worker.render_child", model_ref,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                env=self._child_env(),
            )
        except OSError as e:
            raise RenderLoadError(f"Could not launch render process: {e}") from e
        logger.debug("Render process %d started for %s", self._proc.pid, model_ref)

    async def _read_event(self, error_cls) -> dict:
        while True:
            line = await self._proc.stdout.readline()
            if not line:
                await self._proc.wait()
                raise error_cls(
                    f"Render process exited with code {self._proc.returncode}"
                )
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                # Library chatter on stdout
                continue
            if isinstance(event, dict) and "event" in event:
                return event

    async def wait_until_loaded(self):
        event = await self._read_event(RenderLoadError)
        if event["event"] != "load":
            raise RenderLoadError(event.get("message", "Model failed to load"))

    async def capture(self, output_path, image_format):
        command = {"command": "capture", "path": str(output_path), "format": image_format}
        try:
            self._proc.stdin.write((json.dumps(command) + "\n").encode("utf-8"))
            await self._proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise RenderCaptureError(f"Render process went away: {e}") from e
        try:
            event = await asyncio.wait_for(
                self._read_event(RenderCaptureError), timeout=self.capture_timeout
            )
        except asyncio.TimeoutError:
            raise RenderCaptureError(
                f"Capture did not finish within {self.capture_timeout:g} seconds"
            ) from None
        if event["event"] != "captured":
            raise RenderCaptureError(event.get("message", "Capture failed"))

    async def close(self):
        if self._closed:
            return
        self._closed = True
        if self._proc is None:
            return
        if self._proc.returncode is None:
            try:
                self._proc.kill()
            except ProcessLookupError:
                pass
        await self._proc.wait()
        logger.debug("Render process %d closed (code %s)", self._proc.pid, self._proc.returncode)


class ThumbnailRenderer:
    """Produces one still image of a model within a hard deadline."""

    def __init__(
        self,
        deadline_seconds: float = 30.0,
        settle_seconds: float = 2.0,
        session_factory: Callable[[], RenderSession] = SubprocessRenderSession,
    ):
        self.deadline_seconds = deadline_seconds
        self.settle_seconds = settle_seconds
        self.session_factory = session_factory

    async def _load_and_settle(self, session: RenderSession) -> None:
        await session.wait_until_loaded()
        if self.settle_seconds > 0:
            await asyncio.sleep(self.settle_seconds)

    async def render(self, model_ref: str, output_path) -> Path:
        """Render *model_ref* to *output_path*.

        Raises:
            UnsupportedImageFormatError: Extension is not png/jpg/jpeg/webp.
            RenderLoadError: The model failed to load.
            RenderTimeoutError: The deadline elapsed before load + settle.
            RenderCaptureError: The frame could not be written.
            RenderError: Anything else that went wrong inside the session.
        """
        image_format = image_format_for(output_path)
        out = Path(output_path)
        try:
            out.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RenderError(f"Cannot create thumbnail directory {out.parent}: {e}") from e

        session = self.session_factory()
        logger.info("Rendering thumbnail of %s -> %s", model_ref, out)
        try:
            await session.start(model_ref)
            try:
                await asyncio.wait_for(
                    self._load_and_settle(session), timeout=self.deadline_seconds
                )
            except asyncio.TimeoutError:
                raise RenderTimeoutError(
                    f"Rendering timeout after {self.deadline_seconds:g} seconds"
                ) from None
            await session.capture(str(out), image_format)
        except RenderError as exc:
            logger.error("Thumbnail generation failed: %s", exc)
            raise
        except Exception as exc:
            logger.exception("Unexpected error while rendering %s", model_ref)
            raise RenderError(f"Thumbnail rendering failed: {exc}") from exc
        finally:
            await session.close()

        logger.info("Thumbnail saved: %s", out)
        return out
