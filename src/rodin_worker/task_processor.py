"""
Polling and escalation state machine for one Rodin task.

A processor drives a single task id from admission to a terminal outcome:

    processing -> (waiting)* -> downloading -> [generating_thumbnail ->
    generating_thumbnail_done | generating_thumbnail_failed] -> done

or ends early with ``timeout``, ``error``, ``fatal_timeout`` or
``cancelled``. Every terminal failure writes the ``failed`` state exactly
once. Two timers bound the session: the global ``max_duration_seconds``
checked before every poll, and the fatal-error window measured from the
first fatal-candidate error.

Blocking collaborators (job client, downloader, store, notifier) run in
worker threads and are awaited one at a time, so notifications leave in
transition order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Set

from rodin_worker.asset_paths import AssetLocation, AssetPaths
from rodin_worker.config import WorkerConfig
from rodin_worker.contracts import (
    PBR_TEXTURE,
    JobResult,
    Outcome,
    Phase,
    ProcessingSession,
    TaskState,
)
from rodin_worker.downloader import Downloader
from rodin_worker.errors import JobNotReadyError, RenderError
from rodin_worker.job_client import GenerationJobClient
from rodin_worker.notifier import Notifier
from rodin_worker.result_store import ResultStore
from rodin_worker.thumbnail_renderer import ThumbnailRenderer

logger = logging.getLogger(__name__)


class TaskProcessor:
    """Runs the polling loop for one task id."""

    def __init__(
        self,
        task_id: str,
        *,
        job_client: GenerationJobClient,
        downloader: Downloader,
        renderer: ThumbnailRenderer,
        store: ResultStore,
        notifier: Notifier,
        paths: AssetPaths,
        config: WorkerConfig,
        cancel_event: Optional[asyncio.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.task_id = task_id
        self.job_client = job_client
        self.downloader = downloader
        self.renderer = renderer
        self.store = store
        self.notifier = notifier
        self.paths = paths
        self.config = config
        self.cancel_event = cancel_event
        self._clock = clock
        self._sleep = sleep
        self.session: Optional[ProcessingSession] = None
        self._recorded_textures: Set[str] = set()

    async def _notify(self, phase: Phase, message: str) -> None:
        if self.session is not None:
            self.session.phase = phase
        await asyncio.to_thread(self.notifier.send, self.task_id, phase, message)

    async def _mark_failed(self) -> None:
        await asyncio.to_thread(self.store.update_state, self.task_id, TaskState.FAILED)

    async def _fail(self, phase: Phase, message: str, outcome: Outcome) -> Outcome:
        await self._notify(phase, message)
        await self._mark_failed()
        logger.warning("Task %s ended: %s", self.task_id, outcome.value)
        return outcome

    async def run(self) -> Outcome:
        self.session = ProcessingSession(task_id=self.task_id, started_at=self._clock())
        logger.info("Processing task %s", self.task_id)
        await self._notify(Phase.PROCESSING, "Worker started processing Rodin model.")

        while True:
            if self.cancel_event is not None and self.cancel_event.is_set():
                return await self._fail(
                    Phase.CANCELLED, "Rodin task cancelled.", Outcome.CANCELLED
                )

            elapsed = self.session.elapsed(self._clock())
            if elapsed > self.config.max_duration_seconds:
                return await self._fail(Phase.TIMEOUT, "Rodin worker timeout.", Outcome.TIMEOUT)

            try:
                result = await asyncio.to_thread(self.job_client.result, self.task_id)
                await self._resolve_assets(result)
                logger.info("Task %s succeeded after %.0fs", self.task_id,
                            self.session.elapsed(self._clock()))
                return Outcome.SUCCEEDED
            except JobNotReadyError as exc:
                logger.debug("Task %s not ready: %s", self.task_id, exc)
                await self._notify(Phase.WAITING, "Still processing Rodin model...")
            except Exception as exc:
                outcome = await self._handle_fatal_candidate(exc)
                if outcome is not None:
                    return outcome

            await self._sleep(self.config.poll_interval_seconds)

    async def _handle_fatal_candidate(self, exc: Exception) -> Optional[Outcome]:
        """Apply the fatal-error policy; return an outcome when the session ends.

        Without ``retry_fatal_errors`` the first error ends the session, so
        the window branch below can only fire in retry mode.
        """
        now = self._clock()
        if self.session.first_fatal_at is None:
            self.session.first_fatal_at = now
        elif now - self.session.first_fatal_at > self.config.fatal_error_window_seconds:
            return await self._fail(
                Phase.FATAL_TIMEOUT,
                "Rodin model failed after repeated errors.",
                Outcome.FATAL_TIMEOUT,
            )

        logger.error("Error processing task %s: %s", self.task_id, exc)
        await self._notify(Phase.ERROR, f"Error processing Rodin task: {exc}")
        if self.config.retry_fatal_errors:
            return None
        await self._mark_failed()
        return Outcome.ERROR

    async def _fetch(self, url: str, location: AssetLocation) -> None:
        await asyncio.to_thread(self.downloader.fetch, url, location.local_path)

    async def _resolve_assets(self, result: JobResult) -> None:
        await self._notify(Phase.DOWNLOADING, "Downloading Rodin model files...")

        model = self.paths.model(self.task_id, result.model_url)
        await self._fetch(result.model_url, model)

        if result.textures:
            preview = self.paths.preview(self.task_id, result.textures[0].url)
            await self._fetch(result.textures[0].url, preview)
            preview_url = preview.url
        else:
            preview_url = await self._render_thumbnail(model.url)

        mesh = await asyncio.to_thread(
            self.store.update_result,
            self.task_id,
            model_url=model.url,
            preview_url=preview_url,
            state=TaskState.SUCCEEDED,
        )

        # The first texture is stored again here even when it is the preview.
        # Textures recorded by an earlier, interrupted pass are not redone.
        for texture in result.textures:
            location = self.paths.texture(self.task_id, texture.file_name)
            if location.url in self._recorded_textures:
                continue
            await self._fetch(texture.url, location)
            await asyncio.to_thread(
                self.store.add_texture, mesh.id, type=PBR_TEXTURE, url=location.url
            )
            self._recorded_textures.add(location.url)

        await self._notify(Phase.DONE, "Rodin task completed successfully.")

    async def _render_thumbnail(self, model_url: str) -> str:
        """Render a preview from the model; fall back to the placeholder."""
        await self._notify(
            Phase.GENERATING_THUMBNAIL,
            "No image found, generating thumbnail from model...",
        )
        thumb = self.paths.thumbnail(self.task_id)
        try:
            await self.renderer.render(model_url, thumb.local_path)
        except RenderError as exc:
            logger.error("Failed to generate thumbnail for %s: %s", self.task_id, exc)
            await self._notify(Phase.GENERATING_THUMBNAIL_FAILED, "Failed to generate thumbnail.")
            return self.config.placeholder_image_url
        await self._notify(Phase.GENERATING_THUMBNAIL_DONE, "Thumbnail generated successfully.")
        return thumb.url
