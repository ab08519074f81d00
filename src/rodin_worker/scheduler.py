"""Background scheduling loop feeding queued task ids to processors."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from rodin_worker.contracts import Outcome
from rodin_worker.task_processor import TaskProcessor
from rodin_worker.task_queue import TaskQueue

logger = logging.getLogger(__name__)

ProcessorFactory = Callable[[str, asyncio.Event], TaskProcessor]


@dataclass
class _ActiveSession:
    task: asyncio.Task
    cancel_event: asyncio.Event


class WorkerScheduler:
    """Pulls task ids off the queue while a worker slot is free.

    ``slots`` defaults to a single-slot semaphore, which keeps processing
    strictly serial across tasks.
    """

    def __init__(
        self,
        queue: TaskQueue,
        processor_factory: ProcessorFactory,
        *,
        queue_poll_interval: float = 5.0,
        slots: Optional[asyncio.Semaphore] = None,
    ):
        self.queue = queue
        self.processor_factory = processor_factory
        self.queue_poll_interval = queue_poll_interval
        self._slots = slots if slots is not None else asyncio.Semaphore(1)
        self._sessions: Dict[str, _ActiveSession] = {}
        self._running = False
        self.outcomes: Dict[str, Outcome] = {}

    @property
    def active_task_ids(self) -> List[str]:
        return list(self._sessions)

    def is_idle(self) -> bool:
        return not self._sessions and len(self.queue) == 0

    def submit(self, task_id: str) -> bool:
        """Admit *task_id* unless it is queued or already being processed."""
        if task_id in self._sessions:
            logger.info("Task %s is already being processed; not re-queued", task_id)
            return False
        return self.queue.enqueue(task_id)

    def cancel(self, task_id: str) -> bool:
        """Ask the running session for *task_id* to stop at its next poll."""
        session = self._sessions.get(task_id)
        if session is None:
            return False
        session.cancel_event.set()
        return True

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Wake every ``queue_poll_interval`` seconds until *stop_event* is set."""
        if self._running:
            logger.warning("Scheduler already running")
            return
        self._running = True
        stop = stop_event or asyncio.Event()
        logger.info("Scheduler started (poll every %.1fs)", self.queue_poll_interval)
        try:
            while not stop.is_set():
                await self.tick()
                try:
                    await asyncio.wait_for(stop.wait(), timeout=self.queue_poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info("Scheduler stopped")

    async def run_until_idle(self) -> None:
        """Process until the queue is empty and no session is running."""
        stop = asyncio.Event()

        async def _watch() -> None:
            while True:
                await asyncio.sleep(min(self.queue_poll_interval, 0.1))
                if self.is_idle():
                    stop.set()
                    return

        watcher = asyncio.create_task(_watch())
        try:
            await self.run(stop)
        finally:
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)
        await self.wait_for_sessions()

    async def tick(self) -> None:
        """Start sessions for queued ids while slots are free."""
        while not self._slots.locked():
            task_id = self.queue.drain_next()
            if task_id is None:
                return
            await self._slots.acquire()
            self._start_session(task_id)

    def _start_session(self, task_id: str) -> None:
        cancel_event = asyncio.Event()
        processor = self.processor_factory(task_id, cancel_event)
        task = asyncio.create_task(self._run_session(task_id, processor), name=f"rodin-{task_id}")
        self._sessions[task_id] = _ActiveSession(task=task, cancel_event=cancel_event)

    async def _run_session(self, task_id: str, processor: TaskProcessor) -> None:
        try:
            outcome = await processor.run()
            self.outcomes[task_id] = outcome
        except asyncio.CancelledError:
            logger.warning("Session for %s cancelled", task_id)
            raise
        except Exception:
            logger.exception("Session for %s crashed", task_id)
        finally:
            self._sessions.pop(task_id, None)
            self._slots.release()

    async def wait_for_sessions(self) -> None:
        tasks = [s.task for s in self._sessions.values()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel running sessions and wait for them to unwind."""
        tasks = [s.task for s in self._sessions.values()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
