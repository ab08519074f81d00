"""FIFO admission queue of task ids."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import List, Optional

from rodin_worker.contracts import Phase
from rodin_worker.notifier import Notifier

logger = logging.getLogger(__name__)


class TaskQueue:
    """Deduplicating FIFO of task ids waiting for the worker slot.

    Safe to enqueue from any thread while the scheduler drains it.
    """

    def __init__(self, notifier: Notifier):
        self.notifier = notifier
        self._items: deque[str] = deque()
        self._lock = threading.Lock()

    def enqueue(self, task_id: str) -> bool:
        """Append *task_id* unless it is already queued.

        Emits ``queued`` on admission; a duplicate is a silent no-op.
        Returns whether the id was admitted.
        """
        with self._lock:
            if task_id in self._items:
                return False
            self._items.append(task_id)
            position = len(self._items)
        logger.info("Queued task %s (position %d)", task_id, position)
        self.notifier.send(task_id, Phase.QUEUED, "Rodin task added to queue.")
        return True

    def drain_next(self) -> Optional[str]:
        """Pop the head id, or return None when the queue is empty."""
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()

    def snapshot(self) -> List[str]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, task_id) -> bool:
        with self._lock:
            return task_id in self._items
