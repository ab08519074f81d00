from __future__ import annotations

import threading

from conftest import RecordingNotifier
from rodin_worker.task_queue import TaskQueue


def test_enqueue_twice_admits_once_and_notifies_once():
    notifier = RecordingNotifier()
    queue = TaskQueue(notifier)

    assert queue.enqueue("t1") is True
    assert queue.enqueue("t1") is False

    assert queue.snapshot() == ["t1"]
    assert notifier.events == [("t1", "queued", "Rodin task added to queue.")]


def test_drain_is_fifo_and_signals_empty():
    queue = TaskQueue(RecordingNotifier())
    for task_id in ("a", "b", "c"):
        queue.enqueue(task_id)

    assert [queue.drain_next() for _ in range(3)] == ["a", "b", "c"]
    assert queue.drain_next() is None
    assert len(queue) == 0


def test_id_can_be_requeued_after_it_was_drained():
    notifier = RecordingNotifier()
    queue = TaskQueue(notifier)
    queue.enqueue("a")
    queue.drain_next()

    assert queue.enqueue("a") is True
    assert "a" in queue
    assert notifier.phases("a") == ["queued", "queued"]


def test_concurrent_enqueue_keeps_single_entry_per_id():
    notifier = RecordingNotifier()
    queue = TaskQueue(notifier)
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        for i in range(50):
            queue.enqueue(f"t{i}")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(queue.snapshot()) == sorted(f"t{i}" for i in range(50))
    assert len(notifier.events) == 50
