"""Progress notifications keyed by task id."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable

import requests

from rodin_worker.contracts import Phase

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Best-effort, fire-and-forget progress channel.

    Callers send in transition order; implementations must not reorder
    messages for the same task id.
    """

    @abstractmethod
    def send(self, task_id: str, phase: Phase | str, message: str) -> None:
        ...


def _phase_value(phase) -> str:
    return phase.value if isinstance(phase, Phase) else str(phase)


class LoggingNotifier(Notifier):
    """Writes every notification to the log."""

    def send(self, task_id, phase, message):
        logger.info("[%s] %s: %s", task_id, _phase_value(phase), message)


class WebhookNotifier(Notifier):
    """POSTs notifications as JSON to a webhook URL.

    Delivery failures are logged and dropped.
    """

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout

    def send(self, task_id, phase, message):
        payload = {"taskId": task_id, "status": _phase_value(phase), "message": message}
        try:
            resp = requests.post(self.url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Notification %s for %s not delivered: %s",
                           payload["status"], task_id, exc)


class CompositeNotifier(Notifier):
    """Fans each notification out to several notifiers in order."""

    def __init__(self, notifiers: Iterable[Notifier]):
        self.notifiers = list(notifiers)

    def send(self, task_id, phase, message):
        for notifier in self.notifiers:
            notifier.send(task_id, phase, message)
