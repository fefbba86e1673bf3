"""
Task status change notification.

After every successful status write the tracker calls ``notify`` with the
updated Analysis. Delivery is fire-and-forget: a failing subscriber is
logged and never fails the write that triggered it.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List

from flowgate.core.schemas.analysis import Analysis
from flowgate.utils.logger import get_logger

logger = get_logger(__name__)

TASK_CHANGE_MESSAGE = "task status change"

Subscriber = Callable[[Dict[str, Any]], None]


def task_change_payload(analysis: Analysis) -> Dict[str, Any]:
    """Message pushed to task-change listeners."""
    return {
        "msg": TASK_CHANGE_MESSAGE,
        "jobNo": analysis.job_number,
        "analysisId": analysis.id,
        "status": analysis.analysis_status.value,
    }


class Notifier(ABC):
    """Receives every successful status write."""

    @abstractmethod
    def notify(self, analysis: Analysis) -> None:
        pass


class NullNotifier(Notifier):
    def notify(self, analysis: Analysis) -> None:
        logger.debug(f"Status change for job {analysis.job_number} (no listeners)")


class FanoutNotifier(Notifier):
    """Delivers the task-change payload to every registered subscriber."""

    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    def notify(self, analysis: Analysis) -> None:
        payload = task_change_payload(analysis)
        with self._lock:
            subscribers = list(self._subscribers)

        for subscriber in subscribers:
            try:
                subscriber(payload)
            except Exception as e:
                logger.warning(
                    f"Task change subscriber failed for job {analysis.job_number}: {e}"
                )
