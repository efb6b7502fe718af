"""Call events for observing publishes and message handling.

Each publish and each handled delivery produces a ``CallInfo`` that is
broadcast to every registered observer as ``start``, then ``finish`` or
``error``. Observers subclass ``QueueObserver`` and override the hooks they
care about:

>>> class Counting(QueueObserver):
...     def __init__(self):
...         self.errors = 0
...     def on_error(self, call_info):
...         self.errors += 1
>>> stream = EventStream([Counting()])
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from logical_queues.constants import EVENT_ERROR, EVENT_FINISH, EVENT_START

logger = logging.getLogger(__name__)


@dataclass
class CallInfo:
    """Ephemeral record of one operation; never persisted."""
    operation_name: str
    message: Any
    logical_name: Optional[str] = None
    error: Optional[BaseException] = None


class QueueObserver:
    """Observer interface for call events. All hooks default to no-ops."""

    def on_start(self, call_info: CallInfo) -> None:
        pass

    def on_finish(self, call_info: CallInfo) -> None:
        pass

    def on_error(self, call_info: CallInfo) -> None:
        pass


class EventStream:
    """Fan-out of call events to a list of observers."""

    def __init__(self, observers: Optional[Iterable[QueueObserver]] = None) -> None:
        self._observers: list[QueueObserver] = list(observers or [])

    @property
    def observers(self) -> list[QueueObserver]:
        return list(self._observers)

    def add_observer(self, observer: QueueObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: QueueObserver) -> None:
        self._observers.remove(observer)

    def emit(self, event: str, call_info: CallInfo) -> None:
        """Deliver ``event`` to every observer.

        A failing observer is logged and does not stop delivery to the
        others or the operation being observed.
        """
        hook_name = {EVENT_START: "on_start", EVENT_FINISH: "on_finish", EVENT_ERROR: "on_error"}[event]
        for observer in self._observers:
            try:
                getattr(observer, hook_name)(call_info)
            except Exception:  # noqa: BLE001
                logger.exception("Queue observer failed", extra={"event": event, "operation": call_info.operation_name})

    def start(self, call_info: CallInfo) -> None:
        self.emit(EVENT_START, call_info)

    def finish(self, call_info: CallInfo) -> None:
        self.emit(EVENT_FINISH, call_info)

    def error(self, call_info: CallInfo, error: Optional[BaseException] = None) -> None:
        if error is not None:
            call_info.error = error
        self.emit(EVENT_ERROR, call_info)
