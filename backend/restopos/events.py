# Overview: In-process realtime event emitter used to notify connected clients.

from __future__ import annotations

from typing import Callable

from flask import current_app


Listener = Callable[[str, dict], None]


class EventEmitter:
    """
    Best-effort notification fan-out.

    WHY: Order and table changes are pushed to connected clients (waiter
    tablets, kitchen display). Delivery is fire-and-forget: a missing or
    broken listener never fails the business operation that emitted.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def clear(self) -> None:
        self._listeners.clear()

    def emit(self, event_name: str, payload: dict) -> None:
        for listener in list(self._listeners):
            try:
                listener(event_name, payload)
            except Exception:
                current_app.logger.exception("Event listener failed for %s", event_name)
