"""Observer registry used by queue sessions and consumers to publish lifecycle events."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from types import MappingProxyType
from typing import Any, Callable, DefaultDict, List, Mapping

LOGGER = logging.getLogger("sqs_toolkit.sqs.events")

RUNNING = "running"
STOPPED = "stopped"
INITIALIZED = "initialized"
FAILED_INIT = "failed-init"
SENT = "sent"
SENT_FAILED = "sent-failed"
PROCESSED = "processed"
FAILED = "failed"

EVENT_NAMES = frozenset({RUNNING, STOPPED, INITIALIZED, FAILED_INIT, SENT, SENT_FAILED, PROCESSED, FAILED})

Listener = Callable[..., Any]


def freeze(value: Any) -> Any:
    """Return a read-only view of mappings (recursively) and tuples for lists."""

    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, list):
        return tuple(freeze(item) for item in value)
    return value


class EventEmitter:
    """Named-event callback registry.

    Listeners receive frozen copies of the event arguments. A failing listener
    is logged and never interrupts the emitter; coroutine listeners are
    scheduled on the running loop.
    """

    def __init__(self) -> None:
        self._listeners: DefaultDict[str, List[Listener]] = defaultdict(list)
        self._tasks: set[asyncio.Task[Any]] = set()

    def on(self, event: str, listener: Listener) -> Listener:
        if event not in EVENT_NAMES:
            raise ValueError(f"Unknown event: {event}")
        self._listeners[event].append(listener)
        return listener

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> None:
        payload = tuple(freeze(arg) for arg in args)
        for listener in list(self._listeners.get(event, [])):
            try:
                result = listener(*payload)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._task_done)
            except Exception:  # noqa: BLE001 - listeners must not break the engine
                LOGGER.exception("event_listener_failed", extra={"event": event})

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            LOGGER.error(
                "event_listener_failed",
                exc_info=task.exception(),
                extra={"event": "async"},
            )
