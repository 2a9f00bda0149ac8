"""
Depstree - Events.

============================================================
RESPONSIBILITY
============================================================
Observer registry for tree notifications.

- One listener list per event kind
- Listener failures are logged, never propagated
- Errors are reported even when nobody listens

Listeners are called synchronously from the scheduler's
bookkeeping. A listener returning an awaitable has it scheduled
as a task on the running loop instead of being awaited.

============================================================
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Set

from .exceptions import DepsTreeException


logger = logging.getLogger(__name__)


# ============================================================
# EVENT KINDS
# ============================================================

class TreeEvent(Enum):
    """Notification kinds emitted by a tree."""

    MODULE_STATE = "module-state"
    """(name, state): a module changed state."""

    STATE = "state"
    """(state): the tree changed state."""

    STARTED = "started"
    """(): the tree reached up."""

    STOPPED = "stopped"
    """(): the tree reached down."""

    ERROR = "error"
    """(error, module_name): a module operation failed."""


Listener = Callable[..., Any]


# ============================================================
# EVENT HUB
# ============================================================

class EventHub:
    """Per-kind listener registry with safe dispatch."""

    def __init__(self):
        self._listeners: Dict[TreeEvent, List[Listener]] = {kind: [] for kind in TreeEvent}
        self._pending: Set[asyncio.Task] = set()

    def register_listener(self, event: TreeEvent, listener: Listener) -> None:
        """Register a listener for one event kind."""
        self._listeners[TreeEvent(event)].append(listener)

    def unregister_listener(self, event: TreeEvent, listener: Listener) -> None:
        """Unregister a listener. Unknown listeners are ignored."""
        listeners = self._listeners[TreeEvent(event)]
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: TreeEvent) -> int:
        """Number of listeners registered for an event kind."""
        return len(self._listeners[TreeEvent(event)])

    def emit(self, event: TreeEvent, *args: Any) -> None:
        """Call every listener of an event kind with args."""
        for listener in list(self._listeners[event]):
            try:
                result = listener(*args)
            except Exception as e:
                logger.error(f"Listener error | event={event.value} | {e}", exc_info=True)
                continue
            if inspect.isawaitable(result):
                self._schedule(event, result)

    def report_error(self, error: BaseException, module_name: str = "") -> None:
        """
        Forward an error to ERROR listeners.

        Falls back to the log when no listener is registered.
        """
        if self.listener_count(TreeEvent.ERROR):
            self.emit(TreeEvent.ERROR, error, module_name)
            return
        detail = error.to_log_format() if isinstance(error, DepsTreeException) else repr(error)
        logger.error(
            f"Unhandled module error | module={module_name or '-'} | {detail}",
            exc_info=(type(error), error, error.__traceback__),
        )

    def _schedule(self, event: TreeEvent, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(
                    f"Async listener error | event={event.value} | {exc}",
                    exc_info=(type(exc), exc, exc.__traceback__),
                )

        task.add_done_callback(_done)


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "TreeEvent",
    "Listener",
    "EventHub",
]
