"""Typed queue events and a small publish/subscribe bus.

The queue publishes events instead of calling a single callback slot, so
any number of consumers (the sync engine, a status display, tests) can
react independently. A failing subscriber is logged and never affects
the publisher or other subscribers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, TypeVar

from ..board.models import Board
from ..remote.models import SyncAck
from .models import QueueEntry, QueueStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueChanged:
    """The queue contents or its syncing/online flags changed."""

    status: QueueStatus


@dataclass(frozen=True)
class EntrySynced:
    """The authority accepted an entry."""

    entry: QueueEntry
    ack: SyncAck


@dataclass(frozen=True)
class EntryReverted:
    """An entry was abandoned; its optimistic effect must be undone."""

    entry: QueueEntry
    reason: str


@dataclass(frozen=True)
class EntryConflicted:
    """The authority rejected an entry because its version moved on.

    ``server_state`` is the authority's board when the rejection carried
    it, otherwise ``None``.
    """

    entry: QueueEntry
    server_state: Board | None = None


QueueEvent = QueueChanged | EntrySynced | EntryReverted | EntryConflicted

_E = TypeVar("_E")


class EventBus:
    """Synchronous fan-out of queue events to subscribers."""

    def __init__(self) -> None:
        self._handlers: list[tuple[type | None, Callable]] = []

    def subscribe(
        self,
        handler: Callable[[_E], None],
        event_type: type[_E] | None = None,
    ) -> Callable[[], None]:
        """Register *handler* for *event_type* (all events when ``None``).

        Returns:
            A function that removes the subscription.
        """
        item = (event_type, handler)
        self._handlers.append(item)

        def _unsubscribe() -> None:
            if item in self._handlers:
                self._handlers.remove(item)

        return _unsubscribe

    def publish(self, event: object) -> None:
        for event_type, handler in list(self._handlers):
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler %r failed for %s",
                    handler,
                    type(event).__name__,
                )
