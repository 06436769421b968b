"""
Lifecycle events fired by a connection.

The dispatcher is owned by one connection (never a process-wide bus) and is
fire-and-forget: a failing listener is logged and never raises back into the
transaction machinery.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from inspect import isawaitable
from typing import Any, Callable, Dict, List, Optional, Type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionEvent:
    connection_name: str


@dataclass(frozen=True)
class TransactionBeginning(ConnectionEvent):
    level: int = 1


@dataclass(frozen=True)
class TransactionCommitting(ConnectionEvent):
    ...


@dataclass(frozen=True)
class TransactionCommitted(ConnectionEvent):
    level: int = 1


@dataclass(frozen=True)
class TransactionRolledBack(ConnectionEvent):
    ...


@dataclass(frozen=True)
class MutationApplied(ConnectionEvent):
    table: str = ""
    kind: str = ""
    values: Any = field(default_factory=list)


@dataclass(frozen=True)
class QueryExecuted(ConnectionEvent):
    sql: str = ""
    bindings: Any = field(default_factory=list)
    time: float = 0.0
    """Elapsed milliseconds"""


EventHandler = Callable[[ConnectionEvent], Any]


class EventDispatcher:
    def __init__(self) -> None:
        self._handlers: Dict[Type[ConnectionEvent], List[EventHandler]] = {}
        self._wildcard_handlers: List[EventHandler] = []

    def listen(
        self,
        event_type: Optional[Type[ConnectionEvent]],
        handler: EventHandler,
    ) -> None:
        """Subscribe to events of a given type

        Args:
            event_type (Type[ConnectionEvent], optional): The event class.
                Passing `None` subscribes to every event.
            handler (EventHandler): Sync or async callable receiving the
                event
        """
        if event_type is None:
            handlers = self._wildcard_handlers
        else:
            handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

    def forget(
        self,
        event_type: Optional[Type[ConnectionEvent]],
        handler: EventHandler,
    ) -> bool:
        if event_type is None:
            handlers = self._wildcard_handlers
        else:
            handlers = self._handlers.get(event_type, [])
        try:
            handlers.remove(handler)
        except ValueError:
            return False
        return True

    def has_listeners(self, event_type: Type[ConnectionEvent]) -> bool:
        return bool(self._wildcard_handlers or self._handlers.get(event_type))

    async def dispatch(self, event: ConnectionEvent) -> None:
        handlers = [
            *self._handlers.get(type(event), []),
            *self._wildcard_handlers,
        ]
        for handler in handlers:
            try:
                result = handler(event)
                if isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Listener %r failed for %s", handler, type(event).__name__
                )
