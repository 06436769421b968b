from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from optimist.connection import Connection
    from optimist.extension.statistics import QueryCounter


class ConnectionRegistry(dict):
    """Named connections of the process"""

    _singleton = None

    def __new__(cls, *args, **kwargs):
        if cls._singleton is None:
            cls.reset()
        return cls._singleton

    def register(self, connection: Connection) -> None:
        self[connection.name] = connection

    @classmethod
    def reset(cls):
        cls._singleton = super().__new__(cls)  # type: ignore


class CounterRegistry(dict):
    """Query counters, keyed by connection name"""

    _singleton = None

    def __new__(cls, *args, **kwargs):
        if cls._singleton is None:
            cls.reset()
        return cls._singleton

    def register(self, counter: QueryCounter) -> None:
        self[counter.connection_name] = counter

    @classmethod
    def reset(cls):
        cls._singleton = super().__new__(cls)  # type: ignore
