from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple, TypeVar

from optimist.exception import InvalidArgumentError

T = TypeVar("T")
Updater = Callable[[Optional[bytes]], Tuple[Optional[bytes], T]]


class BaseCacheAdapter(ABC):
    """Key to blob storage used for session pool metadata and auth tokens.

    Entries are opaque bytes scoped by a namespace. Read-modify-write cycles
    go through `update`, which adapters run atomically against every other
    user of the same backing store.
    """

    def __init__(self, namespace: str) -> None:
        if not namespace or not isinstance(namespace, str):
            raise InvalidArgumentError(
                "namespace: must be a string at least 1 character long"
            )
        self._namespace = namespace
        self._lock: Optional[asyncio.Lock] = None

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def __str__(self) -> str:
        return f"<{self.__class__.__name__} {self.namespace}>"

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        ...

    @abstractmethod
    async def set(self, key: str, value: bytes) -> None:
        ...

    @abstractmethod
    async def update(self, key: str, updater: Updater[T]) -> T:
        """Atomically replace the value of `key`

        Args:
            key (str): The entry to update
            updater (Updater): Called once with the current value, or `None`
                when there is none. Returns the new value, `None` to delete
                the entry, and a result handed back to the caller. Must not
                await.

        Returns:
            T: The result returned by `updater`
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Remove every entry of this namespace"""

    @abstractmethod
    async def keys(self) -> List[str]:
        ...

    async def open(self) -> None:
        ...

    async def close(self) -> None:
        ...
