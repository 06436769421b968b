from __future__ import annotations

from typing import Dict, List, Optional, TypeVar

from optimist.base.cache import BaseCacheAdapter, Updater

T = TypeVar("T")


class MemoryCacheAdapter(BaseCacheAdapter):
    """Process-local cache. Each instance owns its own storage so that two
    connections never share pool state by accident."""

    def __init__(self, namespace: str = "default") -> None:
        super().__init__(namespace)
        self._items: Dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self._items.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._items[key] = bytes(value)

    async def update(self, key: str, updater: Updater[T]) -> T:
        async with self.lock:
            value, result = updater(self._items.get(key))
            if value is None:
                self._items.pop(key, None)
            else:
                self._items[key] = bytes(value)
        return result

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)

    async def clear(self) -> None:
        self._items.clear()

    async def keys(self) -> List[str]:
        return list(self._items)
