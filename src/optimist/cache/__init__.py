from .memory import MemoryCacheAdapter
from .sqlite import SQLiteCacheAdapter

__all__ = ("MemoryCacheAdapter", "SQLiteCacheAdapter")
