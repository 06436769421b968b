from .cache import BaseCacheAdapter
from .client import BaseClient

__all__ = ("BaseCacheAdapter", "BaseClient")
