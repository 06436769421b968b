from importlib.metadata import version

from .base.cache import BaseCacheAdapter
from .base.client import BaseClient
from .config import ConnectionConfig, SessionNotFoundMode, SessionPoolConfig
from .connection import Connection
from .mutation import MutationKind, MutationSet
from .optimist import Optimist
from .session.pool import SessionPool
from .timestamp_bound import (
    ExactStaleness,
    MaxStaleness,
    MinReadTimestamp,
    ReadTimestamp,
    Strong,
)
from .values import Duration, KeyRange, KeySet, Timestamp

__version__ = version("optimist")

__all__ = (
    "BaseCacheAdapter",
    "BaseClient",
    "Connection",
    "ConnectionConfig",
    "Duration",
    "ExactStaleness",
    "KeyRange",
    "KeySet",
    "MaxStaleness",
    "MinReadTimestamp",
    "MutationKind",
    "MutationSet",
    "Optimist",
    "ReadTimestamp",
    "SessionNotFoundMode",
    "SessionPool",
    "SessionPoolConfig",
    "Strong",
    "Timestamp",
)
