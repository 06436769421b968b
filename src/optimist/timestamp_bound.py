"""
Timestamp bounds describe how stale a read-only view of the data may be.

They are immutable value objects translated into the RPC options used by
single-use reads and read-only snapshots.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Union

from optimist.values import Duration, Timestamp, to_timestamp


class TimestampBound(ABC):
    @abstractmethod
    def transaction_options(self) -> Dict[str, Any]:
        """Options for a read, a query or a read-only transaction"""


@dataclass(frozen=True)
class Strong(TimestampBound):
    """Read the latest committed data"""

    def transaction_options(self) -> Dict[str, Any]:
        return {"strong": True}


@dataclass(frozen=True, init=False)
class ExactStaleness(TimestampBound):
    """Read data exactly `duration` old. Staleness of at least 10 seconds
    gives the best performance benefit."""

    duration: Duration

    def __init__(self, duration: Union[int, float, timedelta, Duration]):
        object.__setattr__(self, "duration", Duration.create(duration))

    def transaction_options(self) -> Dict[str, Any]:
        return {"exact_staleness": self.duration}


@dataclass(frozen=True, init=False)
class MaxStaleness(TimestampBound):
    duration: Duration

    def __init__(self, duration: Union[int, float, timedelta, Duration]):
        object.__setattr__(self, "duration", Duration.create(duration))

    def transaction_options(self) -> Dict[str, Any]:
        return {"max_staleness": self.duration}


@dataclass(frozen=True, init=False)
class ReadTimestamp(TimestampBound):
    timestamp: Timestamp

    def __init__(self, timestamp: Union[datetime, Timestamp]):
        object.__setattr__(self, "timestamp", to_timestamp(timestamp))

    def transaction_options(self) -> Dict[str, Any]:
        return {"read_timestamp": self.timestamp}


@dataclass(frozen=True, init=False)
class MinReadTimestamp(TimestampBound):
    timestamp: Timestamp

    def __init__(self, timestamp: Union[datetime, Timestamp]):
        object.__setattr__(self, "timestamp", to_timestamp(timestamp))

    def transaction_options(self) -> Dict[str, Any]:
        return {"min_read_timestamp": self.timestamp}


READ_ONLY_OPTIONS = (
    "single_use",
    "strong",
    "exact_staleness",
    "max_staleness",
    "read_timestamp",
    "min_read_timestamp",
)


def is_read_only(options: Dict[str, Any]) -> bool:
    return any(options.get(option) for option in READ_ONLY_OPTIONS)
