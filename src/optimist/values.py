from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, List, Sequence, Union

from optimist.exception import InvalidArgumentError

NANOS_PER_SECOND = 1_000_000_000


@dataclass(frozen=True)
class Timestamp:
    """The store's native timestamp representation. Always UTC with
    nanosecond precision."""

    value: datetime
    nanoseconds: int = 0

    def __post_init__(self):
        value = self.value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        else:
            value = value.astimezone(timezone.utc)
        object.__setattr__(self, "value", value)
        if not self.nanoseconds:
            object.__setattr__(self, "nanoseconds", value.microsecond * 1000)

    def get(self) -> datetime:
        return self.value

    def format_as_string(self) -> str:
        return (
            self.value.strftime("%Y-%m-%dT%H:%M:%S.")
            + f"{self.nanoseconds:09d}Z"
        )

    def __str__(self) -> str:
        return self.format_as_string()


@dataclass(frozen=True)
class Duration:
    seconds: int = 0
    nanos: int = 0

    @classmethod
    def create(cls, value: Union[int, float, timedelta, Duration]) -> Duration:
        if isinstance(value, Duration):
            return value
        if isinstance(value, timedelta):
            value = value.total_seconds()
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise InvalidArgumentError(
                f"Cannot create a duration from {type(value).__name__}"
            )
        if value < 0:
            raise InvalidArgumentError("Duration cannot be negative")
        if isinstance(value, int):
            return cls(value, 0)
        seconds, nanos = divmod(
            round(value * NANOS_PER_SECOND), NANOS_PER_SECOND
        )
        return cls(seconds, nanos)

    def to_timedelta(self) -> timedelta:
        return timedelta(seconds=self.seconds, microseconds=self.nanos / 1000)


@dataclass(frozen=True)
class KeyRange:
    start: Sequence[Any] = ()
    end: Sequence[Any] = ()
    start_closed: bool = True
    end_closed: bool = True

    def to_dict(self):
        start = "start_closed" if self.start_closed else "start_open"
        end = "end_closed" if self.end_closed else "end_open"
        return {start: list(self.start), end: list(self.end)}


@dataclass(frozen=True)
class KeySet:
    keys: List[Any] = field(default_factory=list)
    ranges: List[KeyRange] = field(default_factory=list)
    all: bool = False

    def to_dict(self):
        data: dict = {}
        if self.keys:
            data["keys"] = list(self.keys)
        if self.ranges:
            data["ranges"] = [key_range.to_dict() for key_range in self.ranges]
        if self.all:
            data["all"] = True
        return data


def to_timestamp(value: Union[datetime, Timestamp]) -> Timestamp:
    if isinstance(value, Timestamp):
        return value
    return Timestamp(value)
