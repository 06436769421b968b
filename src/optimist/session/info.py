from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union


def _to_datetime(value: Union[None, str, float, datetime]) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass(frozen=True)
class SessionInfo:
    """Metadata about a session as reported by the store"""

    full_name: str
    name: str
    created_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> SessionInfo:
        full_name = record["name"]
        return cls(
            full_name=full_name,
            name=full_name.rsplit("/", 1)[-1] or "undefined",
            created_at=_to_datetime(record.get("create_time")),
            last_used_at=_to_datetime(
                record.get("approximate_last_use_time")
            ),
        )
