from __future__ import annotations

from collections import namedtuple
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Union
from urllib.parse import parse_qsl, urlparse

from optimist.exception import InvalidArgumentError

RESERVED_NAMES = ("_auth",)

QueryMapping = namedtuple("QueryMapping", ("key", "cast"))

SESSION_POOL_MAPPING = {
    "min_sessions": QueryMapping("min_sessions", int),
    "max_sessions": QueryMapping("max_sessions", int),
    "session_expiration": QueryMapping("session_expiration", float),
}
CONNECTION_MAPPING = {
    "name": QueryMapping("name", str),
    "session_not_found_mode": QueryMapping(
        "session_not_found_mode", lambda value: SessionNotFoundMode.parse(value)
    ),
    "max_attempts": QueryMapping("max_attempts", int),
    "cache_path": QueryMapping("cache_path", str),
}


class SessionNotFoundMode(Enum):
    """What to do when the store reports that a session no longer exists"""

    MAINTAIN_SESSION_POOL = "MAINTAIN_SESSION_POOL"
    """Prune the pool and retry once"""

    CLEAR_SESSION_POOL = "CLEAR_SESSION_POOL"
    """Prune the pool and retry, then clear the whole pool and retry once
    more"""

    THROW_EXCEPTION = "THROW_EXCEPTION"
    """Surface the error to the caller"""

    @classmethod
    def parse(
        cls, value: Union[str, SessionNotFoundMode]
    ) -> SessionNotFoundMode:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError as e:
            raise InvalidArgumentError(
                f"Unsupported session_not_found_mode [{value}]."
            ) from e


@dataclass(frozen=True)
class SessionPoolConfig:
    min_sessions: int = 1
    max_sessions: int = 500
    session_expiration: float = 3000.0
    """Seconds a pooled session is trusted after its last use. The store
    deletes sessions idle for an hour."""

    def __post_init__(self):
        if self.min_sessions < 0:
            raise InvalidArgumentError("min_sessions: must not be negative")
        if self.max_sessions < max(self.min_sessions, 1):
            raise InvalidArgumentError(
                "max_sessions: must be at least 1 and not below min_sessions"
            )
        if self.session_expiration <= 0:
            raise InvalidArgumentError(
                "session_expiration: must be a positive number of seconds"
            )


@dataclass(frozen=True)
class ConnectionConfig:
    project: str
    instance: str
    database: str
    name: str = "main"
    session_not_found_mode: SessionNotFoundMode = (
        SessionNotFoundMode.CLEAR_SESSION_POOL
    )
    max_attempts: Optional[int] = None
    cache_path: Optional[str] = None
    session_pool: SessionPoolConfig = field(default_factory=SessionPoolConfig)

    def __post_init__(self):
        if self.name in RESERVED_NAMES:
            raise InvalidArgumentError(
                f'Connection name "{self.name}" is reserved.'
            )
        for attribute in ("project", "instance", "database"):
            value = getattr(self, attribute)
            if not isinstance(value, str) or not len(value) > 0:
                raise InvalidArgumentError(
                    f"{attribute}: must be a string at least 1 character long"
                )
        if self.max_attempts is not None and self.max_attempts < 1:
            raise InvalidArgumentError("max_attempts: must be at least 1")
        object.__setattr__(
            self,
            "session_not_found_mode",
            SessionNotFoundMode.parse(self.session_not_found_mode),
        )

    @property
    def database_name(self) -> str:
        """Fully qualified database name used by the store"""
        return (
            f"projects/{self.project}/instances/{self.instance}"
            f"/databases/{self.database}"
        )

    def with_name(self, name: str) -> ConnectionConfig:
        return replace(self, name=name)

    @classmethod
    def from_dsn(cls, dsn: str) -> ConnectionConfig:
        """Build a config from a DSN

        Example:

            ```
            spanner://my-project/my-instance/my-db?min_sessions=10
            ```

        Args:
            dsn (str): The data source name

        Raises:
            InvalidArgumentError: If the DSN is malformed

        Returns:
            ConnectionConfig: The parsed config
        """
        parts = urlparse(dsn)
        path = [segment for segment in parts.path.split("/") if segment]
        if not parts.netloc or len(path) != 2:
            raise InvalidArgumentError(
                f"Cannot parse DSN {dsn!r}. Expected "
                "scheme://project/instance/database"
            )
        connection_kwargs = {}
        pool_kwargs = {}
        for key, value in parse_qsl(parts.query):
            if key in CONNECTION_MAPPING:
                mapping = CONNECTION_MAPPING[key]
                connection_kwargs[mapping.key] = mapping.cast(value)
            elif key in SESSION_POOL_MAPPING:
                mapping = SESSION_POOL_MAPPING[key]
                pool_kwargs[mapping.key] = mapping.cast(value)
            else:
                raise InvalidArgumentError(f"Unknown DSN option {key!r}")
        return cls(
            project=parts.netloc,
            instance=path[0],
            database=path[1],
            session_pool=SessionPoolConfig(**pool_kwargs),
            **connection_kwargs,
        )
