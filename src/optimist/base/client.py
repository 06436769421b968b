from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Dict,
    List,
    Optional,
    Tuple,
)

if TYPE_CHECKING:
    from optimist.base.cache import BaseCacheAdapter
    from optimist.mutation import MutationSet


class BaseClient(ABC):
    """RPC client of the remote store.

    Concrete clients translate these calls to the store's wire protocol and
    raise `optimist.exception.StoreError` subclasses on failure. Session
    records are dictionaries with `name`, `create_time` and
    `approximate_last_use_time` keys.
    """

    MAX_RETRIES = 10
    """Number of retries the store recommends for aborted transactions"""

    AUTH_TOKEN_KEY = "token"

    def __init__(self, auth_cache: Optional[BaseCacheAdapter] = None) -> None:
        self._auth_cache = auth_cache

    @property
    def auth_cache(self) -> Optional[BaseCacheAdapter]:
        return self._auth_cache

    @abstractmethod
    async def create_session(self, database: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def delete_session(self, name: str) -> None:
        ...

    @abstractmethod
    async def list_sessions(self, database: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def begin_transaction(
        self, session: str, options: Dict[str, Any]
    ) -> str:
        """Begin a transaction. `options` holds either `read_write` or
        `read_only` settings."""

    @abstractmethod
    async def commit(
        self, session: str, transaction_id: str, options: Dict[str, Any]
    ) -> datetime:
        ...

    @abstractmethod
    async def rollback(self, session: str, transaction_id: str) -> None:
        ...

    @abstractmethod
    async def execute_update(
        self,
        session: str,
        transaction_id: str,
        sql: str,
        params: Any,
        options: Dict[str, Any],
    ) -> int:
        ...

    @abstractmethod
    async def execute_batch_update(
        self,
        session: str,
        transaction_id: str,
        statements: List[Dict[str, Any]],
        options: Dict[str, Any],
    ) -> Tuple[List[int], Optional[Dict[str, Any]]]:
        """Run `{"sql": ..., "params": ...}` statements in order. Returns the
        row count of every statement that succeeded and, when one failed,
        its status as `{"code": ..., "message": ...}`. Statements after a
        failed one are not run."""

    @abstractmethod
    def execute_sql(
        self,
        session: str,
        sql: str,
        params: Any,
        options: Dict[str, Any],
    ) -> AsyncIterator[Dict[str, Any]]:
        """Stream rows. `options["transaction"]` selects either an existing
        transaction (`{"id": ...}`) or a single-use read-only transaction
        (`{"single_use": {...}}`)."""

    @abstractmethod
    async def batch_write(
        self,
        session: str,
        transaction_id: Optional[str],
        mutation_set: MutationSet,
    ) -> None:
        """Apply a mutation set. Without a transaction id the write is
        committed on its own."""

    @abstractmethod
    async def execute_partitioned_update(
        self,
        session: str,
        sql: str,
        params: Any,
        options: Dict[str, Any],
    ) -> int:
        ...

    async def close(self) -> None:
        ...

    async def _fetch_auth_token(self) -> Optional[Tuple[str, float]]:
        """Fetch a fresh token and the number of seconds it stays valid.
        Clients that do not authenticate return `None`."""
        return None

    async def auth_token(self) -> Optional[str]:
        """The current auth token, read from the auth cache when one is set
        and the cached token has not expired"""
        if self._auth_cache is not None:
            cached = await self._auth_cache.get(self.AUTH_TOKEN_KEY)
            if cached:
                entry = json.loads(cached)
                if entry["expires_at"] > time.time():
                    return entry["token"]

        fetched = await self._fetch_auth_token()
        if fetched is None:
            return None
        token, ttl = fetched
        if self._auth_cache is not None:
            await self._auth_cache.set(
                self.AUTH_TOKEN_KEY,
                json.dumps(
                    {"token": token, "expires_at": time.time() + ttl}
                ).encode(),
            )
        return token
