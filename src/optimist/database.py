from __future__ import annotations

import logging
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Awaitable,
    Dict,
    Optional,
    TypeVar,
)

from optimist.base.client import BaseClient
from optimist.exception import (
    LogicError,
    NotFoundError,
    caused_by_session_not_found,
)
from optimist.session.pool import SessionHandle, SessionPool
from optimist.timestamp_bound import READ_ONLY_OPTIONS
from optimist.transaction.handle import SnapshotHandle, TransactionHandle

if TYPE_CHECKING:
    from optimist.mutation import MutationSet

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Database:
    """Handle to one database of the store.

    A handle leases a single session lazily, on first use, and gives it back
    when it is closed. Calls failing with "session not found" mark the
    session invalid so that it is dropped instead of being returned to the
    pool.
    """

    def __init__(
        self,
        client: BaseClient,
        name: str,
        session_pool: Optional[SessionPool] = None,
    ) -> None:
        self.client = client
        self.name = name
        self.session_pool = session_pool
        self._session: Optional[SessionHandle] = None
        self._closed = False

    def __str__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"

    @property
    def closed(self) -> bool:
        return self._closed

    def session_name(self) -> Optional[str]:
        return self._session.name if self._session else None

    async def session(self) -> SessionHandle:
        if self._closed:
            raise LogicError(f"{self} is closed")
        if self._session is None:
            if self.session_pool is not None:
                self._session = await self.session_pool.acquire()
            else:
                record = await self.client.create_session(self.name)
                self._session = SessionHandle(
                    record["name"], 0.0, pooled=False
                )
        return self._session

    async def _guard(self, session: SessionHandle, call: Awaitable[T]) -> T:
        try:
            return await call
        except Exception as e:
            if caused_by_session_not_found(e):
                session.invalidate()
            raise

    async def _stream(
        self,
        session: SessionHandle,
        sql: str,
        params: Any,
        options: Dict[str, Any],
    ) -> AsyncIterator[Dict[str, Any]]:
        try:
            async for row in self.client.execute_sql(
                session.name, sql, params, options
            ):
                yield row
        except Exception as e:
            if caused_by_session_not_found(e):
                session.invalidate()
            raise

    async def transaction(self, tag: Optional[str] = None) -> TransactionHandle:
        """Begin a read-write transaction on the leased session"""
        session = await self.session()
        options: Dict[str, Any] = {"read_write": {}}
        if tag is not None:
            options["request_options"] = {"transaction_tag": tag}
        transaction_id = await self._guard(
            session, self.client.begin_transaction(session.name, options)
        )
        return TransactionHandle(self, session, transaction_id, tag=tag)

    async def snapshot(self, options: Dict[str, Any]) -> SnapshotHandle:
        """Begin a read-only transaction with the given timestamp bound
        options"""
        session = await self.session()
        transaction_id = await self._guard(
            session,
            self.client.begin_transaction(
                session.name,
                {"read_only": {**options, "return_read_timestamp": True}},
            ),
        )
        return SnapshotHandle(self, session, transaction_id, options)

    async def execute(
        self, sql: str, params: Any, options: Dict[str, Any]
    ) -> AsyncIterator[Dict[str, Any]]:
        """Single-use read outside of any transaction"""
        session = await self.session()
        options = dict(options)
        bound = {
            key: options.pop(key)
            for key in READ_ONLY_OPTIONS
            if key in options and key != "single_use"
        }
        options.pop("single_use", None)
        options["transaction"] = {
            "single_use": {"read_only": bound or {"strong": True}}
        }
        async for row in self._stream(session, sql, params, options):
            yield row

    async def batch_write(self, mutation_set: MutationSet) -> None:
        session = await self.session()
        await self._guard(
            session, self.client.batch_write(session.name, None, mutation_set)
        )

    async def execute_partitioned_update(
        self, sql: str, params: Any, options: Optional[Dict[str, Any]] = None
    ) -> int:
        session = await self.session()
        return await self._guard(
            session,
            self.client.execute_partitioned_update(
                session.name, sql, params, options or {}
            ),
        )

    async def close(self) -> None:
        """Give the leased session back. An invalid session is dropped."""
        self._closed = True
        session, self._session = self._session, None
        if session is None:
            return
        if self.session_pool is not None:
            await self.session_pool.release(session)
        elif session.valid:
            try:
                await self.client.delete_session(session.name)
            except NotFoundError:
                logger.debug("Session %s was already gone", session.name)
