from __future__ import annotations

import logging
import time
from datetime import datetime
from inspect import isawaitable
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Type,
    TypeVar,
)

from optimist.base.client import BaseClient
from optimist.config import ConnectionConfig
from optimist.database import Database
from optimist.events import (
    ConnectionEvent,
    EventDispatcher,
    EventHandler,
    QueryExecuted,
)
from optimist.exception import (
    AbortedError,
    LogicError,
    NotSupportedError,
    OptimistError,
    QueryError,
    StoreError,
)
from optimist.mutation import DeleteKeys, MutationBatcher, MutationKind, Rows
from optimist.partitioned import PartitionedDmlExecutor
from optimist.session.info import SessionInfo
from optimist.session.pool import SessionPool
from optimist.session.recovery import SessionRecoveryPolicy
from optimist.snapshot import SnapshotReader
from optimist.timestamp_bound import TimestampBound, is_read_only
from optimist.transaction.coordinator import (
    TransactionCallback,
    TransactionCoordinator,
)
from optimist.transaction.handle import TransactionHandle
from optimist.transaction.records import AfterCommitCallback
from optimist.values import to_timestamp

logger = logging.getLogger(__name__)

T = TypeVar("T")
Bindings = Any
StatementCallback = Callable[[str, Bindings], Awaitable[T]]

BATCH_UPDATE_PREFIX = "insert or "


def passes_through(error: BaseException) -> bool:
    """Aborts and usage errors reach the caller unchanged. Every other
    failure of a statement is wrapped in `QueryError`."""
    if isinstance(error, AbortedError):
        return True
    return isinstance(error, OptimistError) and not isinstance(
        error, StoreError
    )


def runs_as_batch_update(sql: str) -> bool:
    return sql.lstrip().lower().startswith(BATCH_UPDATE_PREFIX)


class Connection:
    """A named connection to one database of the store.

    The connection composes the pieces that make up the execution core: a
    transaction coordinator, a snapshot reader, a mutation batcher, a
    partitioned DML executor, an optional session pool and the recovery
    policy for sessions the store no longer knows about.

    Example:

    ```python
    connection = Connection(config, client, session_pool=pool)
    await connection.connect()

    async def transfer(conn):
        await conn.affecting_statement(
            "UPDATE accounts SET balance = balance - @amount WHERE id = @id",
            {"amount": 10, "id": 1},
        )

    await connection.transaction(transfer)
    ```
    """

    def __init__(
        self,
        config: ConnectionConfig,
        client: BaseClient,
        session_pool: Optional[SessionPool] = None,
        events: Optional[EventDispatcher] = None,
    ) -> None:
        self.config = config
        self.client = client
        self.session_pool = session_pool
        self.events = events or EventDispatcher()
        self.recovery = SessionRecoveryPolicy(config.session_not_found_mode)
        self.transactions = TransactionCoordinator(self)
        self.snapshots = SnapshotReader(self)
        self.mutations = MutationBatcher(self)
        self.partitioned = PartitionedDmlExecutor(self)

        self._database: Optional[Database] = None
        self._request_tag: Optional[str] = None
        self._transaction_tag: Optional[str] = None
        self._records_modified = False

    def __str__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def default_attempts(self) -> int:
        return self.config.max_attempts or self.client.MAX_RETRIES + 1

    # Lifecycle

    async def connect(self) -> Connection:
        if self._database is None or self._database.closed:
            self._database = Database(
                self.client, self.config.database_name, self.session_pool
            )
            logger.debug("Connected %s to %s", self, self._database)
        return self

    async def disconnect(self) -> None:
        database, self._database = self._database, None
        if database is not None:
            await database.close()
            logger.debug("Disconnected %s", self)

    async def reconnect(self) -> Connection:
        await self.disconnect()
        return await self.connect()

    async def reconnect_if_missing_connection(self) -> None:
        if not self.is_connected():
            await self.reconnect()

    def is_connected(self) -> bool:
        return self._database is not None and not self._database.closed

    async def get_database(self) -> Database:
        await self.reconnect_if_missing_connection()
        assert self._database is not None
        return self._database

    # State

    def in_transaction(self) -> bool:
        return self.transactions.in_transaction()

    def transaction_level(self) -> int:
        return self.transactions.level

    def in_snapshot(self) -> bool:
        return self.snapshots.in_snapshot()

    def transaction_handle(self) -> Optional[TransactionHandle]:
        return self.transactions.current

    def has_session_pool(self) -> bool:
        return self.session_pool is not None

    # Tags

    @property
    def request_tag(self) -> Optional[str]:
        return self._request_tag

    @property
    def transaction_tag(self) -> Optional[str]:
        return self._transaction_tag

    def set_request_tag(self, tag: Optional[str]) -> Connection:
        self._request_tag = tag
        return self

    def set_transaction_tag(self, tag: Optional[str]) -> Connection:
        self._transaction_tag = tag
        return self

    def request_options(self) -> Dict[str, Any]:
        if self._request_tag is None:
            return {}
        return {"request_options": {"request_tag": self._request_tag}}

    # Transactions

    async def transaction(
        self,
        callback: TransactionCallback,
        attempts: Optional[int] = None,
    ) -> Any:
        """Run `callback` inside a read-write transaction

        The callback receives this connection and may be replayed when the
        store aborts the transaction. Calls made from inside another
        transaction are nested virtually and share the outer transaction.

        Args:
            callback (TransactionCallback): Coroutine function taking the
                connection
            attempts (int, optional): How many times the transaction may be
                run. Defaults to `max_attempts` of the config, or the store
                recommended retries plus one.

        Returns:
            Any: Whatever the callback returned
        """
        if self.in_transaction():
            return await self.transactions.run(callback, attempts)
        return await self.recovery.run(
            lambda: self.transactions.run(callback, attempts), self
        )

    async def after_commit(self, callback: AfterCommitCallback) -> None:
        """Run `callback` once the outermost transaction commits. Outside
        of a transaction it runs right away."""
        if self.transactions.after_commit(callback):
            return
        result = callback()
        if isawaitable(result):
            await result

    async def snapshot(
        self,
        bound: Optional[TimestampBound],
        callback: Callable[[], Awaitable[T]],
    ) -> T:
        return await self.recovery.run(
            lambda: self.snapshots.run(bound, callback), self
        )

    def savepoint(self, name: str) -> None:
        raise NotSupportedError("Savepoints are not supported by the store.")

    def rollback_to_savepoint(self, name: str) -> None:
        raise NotSupportedError("Savepoints are not supported by the store.")

    def set_database_name(self, name: str) -> None:
        raise NotSupportedError(
            "Database name cannot be changed on an open connection."
        )

    # Statements

    def prepare_bindings(self, bindings: Bindings) -> Bindings:
        if bindings is None:
            return []
        if isinstance(bindings, dict):
            return {
                key: self._prepare_value(value)
                for key, value in bindings.items()
            }
        return [self._prepare_value(value) for value in bindings]

    def _prepare_value(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return to_timestamp(value)
        if isinstance(value, (list, tuple)):
            return [self._prepare_value(item) for item in value]
        return value

    async def run(
        self, sql: str, bindings: Bindings, callback: StatementCallback
    ) -> T:
        """Run a statement callback, with session recovery, error context
        and a `QueryExecuted` event

        Store failures other than aborts are wrapped in `QueryError`.
        Aborts pass through untouched so that the transaction can be
        replayed.
        """
        start = time.perf_counter()

        async def attempt() -> T:
            try:
                return await callback(sql, bindings)
            except Exception as e:
                if passes_through(e):
                    raise
                raise QueryError(sql, bindings, e) from e

        if self.in_snapshot():
            result = await attempt()
        else:
            result = await self.recovery.run(attempt, self)

        elapsed = round((time.perf_counter() - start) * 1000, 2)
        await self.events.dispatch(
            QueryExecuted(self.name, sql=sql, bindings=bindings, time=elapsed)
        )
        return result

    async def _stream(
        self, sql: str, bindings: Bindings, options: Dict[str, Any]
    ) -> AsyncIterator[Dict[str, Any]]:
        options = {**options, **self.request_options()}
        snapshot = self.snapshots.current
        transaction = self.transactions.current
        if snapshot is not None:
            rows = snapshot.execute(sql, bindings, options)
        elif transaction is not None and not is_read_only(options):
            rows = transaction.execute(sql, bindings, options)
        else:
            database = await self.get_database()
            rows = database.execute(sql, bindings, options)
        async for row in rows:
            yield row

    async def select(
        self,
        sql: str,
        bindings: Bindings = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        async def fetch(sql: str, bindings: Bindings) -> List[Dict[str, Any]]:
            return [
                row async for row in self._stream(sql, bindings, options or {})
            ]

        return await self.run(sql, self.prepare_bindings(bindings), fetch)

    async def select_one(
        self,
        sql: str,
        bindings: Bindings = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        rows = await self.select(sql, bindings, options)
        return rows[0] if rows else None

    async def cursor(
        self,
        sql: str,
        bindings: Bindings = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Stream rows. A partially consumed stream cannot be replayed, so
        failures are wrapped in `QueryError` without session recovery."""
        bindings = self.prepare_bindings(bindings)
        try:
            async for row in self._stream(sql, bindings, options or {}):
                yield row
        except Exception as e:
            if passes_through(e):
                raise
            raise QueryError(sql, bindings, e) from e

    async def select_with_timestamp_bound(
        self, sql: str, bindings: Bindings, bound: TimestampBound
    ) -> List[Dict[str, Any]]:
        return await self.select(sql, bindings, bound.transaction_options())

    async def select_one_with_timestamp_bound(
        self, sql: str, bindings: Bindings, bound: TimestampBound
    ) -> Optional[Dict[str, Any]]:
        return await self.select_one(
            sql, bindings, bound.transaction_options()
        )

    def cursor_with_timestamp_bound(
        self, sql: str, bindings: Bindings, bound: TimestampBound
    ) -> AsyncIterator[Dict[str, Any]]:
        return self.cursor(sql, bindings, bound.transaction_options())

    async def affecting_statement(
        self, sql: str, bindings: Bindings = None
    ) -> int:
        """Run DML and return the number of affected rows. Outside of a
        transaction the statement gets a transaction of its own."""
        bindings = self.prepare_bindings(bindings)

        async def execute(sql: str, bindings: Bindings) -> int:
            transaction = self.transactions.current
            if transaction is None:
                raise LogicError(
                    "Tried to run an update outside of a transaction. "
                    "Affecting statements must run inside a transaction."
                )
            if runs_as_batch_update(sql):
                return await transaction.execute_batch_update(
                    sql, bindings, self.request_options()
                )
            return await transaction.execute_update(
                sql, bindings, self.request_options()
            )

        async def statement(connection: Connection) -> int:
            row_count = await self.run(sql, bindings, execute)
            self.records_have_been_modified(row_count > 0)
            return row_count

        if self.in_transaction():
            return await statement(self)
        return await self.transaction(statement)

    def records_have_been_modified(self, value: bool = True) -> None:
        if not self._records_modified:
            self._records_modified = value

    def has_modified_records(self) -> bool:
        return self._records_modified

    async def run_partitioned_dml(
        self, sql: str, bindings: Bindings = None
    ) -> int:
        return await self.partitioned.run(sql, bindings)

    # Mutations

    async def insert_using_mutation(self, table: str, rows: Rows) -> None:
        await self.mutations.write(table, MutationKind.INSERT, rows)

    async def update_using_mutation(self, table: str, rows: Rows) -> None:
        await self.mutations.write(table, MutationKind.UPDATE, rows)

    async def insert_or_update_using_mutation(
        self, table: str, rows: Rows
    ) -> None:
        await self.mutations.write(table, MutationKind.INSERT_OR_UPDATE, rows)

    async def delete_using_mutation(self, table: str, keys: DeleteKeys) -> None:
        await self.mutations.write(table, MutationKind.DELETE, keys)

    # Session pool

    async def warmup_session_pool(self) -> int:
        if self.session_pool is None:
            return 0
        return await self.session_pool.warmup()

    async def maintain_session_pool(self) -> bool:
        if self.session_pool is None:
            return False
        await self.session_pool.maintain()
        return True

    async def clear_session_pool(self) -> None:
        if self.session_pool is None:
            return
        await self.disconnect()
        await self.session_pool.clear()

    async def list_sessions(self) -> List[SessionInfo]:
        if self.session_pool is not None:
            return await self.session_pool.list()
        records = await self.client.list_sessions(self.config.database_name)
        return [SessionInfo.from_record(record) for record in records]

    # Events

    def listen(
        self,
        event_type: Optional[Type[ConnectionEvent]],
        handler: EventHandler,
    ) -> None:
        self.events.listen(event_type, handler)

    def debug_info(self) -> Dict[str, Any]:
        return {
            "connection_name": self.name,
            "database": self.config.database_name,
            "session_name": (
                self._database.session_name() if self._database else None
            ),
            "session_pool": (
                str(self.session_pool) if self.session_pool else None
            ),
            "transaction_level": self.transaction_level(),
            "in_snapshot": self.in_snapshot(),
        }
