from datetime import datetime, timezone

import pytest

from optimist.events import QueryExecuted, TransactionCommitted
from optimist.exception import LogicError, QueryError
from optimist.values import Timestamp

from .app.store import COUNT_USERS, SELECT_USER, SELECT_USERS


async def test_connection_is_lazy(connection, client):
    assert not connection.is_connected()

    await connection.select(SELECT_USERS)

    assert connection.is_connected()
    assert client.count_calls("create_session") == 1


async def test_disconnect_releases_session(connection, session_pool):
    await connection.select(SELECT_USERS)
    assert await session_pool.stats() == {"available": 0, "leased": 1}

    await connection.disconnect()

    assert not connection.is_connected()
    assert await session_pool.stats() == {"available": 1, "leased": 0}


async def test_reconnect_keeps_using_pool(connection, client):
    await connection.select(SELECT_USERS)
    first = connection.debug_info()["session_name"]

    await connection.reconnect()
    await connection.select(SELECT_USERS)

    assert connection.debug_info()["session_name"] == first
    assert client.count_calls("create_session") == 1


async def test_select_one(connection):
    await connection.insert_using_mutation("users", {"id": 7, "name": "eve"})

    assert await connection.select_one(SELECT_USER, {"id": 7}) == {
        "id": 7,
        "name": "eve",
    }
    assert await connection.select_one(SELECT_USER, {"id": 8}) is None


async def test_cursor_streams_rows(connection):
    await connection.insert_using_mutation(
        "users", [{"id": 1, "name": "alice"}, {"id": 2, "name": "bob"}]
    )

    names = [row["name"] async for row in connection.cursor(SELECT_USERS)]

    assert names == ["alice", "bob"]


async def test_cursor_wraps_errors(connection):
    with pytest.raises(QueryError):
        async for _ in connection.cursor("SELECT nope"):
            ...


async def test_cursor_wraps_transport_errors(connection, client):
    error = OSError("connection reset")
    client.fail_next("execute_sql", error)

    with pytest.raises(QueryError) as exc_info:
        async for _ in connection.cursor(SELECT_USERS):
            ...

    assert exc_info.value.sql == SELECT_USERS
    assert exc_info.value.__cause__ is error


async def test_query_executed_event(connection):
    received = []
    connection.listen(QueryExecuted, received.append)

    await connection.select(COUNT_USERS)

    (event,) = received
    assert event.connection_name == "main"
    assert event.sql == COUNT_USERS
    assert event.bindings == []
    assert event.time >= 0


async def test_failing_listener_does_not_break_transaction(connection, caplog):
    def broken(event):
        raise RuntimeError("listener")

    connection.listen(TransactionCommitted, broken)

    async def callback(conn):
        return "ok"

    assert await connection.transaction(callback) == "ok"
    assert "listener" in caplog.text


async def test_async_listener(connection):
    received = []

    async def listener(event):
        received.append(event)

    connection.listen(QueryExecuted, listener)
    await connection.select(SELECT_USERS)

    assert len(received) == 1
    assert connection.events.forget(QueryExecuted, listener)
    assert not connection.events.has_listeners(QueryExecuted)


def test_prepare_bindings(connection):
    at = datetime(2024, 1, 1, tzinfo=timezone.utc)

    prepared = connection.prepare_bindings(
        {"at": at, "many": [at, 1], "name": "x"}
    )

    assert prepared["at"] == Timestamp(at)
    assert prepared["many"] == [Timestamp(at), 1]
    assert prepared["name"] == "x"
    assert connection.prepare_bindings([at]) == [Timestamp(at)]
    assert connection.prepare_bindings(None) == []


async def test_update_inside_snapshot_is_rejected(connection, client):
    async def callback():
        await connection.affecting_statement(
            "UPDATE users SET name = @name WHERE id = @id",
            {"id": 1, "name": "x"},
        )

    with pytest.raises(LogicError):
        await connection.snapshot(None, callback)

    assert client.count_calls("execute_update") == 0


def test_records_modified_is_sticky(connection):
    connection.records_have_been_modified(True)
    connection.records_have_been_modified(False)

    assert connection.has_modified_records()


async def test_debug_info(connection):
    info = connection.debug_info()
    assert info["connection_name"] == "main"
    assert info["session_name"] is None
    assert info["database"] == (
        "projects/test-project/instances/test-instance/databases/test-db"
    )

    await connection.select(SELECT_USERS)

    info = connection.debug_info()
    assert info["session_name"].startswith(info["database"])
    assert info["session_pool"] is not None
    assert info["transaction_level"] == 0
    assert info["in_snapshot"] is False
