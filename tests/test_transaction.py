import logging

import pytest

from optimist import ConnectionConfig
from optimist.connection import Connection
from optimist.events import (
    TransactionBeginning,
    TransactionCommitted,
    TransactionRolledBack,
)
from optimist.exception import (
    AbortedError,
    ConflictError,
    InvalidArgumentError,
    LogicError,
    NotSupportedError,
    QueryError,
    StoreError,
)
from optimist.transaction import TransactionError, TransactionState

from .app.store import (
    COUNT_USERS,
    INSERT_USER,
    SELECT_USERS,
    UPDATE_USER,
    UPSERT_USER,
    event_names,
)


async def test_transaction_commits_and_returns_result(
    connection, client, events
):
    async def callback(conn):
        await conn.affecting_statement(INSERT_USER, {"id": 1, "name": "alice"})
        return "done"

    assert await connection.transaction(callback) == "done"
    assert client.tables["users"][1]["name"] == "alice"
    assert client.count_calls("begin_transaction") == 1
    assert client.count_calls("commit") == 1
    assert event_names(events) == [
        "TransactionBeginning",
        "QueryExecuted",
        "TransactionCommitting",
        "TransactionCommitted",
    ]
    assert not connection.in_transaction()
    assert connection.transaction_handle() is None


async def test_reads_inside_transaction_see_own_writes(connection, client):
    async def callback(conn):
        await conn.affecting_statement(INSERT_USER, {"id": 1, "name": "alice"})
        return await conn.select(SELECT_USERS)

    rows = await connection.transaction(callback)

    assert rows == [{"id": 1, "name": "alice"}]
    read = [call for call in client.calls if call[0] == "execute_sql"][0]
    assert "id" in read[3]["transaction"]


@pytest.mark.parametrize("attempts", [1, 3, 5])
async def test_aborted_callback_is_retried_exactly_attempts_times(
    connection, client, events, attempts
):
    calls = 0

    async def callback(conn):
        nonlocal calls
        calls += 1
        raise AbortedError("Transaction was aborted.", 10)

    with pytest.raises(AbortedError):
        await connection.transaction(callback, attempts=attempts)

    names = event_names(events)
    assert calls == attempts
    assert names.count("TransactionBeginning") == attempts
    assert names.count("TransactionCommitted") == 0
    assert names.count("TransactionRolledBack") == attempts
    assert client.count_calls("begin_transaction") == attempts
    assert client.count_calls("rollback") == attempts
    assert connection.transaction_level() == 0


async def test_default_attempts_follow_store_recommendation(connection):
    calls = 0

    async def callback(conn):
        nonlocal calls
        calls += 1
        raise AbortedError("Transaction was aborted.", 10)

    with pytest.raises(AbortedError):
        await connection.transaction(callback)

    assert calls == connection.client.MAX_RETRIES + 1 == 11


async def test_configured_max_attempts(client):
    config = ConnectionConfig(
        "test-project", "test-instance", "test-db", max_attempts=2
    )
    connection = Connection(config, client)
    calls = 0

    async def callback(conn):
        nonlocal calls
        calls += 1
        raise AbortedError("Transaction was aborted.", 10)

    with pytest.raises(AbortedError):
        await connection.transaction(callback)

    assert calls == 2


async def test_invalid_attempts(connection):
    async def callback(conn):
        ...

    with pytest.raises(InvalidArgumentError):
        await connection.transaction(callback, attempts=-1)


async def test_aborted_commit_replays_callback(connection, client):
    client.fail_next("commit", AbortedError("Transaction was aborted.", 10))
    calls = 0

    async def callback(conn):
        nonlocal calls
        calls += 1
        await conn.affecting_statement(INSERT_USER, {"id": 1, "name": "alice"})

    await connection.transaction(callback)

    assert calls == 2
    assert client.count_calls("commit") == 2
    assert client.count_calls("rollback") == 1
    assert client.tables["users"][1]["name"] == "alice"
    assert client.transactions == {}


async def test_other_errors_roll_back_without_retry(
    connection, client, events
):
    calls = 0

    async def callback(conn):
        nonlocal calls
        calls += 1
        await conn.affecting_statement(INSERT_USER, {"id": 1, "name": "alice"})
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        await connection.transaction(callback)

    assert calls == 1
    assert client.count_calls("rollback") == 1
    assert client.tables["users"] == {}
    assert event_names(events)[-1] == "TransactionRolledBack"
    assert connection.transaction_level() == 0


async def test_statement_errors_are_wrapped(connection, client):
    async def callback(conn):
        await conn.affecting_statement("UPDATE nope", [1])

    with pytest.raises(QueryError) as exc_info:
        await connection.transaction(callback)

    assert exc_info.value.sql == "UPDATE nope"
    assert exc_info.value.bindings == [1]
    assert isinstance(exc_info.value.__cause__, StoreError)
    assert client.count_calls("begin_transaction") == 1


@pytest.mark.parametrize(
    "error", (TimeoutError("deadline exceeded"), OSError("connection reset"))
)
async def test_transport_errors_are_wrapped(connection, client, error):
    client.fail_next("execute_update", error)

    async def callback(conn):
        await conn.affecting_statement(INSERT_USER, {"id": 1, "name": "alice"})

    with pytest.raises(QueryError) as exc_info:
        await connection.transaction(callback)

    assert exc_info.value.sql == INSERT_USER
    assert exc_info.value.bindings == {"id": 1, "name": "alice"}
    assert exc_info.value.__cause__ is error
    assert client.count_calls("begin_transaction") == 1


async def test_usage_errors_are_not_wrapped(connection):
    async def execute(sql, bindings):
        raise LogicError("not now")

    with pytest.raises(LogicError):
        await connection.run(SELECT_USERS, [], execute)


async def test_rollback_failure_is_logged_and_callback_error_raised(
    connection, client, caplog
):
    client.fail_next("rollback", StoreError("Internal error", 13))

    async def callback(conn):
        await conn.select(COUNT_USERS)
        raise ValueError("boom")

    with caplog.at_level(logging.CRITICAL):
        with pytest.raises(ValueError, match="boom"):
            await connection.transaction(callback)

    assert any(
        record.levelno == logging.CRITICAL for record in caplog.records
    )
    assert connection.transaction_level() == 0


async def test_nested_levels(connection, client, events):
    levels = []

    async def level3(conn):
        levels.append(conn.transaction_level())

    async def level2(conn):
        levels.append(conn.transaction_level())
        await conn.transaction(level3)
        levels.append(conn.transaction_level())

    async def level1(conn):
        levels.append(conn.transaction_level())
        await conn.transaction(level2)
        levels.append(conn.transaction_level())

    await connection.transaction(level1)

    assert levels == [1, 2, 3, 2, 1]
    assert [
        event.level for event in events if isinstance(event, TransactionBeginning)
    ] == [1, 2, 3]
    assert [
        event.level for event in events if isinstance(event, TransactionCommitted)
    ] == [3, 2, 1]
    assert client.count_calls("begin_transaction") == 1
    assert client.count_calls("commit") == 1
    assert connection.transaction_level() == 0


async def test_nested_error_is_handed_to_outer_transaction(
    connection, client, events
):
    async def inner(conn):
        await conn.affecting_statement(INSERT_USER, {"id": 1, "name": "alice"})
        raise ValueError("inner")

    async def outer(conn):
        await conn.transaction(inner)

    with pytest.raises(ValueError, match="inner"):
        await connection.transaction(outer)

    assert client.count_calls("rollback") == 1
    assert client.count_calls("commit") == 0
    assert client.tables["users"] == {}
    assert len([e for e in events if isinstance(e, TransactionRolledBack)]) == 1
    assert connection.transaction_level() == 0


async def test_nested_error_caught_by_outer(connection, client):
    seen = []

    async def inner(conn):
        raise ValueError("inner")

    async def outer(conn):
        try:
            await conn.transaction(inner)
        except ValueError:
            seen.append(conn.transaction_level())
        await conn.affecting_statement(INSERT_USER, {"id": 1, "name": "alice"})

    await connection.transaction(outer)

    assert seen == [1]
    assert client.count_calls("commit") == 1
    assert client.tables["users"][1]["name"] == "alice"


async def test_nested_abort_replays_outermost_callback(connection, client):
    outer_calls = 0

    async def inner(conn):
        raise AbortedError("Transaction was aborted.", 10)

    async def outer(conn):
        nonlocal outer_calls
        outer_calls += 1
        await conn.transaction(inner)

    with pytest.raises(AbortedError):
        await connection.transaction(outer, attempts=2)

    assert outer_calls == 2
    assert client.count_calls("begin_transaction") == 2


async def test_affecting_statement_outside_transaction(connection, client):
    assert not connection.has_modified_records()

    assert await connection.affecting_statement(
        INSERT_USER, {"id": 1, "name": "alice"}
    ) == 1

    assert client.count_calls("begin_transaction") == 1
    assert client.count_calls("commit") == 1
    assert connection.has_modified_records()


async def test_affecting_statement_without_match_keeps_flag(connection):
    assert await connection.affecting_statement(
        UPDATE_USER, {"id": 99, "name": "nobody"}
    ) == 0
    assert not connection.has_modified_records()


async def test_aborted_statement_is_not_wrapped(connection, client):
    client.fail_next(
        "execute_update", AbortedError("Transaction was aborted.", 10)
    )

    assert await connection.affecting_statement(
        INSERT_USER, {"id": 1, "name": "alice"}
    ) == 1
    assert client.count_calls("begin_transaction") == 2


async def test_transaction_tag(connection, client):
    connection.set_transaction_tag("checkout")

    async def callback(conn):
        await conn.affecting_statement(INSERT_USER, {"id": 1, "name": "alice"})

    await connection.transaction(callback)

    begin = [c for c in client.calls if c[0] == "begin_transaction"][0]
    commit = [c for c in client.calls if c[0] == "commit"][0]
    update = [c for c in client.calls if c[0] == "execute_update"][0]
    assert begin[2]["request_options"] == {"transaction_tag": "checkout"}
    assert commit[3] == {"request_options": {"transaction_tag": "checkout"}}
    assert update[4]["request_options"]["transaction_tag"] == "checkout"


async def test_request_tag(connection, client):
    assert connection.set_request_tag("listing") is connection
    assert connection.request_tag == "listing"

    await connection.select(SELECT_USERS)

    read = [c for c in client.calls if c[0] == "execute_sql"][0]
    assert read[3]["request_options"] == {"request_tag": "listing"}

    connection.set_request_tag(None)
    await connection.select(SELECT_USERS)
    read = [c for c in client.calls if c[0] == "execute_sql"][1]
    assert "request_options" not in read[3]


async def test_after_commit_runs_once_after_commit(connection, events):
    ran = []

    async def hook():
        ran.append(event_names(events)[-1])

    async def inner(conn):
        await conn.after_commit(hook)

    async def outer(conn):
        await conn.after_commit(lambda: ran.append("sync"))
        await conn.transaction(inner)
        assert ran == []

    await connection.transaction(outer)

    assert ran == ["sync", "TransactionCommitted"]


async def test_after_commit_dropped_on_rollback(connection):
    ran = []

    async def callback(conn):
        await conn.after_commit(lambda: ran.append(True))
        raise ValueError("boom")

    with pytest.raises(ValueError):
        await connection.transaction(callback)

    assert ran == []


async def test_after_commit_dropped_for_failed_nested_level(connection):
    ran = []

    async def inner(conn):
        await conn.after_commit(lambda: ran.append("inner"))
        raise ValueError("inner")

    async def outer(conn):
        await conn.after_commit(lambda: ran.append("outer"))
        with pytest.raises(ValueError):
            await conn.transaction(inner)

    await connection.transaction(outer)

    assert ran == ["outer"]


async def test_after_commit_outside_transaction_runs_now(connection):
    ran = []
    await connection.after_commit(lambda: ran.append(True))
    assert ran == [True]


async def test_savepoints_not_supported(connection):
    with pytest.raises(NotSupportedError):
        connection.savepoint("one")
    with pytest.raises(NotSupportedError):
        connection.rollback_to_savepoint("one")
    with pytest.raises(NotSupportedError):
        connection.set_database_name("other")


async def test_finalized_handle_rejects_statements(connection, client):
    handles = []

    async def callback(conn):
        handles.append(conn.transaction_handle())

    await connection.transaction(callback)

    (handle,) = handles
    assert handle.state is TransactionState.COMMITTED
    assert handle.commit_timestamp is not None
    with pytest.raises(TransactionError):
        await handle.execute_update(UPDATE_USER, {"id": 1, "name": "x"})

    await handle.rollback()
    assert handle.state is TransactionState.COMMITTED
    assert client.count_calls("rollback") == 0


async def test_insert_or_runs_as_batch_update(connection, client):
    async def callback(conn):
        return await conn.affecting_statement(
            UPSERT_USER, {"id": 1, "name": "alice"}
        )

    assert await connection.transaction(callback) == 1

    assert client.tables["users"][1]["name"] == "alice"
    assert client.count_calls("execute_batch_update") == 1
    assert client.count_calls("execute_update") == 0
    assert connection.has_modified_records()


async def test_batch_update_conflict(connection, client):
    insert_or_ignore = "insert or ignore into users (id, name) values (@id)"

    def conflict(tables, params):
        raise StoreError(f"Row {params['id']} already exists", 6)

    client.handle(insert_or_ignore, conflict)

    with pytest.raises(QueryError) as exc_info:
        await connection.affecting_statement(insert_or_ignore, {"id": 1})

    assert isinstance(exc_info.value.__cause__, ConflictError)
    assert exc_info.value.__cause__.code == 6
    assert "already exists" in str(exc_info.value)
    assert client.count_calls("commit") == 0
    assert client.count_calls("rollback") == 1
