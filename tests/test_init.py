import pytest

from optimist import ConnectionConfig, Optimist
from optimist.cache.memory import MemoryCacheAdapter
from optimist.cache.sqlite import SQLiteCacheAdapter
from optimist.exception import OptimistError
from optimist.registry import ConnectionRegistry

from .app.store import SELECT_USERS


async def test_optimist_builds_named_connections(client):
    auth_caches = []

    def factory(config, auth_cache):
        auth_caches.append(auth_cache)
        return client

    optimist = Optimist(
        client_factory=factory,
        connections=[
            "spanner://p/i/d",
            ConnectionConfig("p", "i", "other", name="other"),
        ],
    )

    main = Optimist.get()
    other = Optimist.get("other")
    assert main.config.database == "d"
    assert other.config.database == "other"
    assert [cache.namespace for cache in auth_caches] == [
        "main_auth",
        "other_auth",
    ]
    assert isinstance(main.session_pool.cache, MemoryCacheAdapter)
    assert main.session_pool.cache.namespace == "main_sessions"
    assert other.session_pool.cache.namespace == "other_sessions"

    await optimist.connect()
    assert client.count_calls("create_session") == 2
    assert main.is_connected()

    await optimist.disconnect()
    assert not main.is_connected()


def test_get_unknown_connection():
    with pytest.raises(OptimistError, match="nope"):
        Optimist.get("nope")


def test_duplicate_connection_name(client_factory):
    optimist = Optimist(
        client_factory=client_factory,
        connections=["spanner://p/i/d"],
    )

    with pytest.raises(OptimistError, match="already registered"):
        optimist.add("spanner://p/i/other")


async def test_sqlite_cache_survives_restart(client, client_factory, tmp_path):
    dsn = f"spanner://p/i/d?cache_path={tmp_path}"
    optimist = Optimist(client_factory=client_factory, connections=[dsn])
    connection = Optimist.get()
    assert isinstance(connection.session_pool.cache, SQLiteCacheAdapter)
    assert isinstance(connection.client.auth_cache, SQLiteCacheAdapter)

    await optimist.connect()
    await connection.select(SELECT_USERS)
    await optimist.disconnect()

    ConnectionRegistry.reset()
    restarted = Optimist(client_factory=client_factory, connections=[dsn])
    await restarted.connect()

    assert client.count_calls("create_session") == 1
    assert await Optimist.get().select(SELECT_USERS) == []
    assert client.count_calls("create_session") == 1
    await restarted.disconnect()
