import pytest

from optimist import Connection, ConnectionConfig, SessionPool
from optimist.cache.memory import MemoryCacheAdapter
from optimist.registry import ConnectionRegistry, CounterRegistry

from .app.store import (
    COUNT_USERS,
    DELETE_USERS,
    INSERT_USER,
    SELECT_USER,
    SELECT_USERS,
    UPDATE_USER,
    UPSERT_USER,
    FakeStoreClient,
    count_users,
    delete_users,
    insert_user,
    select_user,
    select_users,
    update_user,
    upsert_user,
)


@pytest.fixture(autouse=True)
def reset_registry():
    ConnectionRegistry.reset()
    CounterRegistry.reset()


@pytest.fixture
def client():
    client = FakeStoreClient()
    client.handle(SELECT_USERS, select_users)
    client.handle(SELECT_USER, select_user)
    client.handle(COUNT_USERS, count_users)
    client.handle(INSERT_USER, insert_user)
    client.handle(UPDATE_USER, update_user)
    client.handle(UPSERT_USER, upsert_user)
    client.handle(DELETE_USERS, delete_users)
    return client


@pytest.fixture
def config():
    return ConnectionConfig("test-project", "test-instance", "test-db")


@pytest.fixture
def session_pool(client, config):
    return SessionPool(
        client,
        config.database_name,
        cache=MemoryCacheAdapter(f"{config.name}_sessions"),
        config=config.session_pool,
    )


@pytest.fixture
def connection(config, client, session_pool):
    return Connection(config, client, session_pool=session_pool)


@pytest.fixture
def events(connection):
    received = []
    connection.listen(None, received.append)
    return received


@pytest.fixture
def client_factory(client):
    def factory(config, auth_cache):
        client._auth_cache = auth_cache
        return client

    return factory
