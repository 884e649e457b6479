import pytest

from halcore.database.sqlite.memory_client import SQLiteMemoryClient, SQLiteMemoryClientConfig
from halcore.runtime.memory.memory_store import SQLiteContentStore


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "memory.sqlite"


@pytest.fixture
def client(db_path):
    client = SQLiteMemoryClient(SQLiteMemoryClientConfig(path=db_path))
    yield client
    client.close()


@pytest.fixture
def store(client):
    store = SQLiteContentStore(client=client)
    store.ensure_schema()
    return store
