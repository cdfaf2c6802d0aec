# user_service/tests/conftest.py
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from user_service.core.config import Settings
from user_service.core.database import create_all_tables
from user_service.core.metrics import METRICS
from user_service.features.user_entities.datastore import DatastoreStorer
from user_service.features.user_entities.memory import MemoryStorer
from user_service.features.user_entities.postgres import PostgresStorer
from user_service.features.user_entities.storer import StorageParameters, StorageType
from user_service.tests.mocks import FakeDatastoreClient


def make_sqlite_engine():
    """Isolated in-memory SQLite engine shared across threads."""
    return create_engine(
        "sqlite+pysqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset()
    yield
    METRICS.reset()


@pytest.fixture
def test_settings():
    return Settings(ENV="test", STORAGE_TYPE="memory", LOG_LEVEL="DEBUG")


@pytest.fixture
def memory_storer():
    storer = MemoryStorer(StorageParameters(type=StorageType.MEMORY))
    yield storer
    storer.close()


@pytest.fixture
def sql_storer():
    engine = make_sqlite_engine()
    create_all_tables(engine)
    storer = PostgresStorer(engine, StorageParameters(type=StorageType.POSTGRES))
    yield storer
    storer.close()


@pytest.fixture
def fake_datastore_client():
    return FakeDatastoreClient()


@pytest.fixture
def datastore_storer(fake_datastore_client):
    params = StorageParameters(
        type=StorageType.DATASTORE,
        add_query_timeout=0.5,
        get_query_timeout=0.75,
        count_query_timeout=0.25,
    )
    storer = DatastoreStorer(fake_datastore_client, params)
    yield storer
    storer.close()


@pytest.fixture(params=["memory", "postgres", "datastore"])
def storer(request):
    """Each storage backend in turn."""
    return request.getfixturevalue({
        "memory": "memory_storer",
        "postgres": "sql_storer",
        "datastore": "datastore_storer",
    }[request.param])


@pytest.fixture
def app(test_settings, memory_storer):
    from user_service.app import create_app
    return create_app(test_settings, storer=memory_storer)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
