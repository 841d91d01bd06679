import pytest
from fastapi.testclient import TestClient

from gpu_metrics.api import create_app
from gpu_metrics.db import MetricsDB

API_KEY = "key-node-01"
INSTANCE_ID = "node-01"


@pytest.fixture
def db(tmp_path):
    store = MetricsDB(tmp_path / "metrics.db")
    store.provision_instance(INSTANCE_ID, API_KEY)
    return store


@pytest.fixture
def client(db):
    return TestClient(create_app(db))


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {API_KEY}"}
