import pytest
from fastapi.testclient import TestClient  # type: ignore

from scorehub.config import Settings
from scorehub.fastapi_app import create_app

API_KEY = "test-key"


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv("API_KEY", API_KEY)
    return API_KEY


@pytest.fixture
def app(tmp_path, api_key):
    return create_app(Settings(data_dir=tmp_path))


@pytest.fixture
def client(app):
    # entering the context runs the lifespan, which loads both stores
    with TestClient(app) as c:
        yield c


@pytest.fixture
def headers(api_key):
    return {"x-api-key": api_key}
