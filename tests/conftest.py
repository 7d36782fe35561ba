import asyncio
import json

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from datacore.core.config import Settings
from datacore.core.drivers import BaseDriver
from datacore.main import create_app

API_SECRET = "test-secret-key"

TABLES_SCHEMA = {
    "public": {
        "orders": [
            {"name": "id", "type": "INTEGER", "attributes": ["primaryKey"]},
            {"name": "status", "type": "VARCHAR(32)", "attributes": []},
            {"name": "amount", "type": "NUMERIC(10, 2)", "attributes": []},
            {"name": "created_at", "type": "TIMESTAMP", "attributes": []},
        ],
        "users": [
            {"name": "id", "type": "INTEGER", "attributes": ["primaryKey"]},
            {"name": "email", "type": "VARCHAR(255)", "attributes": []},
            {"name": "is_active", "type": "BOOLEAN", "attributes": []},
        ],
    }
}


# Fake driver that counts how often it is built and tested
class FakeDriver(BaseDriver):
    def __init__(self, delay=0.0, fail_connection=False, tables_schema=None):
        self.delay = delay
        self.fail_connection = fail_connection
        self._tables_schema = tables_schema if tables_schema is not None else TABLES_SCHEMA
        self.test_calls = 0
        self.queries = []
        self.released = False

    async def test_connection(self):
        self.test_calls += 1
        await asyncio.sleep(self.delay)
        if self.fail_connection:
            raise ConnectionError("connection refused")

    async def query(self, sql, values=None):
        self.queries.append((sql, values))
        if "fail" in sql:
            raise RuntimeError('syntax error at or near "fail"')
        return [{"value": 1}]

    async def tables_schema(self):
        return self._tables_schema

    async def release(self):
        self.released = True


class DriverFactory:
    def __init__(self, **driver_kwargs):
        self.driver_kwargs = driver_kwargs
        self.drivers = []

    @property
    def calls(self):
        return len(self.drivers)

    def __call__(self):
        driver = FakeDriver(**self.driver_kwargs)
        self.drivers.append(driver)
        return driver


class TelemetrySink:
    """Collects event batches posted by the telemetry emitter."""

    def __init__(self):
        self.batches = []
        self.outage = False
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        if self.outage:
            raise httpx.ConnectError("telemetry sink unreachable", request=request)
        self.batches.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True})

    @property
    def events(self):
        return [event for batch in self.batches for event in batch["batch"]]

    @property
    def event_names(self):
        return [event["event"] for event in self.events]


# Every test starts from an empty environment and no .env file
@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in Settings.model_fields:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATACORE_TELEMETRY_URL", "http://telemetry.test/v1/batch")
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def make_driver_factory():
    return DriverFactory


@pytest.fixture
def driver_factory():
    return DriverFactory()


@pytest.fixture
def telemetry_sink():
    return TelemetrySink()


@pytest.fixture
def schema_dir(tmp_path):
    path = tmp_path / "schema"
    path.mkdir()
    return path


@pytest.fixture
def server_options(driver_factory, schema_dir):
    return {
        "driver_factory": driver_factory,
        "api_secret": API_SECRET,
        "db_type": "postgres",
        "schema_path": str(schema_dir),
        "dev_server": True,
    }


@pytest.fixture
def make_app(server_options, telemetry_sink):
    def _make(**overrides):
        app = create_app({**server_options, **overrides})
        app.state.server_core.telemetry.transport = telemetry_sink.transport
        return app

    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def core(app):
    return app.state.server_core


# Client
@pytest_asyncio.fixture(scope="function")
async def client(app):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
