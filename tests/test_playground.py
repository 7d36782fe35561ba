from datetime import datetime, timedelta, timezone
from pathlib import Path

import jwt
import pytest
import yaml
from httpx import AsyncClient, ASGITransport

from datacore.api.endpoints.playground import write_schema_files
from datacore.core.schemas import SchemaFile
from datacore.core.security import ALGORITHM, create_access_token, decode_access_token
from conftest import API_SECRET, TABLES_SCHEMA, FakeDriver


# =========================
# CONTEXT
# =========================
@pytest.mark.asyncio
async def test_context(client: AsyncClient, core, telemetry_sink):
    response = await client.get("/playground/context")

    assert response.status_code == 200
    data = response.json()
    assert data["apiUrl"] == "http://localhost:4000"
    assert data["anonymousId"] == core.anonymous_id

    payload = jwt.decode(data["token"], API_SECRET, algorithms=[ALGORITHM])
    assert payload["exp"] - payload["iat"] == 24 * 60 * 60

    await core.telemetry.drain()
    assert telemetry_sink.event_names == ["Dev Server Env Open"]
    assert telemetry_sink.events[0]["anonymousId"] == core.anonymous_id


@pytest.mark.asyncio
async def test_context_api_url_from_env(monkeypatch, make_app):
    monkeypatch.setenv("DATACORE_API_URL", "https://api.example.com")
    app = make_app()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/playground/context")

    assert response.json()["apiUrl"] == "https://api.example.com"


@pytest.mark.asyncio
async def test_context_api_url_uses_port(monkeypatch, make_app):
    monkeypatch.setenv("PORT", "8080")
    app = make_app()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/playground/context")

    assert response.json()["apiUrl"] == "http://localhost:8080"


def test_token_valid_within_a_day():
    issued = datetime.now(timezone.utc) - timedelta(hours=23)
    token = create_access_token(API_SECRET, now=issued)

    assert "exp" in decode_access_token(token, API_SECRET)


def test_token_expires_after_a_day():
    issued = datetime.now(timezone.utc) - timedelta(days=1, minutes=1)
    token = create_access_token(API_SECRET, now=issued)

    with pytest.raises(jwt.ExpiredSignatureError):
        decode_access_token(token, API_SECRET)


@pytest.mark.asyncio
async def test_context_token_accepted_by_gateway(client: AsyncClient):
    token = (await client.get("/playground/context")).json()["token"]

    response = await client.get("/api/v1/meta", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200


# =========================
# DB SCHEMA & FILES
# =========================
@pytest.mark.asyncio
async def test_db_schema(client: AsyncClient, core, telemetry_sink):
    response = await client.get("/playground/db-schema")

    assert response.status_code == 200
    assert response.json() == {"tablesSchema": TABLES_SCHEMA}

    await core.telemetry.drain()
    assert telemetry_sink.event_names == ["Dev Server DB Schema Load"]


@pytest.mark.asyncio
async def test_db_schema_driver_unavailable(make_app, make_driver_factory):
    app = make_app(driver_factory=make_driver_factory(fail_connection=True))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/playground/db-schema")

    assert response.status_code == 503
    assert response.json()["detail"] == "Database connection failed"


@pytest.mark.asyncio
async def test_db_schema_introspection_error(make_app):
    class BrokenIntrospectionDriver(FakeDriver):
        async def tables_schema(self):
            raise RuntimeError("permission denied for schema information_schema")

    app = make_app(driver_factory=BrokenIntrospectionDriver)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/playground/db-schema")

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to load database schema"


@pytest.mark.asyncio
async def test_files(client: AsyncClient, schema_dir):
    (schema_dir / "Orders.yml").write_text("cubes: []\n")
    (schema_dir / "notes.txt").write_text("not a schema file")

    response = await client.get("/playground/files")

    assert response.status_code == 200
    assert response.json() == {"files": [{"fileName": "Orders.yml", "content": "cubes: []\n"}]}


@pytest.mark.asyncio
async def test_files_missing_directory(make_app, tmp_path):
    app = make_app(schema_path=str(tmp_path / "does-not-exist"))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/playground/files")

    assert response.json() == {"files": []}


# =========================
# GENERATE SCHEMA
# =========================
@pytest.mark.asyncio
async def test_generate_schema(client: AsyncClient, core, schema_dir, telemetry_sink):
    response = await client.post(
        "/playground/generate-schema", json={"tables": ["orders", "users"]}
    )

    assert response.status_code == 200
    files = response.json()["files"]
    assert [file["fileName"] for file in files] == ["Orders.yml", "Users.yml"]

    for file in files:
        written = schema_dir / file["fileName"]
        assert written.read_text() == file["content"]

    orders = yaml.safe_load(files[0]["content"])["cubes"][0]
    assert orders["sql_table"] == "public.orders"
    assert orders["measures"] == [{"name": "count", "type": "count"}]
    types = {dimension["name"]: dimension["type"] for dimension in orders["dimensions"]}
    assert types == {"id": "number", "status": "string", "amount": "number", "created_at": "time"}
    assert orders["dimensions"][0]["primary_key"] is True

    await core.telemetry.drain()
    assert "Dev Server Generate Schema" in telemetry_sink.event_names


@pytest.mark.asyncio
async def test_generate_schema_qualified_name(client: AsyncClient, schema_dir):
    response = await client.post(
        "/playground/generate-schema", json={"tables": ["public.users"]}
    )

    assert response.status_code == 200
    users = yaml.safe_load((schema_dir / "Users.yml").read_text())["cubes"][0]
    assert {"name": "is_active", "sql": "is_active", "type": "boolean"} in users["dimensions"]


@pytest.mark.asyncio
async def test_generate_schema_same_table_in_two_schemas(make_app, make_driver_factory, schema_dir):
    """A table name shared by two schemas gets a schema-qualified file"""
    tables_schema = {
        "public": {"orders": TABLES_SCHEMA["public"]["orders"]},
        "sales": {"orders": TABLES_SCHEMA["public"]["orders"]},
    }
    app = make_app(driver_factory=make_driver_factory(tables_schema=tables_schema))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.post(
            "/playground/generate-schema", json={"tables": ["public.orders", "sales.orders"]}
        )

    assert response.status_code == 200
    names = [file["fileName"] for file in response.json()["files"]]
    assert names == ["Orders.yml", "SalesOrders.yml"]
    assert sorted(path.name for path in schema_dir.iterdir()) == ["Orders.yml", "SalesOrders.yml"]

    public_orders = yaml.safe_load((schema_dir / "Orders.yml").read_text())["cubes"][0]
    sales_orders = yaml.safe_load((schema_dir / "SalesOrders.yml").read_text())["cubes"][0]
    assert public_orders["sql_table"] == "public.orders"
    assert sales_orders["sql_table"] == "sales.orders"
    assert sales_orders["name"] == "sales_orders"


@pytest.mark.asyncio
async def test_generate_schema_repeated_table(client: AsyncClient, schema_dir):
    response = await client.post(
        "/playground/generate-schema", json={"tables": ["orders", "public.orders"]}
    )

    assert response.status_code == 200
    assert [file["fileName"] for file in response.json()["files"]] == ["Orders.yml"]


@pytest.mark.asyncio
async def test_generate_schema_unknown_table(client: AsyncClient, schema_dir):
    response = await client.post("/playground/generate-schema", json={"tables": ["payments"]})

    assert response.status_code == 400
    assert "payments" in response.json()["detail"]
    assert list(schema_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_generate_schema_requires_tables(client: AsyncClient):
    response = await client.post("/playground/generate-schema", json={"tables": []})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_generate_schema_partial_write_is_kept(client: AsyncClient, schema_dir, monkeypatch):
    """A failed write leaves the files written before it on disk"""
    original_write_text = Path.write_text
    calls = []

    def flaky_write_text(self, *args, **kwargs):
        calls.append(self.name)
        if len(calls) == 2:
            raise OSError("No space left on device")
        return original_write_text(self, *args, **kwargs)

    monkeypatch.setattr(Path, "write_text", flaky_write_text)

    response = await client.post(
        "/playground/generate-schema", json={"tables": ["orders", "users"]}
    )

    assert response.status_code == 500
    assert (schema_dir / "Orders.yml").exists()
    assert not (schema_dir / "Users.yml").exists()


@pytest.mark.asyncio
async def test_write_schema_files_stays_in_directory(tmp_path):
    files = [SchemaFile(file_name="../../Escape.yml", content="cubes: []\n")]

    await write_schema_files(str(tmp_path / "schema"), files)

    assert (tmp_path / "schema" / "Escape.yml").exists()
    assert not (tmp_path.parent / "Escape.yml").exists()


# =========================
# TELEMETRY OUTAGE
# =========================
@pytest.mark.asyncio
async def test_endpoints_unaffected_by_telemetry_outage(client: AsyncClient, core, telemetry_sink, schema_dir):
    telemetry_sink.outage = True

    context = await client.get("/playground/context")
    db_schema = await client.get("/playground/db-schema")
    files = await client.get("/playground/files")
    generated = await client.post("/playground/generate-schema", json={"tables": ["orders"]})
    await core.telemetry.drain()

    assert context.status_code == 200
    assert db_schema.json() == {"tablesSchema": TABLES_SCHEMA}
    assert files.json() == {"files": []}
    assert generated.status_code == 200
    assert (schema_dir / "Orders.yml").exists()
    assert telemetry_sink.batches == []
