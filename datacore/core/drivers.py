"""
Backing store drivers.

Every driver offers the same small surface used by the rest of the server:
    - test_connection(): raise if the store cannot be reached
    - query(sql, values): run a statement and return rows as dicts
    - tables_schema(): describe tables and columns per schema
    - release(): close pooled connections

The set of supported db types is closed. ``DRIVER_REGISTRY`` maps each type
tag to a factory; anything else is rejected when the server is composed.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import inspect, text
from sqlalchemy.engine import URL, Connection
from sqlalchemy.ext.asyncio import create_async_engine

from datacore.core.config import Settings, get_settings
from datacore.core.errors import ConfigError


TablesSchema = Dict[str, Dict[str, List[Dict[str, Any]]]]

SYSTEM_SCHEMAS = {
    "information_schema",
    "pg_catalog",
    "pg_toast",
    "mysql",
    "performance_schema",
    "sys",
}


class BaseDriver(ABC):
    """Connection to a backing data store."""

    @abstractmethod
    async def test_connection(self) -> None:
        ...

    @abstractmethod
    async def query(
        self, sql: str, values: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def tables_schema(self) -> TablesSchema:
        ...

    async def release(self) -> None:
        return None


class SQLAlchemyDriver(BaseDriver):
    """Driver backed by a SQLAlchemy async engine."""

    def __init__(self, url: URL, **engine_kwargs: Any):
        self.url = url
        self.engine = create_async_engine(url, pool_pre_ping=True, **engine_kwargs)

    async def test_connection(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def query(
        self, sql: str, values: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        async with self.engine.connect() as conn:
            result = await conn.execute(text(sql), values or {})
            return [dict(row._mapping) for row in result]

    async def tables_schema(self) -> TablesSchema:
        # Inspector is sync only, so run it on the sync side of the connection
        async with self.engine.connect() as conn:
            return await conn.run_sync(inspect_tables)

    async def release(self) -> None:
        await self.engine.dispose()


def inspect_tables(sync_conn: Connection) -> TablesSchema:
    """
    Describe every user table reachable through the connection.

    Output shape:
        {
            "public": {
                "orders": [
                    {"name": "id", "type": "INTEGER", "attributes": ["primaryKey"]},
                    {"name": "status", "type": "VARCHAR", "attributes": []},
                ]
            }
        }
    """
    inspector = inspect(sync_conn)
    schema: TablesSchema = {}

    for schema_name in inspector.get_schema_names():
        if schema_name in SYSTEM_SCHEMAS:
            continue

        tables = {}
        for table_name in inspector.get_table_names(schema=schema_name):
            primary_key = inspector.get_pk_constraint(table_name, schema=schema_name)
            pk_columns = set(primary_key.get("constrained_columns") or [])
            tables[table_name] = [
                {
                    "name": column["name"],
                    "type": str(column["type"]),
                    "attributes": ["primaryKey"] if column["name"] in pk_columns else [],
                }
                for column in inspector.get_columns(table_name, schema=schema_name)
            ]
        schema[schema_name] = tables

    return schema


# db type tag -> SQLAlchemy async dialect
DRIVER_DIALECTS = {
    "postgres": "postgresql+asyncpg",
    "mysql": "mysql+aiomysql",
    "sqlite": "sqlite+aiosqlite",
}


def database_url(dialect: str, settings: Optional[Settings] = None) -> URL:
    settings = settings or get_settings()
    if dialect.startswith("sqlite"):
        return URL.create(dialect, database=settings.DATACORE_DB_NAME)
    return URL.create(
        dialect,
        username=settings.DATACORE_DB_USER,
        password=settings.DATACORE_DB_PASS,
        host=settings.DATACORE_DB_HOST,
        port=settings.DATACORE_DB_PORT,
        database=settings.DATACORE_DB_NAME,
    )


def _sqlalchemy_factory(dialect: str) -> Callable[[], BaseDriver]:
    def factory() -> BaseDriver:
        return SQLAlchemyDriver(database_url(dialect))

    return factory


DRIVER_REGISTRY: Dict[str, Callable[[], BaseDriver]] = {
    db_type: _sqlalchemy_factory(dialect) for db_type, dialect in DRIVER_DIALECTS.items()
}


def registry_factory(db_type: str) -> Callable[[], BaseDriver]:
    try:
        return DRIVER_REGISTRY[db_type]
    except KeyError:
        raise ConfigError(
            f"Unsupported db type '{db_type}'. "
            f"Expected one of: {', '.join(sorted(DRIVER_REGISTRY))}"
        ) from None
