from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake case in Python, camel case on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =========================
# SCHEMA FILES
# =========================
class SchemaFile(CamelModel):
    file_name: str
    content: str


class FilesResponse(CamelModel):
    files: List[SchemaFile]


class GenerateSchemaRequest(BaseModel):
    tables: List[str] = Field(min_length=1)


# =========================
# PLAYGROUND
# =========================
class PlaygroundContext(CamelModel):
    token: str
    api_url: str
    anonymous_id: str


class DbSchemaResponse(CamelModel):
    tables_schema: Dict[str, Dict[str, List[Dict[str, Any]]]]


# =========================
# GATEWAY
# =========================
class LoadQuery(BaseModel):
    sql: str = Field(min_length=1)
    values: Dict[str, Any] = {}


class LoadRequest(BaseModel):
    query: LoadQuery


class LoadResponse(BaseModel):
    query: LoadQuery
    data: List[Dict[str, Any]]


class MetaResponse(BaseModel):
    cubes: List[Dict[str, Any]]
