"""
SCAFFOLDING - Generate schema definition files from an introspected database

Input is the output of ``BaseDriver.tables_schema()``:
    {"public": {"orders": [{"name": "id", "type": "INTEGER", "attributes": ["primaryKey"]}]}}

Output is one YAML file per requested table:
    cubes:
      - name: orders
        sql_table: public.orders
        measures:
          - name: count
            type: count
        dimensions:
          - name: id
            sql: id
            type: number
            primary_key: true
"""

import re
from typing import Any, Dict, List, Tuple

import yaml

from datacore.core.errors import ServerCoreError
from datacore.core.schemas import SchemaFile


class ScaffoldingError(ServerCoreError):
    """Requested table is unknown or ambiguous."""


NUMBER_TYPES = ("INT", "NUMERIC", "DECIMAL", "FLOAT", "DOUBLE", "REAL", "MONEY")
TIME_TYPES = ("DATE", "TIME")
BOOLEAN_TYPES = ("BOOL",)


def dimension_type(column_type: str) -> str:
    column_type = column_type.upper()
    if any(marker in column_type for marker in TIME_TYPES):
        return "time"
    if any(marker in column_type for marker in BOOLEAN_TYPES):
        return "boolean"
    if any(marker in column_type for marker in NUMBER_TYPES):
        return "number"
    return "string"


def cube_name(table: str) -> str:
    return "".join(part.capitalize() for part in re.split(r"[^0-9a-zA-Z]+", table) if part)


class ScaffoldingTemplate:
    def __init__(self, tables_schema: Dict[str, Dict[str, List[Dict[str, Any]]]]):
        self.tables_schema = tables_schema

    def resolve_table(self, table_name: str) -> Tuple[str, str]:
        """Accept ``schema.table`` or a bare table name that is unique across schemas."""
        if "." in table_name:
            schema, table = table_name.split(".", 1)
            if table in self.tables_schema.get(schema, {}):
                return schema, table
            raise ScaffoldingError(f"Can't resolve table '{table_name}'")

        matches = [
            schema for schema, tables in self.tables_schema.items() if table_name in tables
        ]
        if not matches:
            raise ScaffoldingError(f"Can't resolve table '{table_name}'")
        if len(matches) > 1:
            raise ScaffoldingError(
                f"Table '{table_name}' exists in several schemas: {', '.join(matches)}"
            )
        return matches[0], table_name

    def cube_definition(self, schema: str, table: str) -> Dict[str, Any]:
        dimensions = []
        for column in self.tables_schema[schema][table]:
            dimension = {
                "name": column["name"],
                "sql": column["name"],
                "type": dimension_type(column.get("type", "")),
            }
            if "primaryKey" in column.get("attributes", []):
                dimension["primary_key"] = True
            dimensions.append(dimension)

        sql_table = f"{schema}.{table}" if schema else table
        return {
            "name": table,
            "sql_table": sql_table,
            "measures": [{"name": "count", "type": "count"}],
            "dimensions": dimensions,
        }

    def generate_files_by_table_names(self, table_names: List[str]) -> List[SchemaFile]:
        """
        One file per distinct table. A table requested twice is generated once.
        When two schemas hold a table of the same name, the later one is named
        after schema and table (``sales.orders`` -> ``SalesOrders.yml``).
        """
        files = []
        resolved_tables = set()
        file_names = set()
        for table_name in table_names:
            schema, table = self.resolve_table(table_name)
            if (schema, table) in resolved_tables:
                continue
            resolved_tables.add((schema, table))

            cube = self.cube_definition(schema, table)
            file_name = f"{cube_name(table)}.yml"
            if file_name in file_names:
                cube["name"] = f"{schema}_{table}"
                file_name = f"{cube_name(cube['name'])}.yml"
            if file_name in file_names:
                raise ScaffoldingError(
                    f"Table '{table_name}' would overwrite the generated file {file_name}"
                )
            file_names.add(file_name)

            content = yaml.safe_dump({"cubes": [cube]}, sort_keys=False)
            files.append(SchemaFile(file_name=file_name, content=content))
        return files
