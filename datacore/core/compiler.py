import hashlib
import logging
from typing import Any, Callable, Dict, List, Optional

import yaml

from datacore.core.errors import ServerCoreError
from datacore.core.logs import LogFunction, default_logger
from datacore.core.repository import FileRepository


class SchemaCompileError(ServerCoreError):
    """A schema file is not valid YAML or has no cube definitions."""


class CompilerApi:
    """
    Loads cube definitions from the schema repository.

    Compiled cubes are cached per schema version. Without a
    ``schema_version`` callback the version is a hash of the file contents,
    so edits made through the dev server are picked up on the next request.
    """

    def __init__(
        self,
        repository: FileRepository,
        db_type: str,
        schema_version: Optional[Callable[[], str]] = None,
        dev_server: bool = False,
        logger: LogFunction = default_logger,
    ):
        self.repository = repository
        self.db_type = db_type
        self.schema_version = schema_version
        self.dev_server = dev_server
        self.logger = logger
        self._version: Optional[str] = None
        self._cubes: List[Dict[str, Any]] = []

    async def get_cubes(self) -> List[Dict[str, Any]]:
        files = await self.repository.list_schema_files()

        if self.schema_version is not None:
            version = str(self.schema_version())
        else:
            digest = hashlib.sha256()
            for schema_file in files:
                digest.update(schema_file.file_name.encode("utf-8"))
                digest.update(schema_file.content.encode("utf-8"))
            version = digest.hexdigest()

        if version != self._version:
            self._cubes = self._compile(files)
            self._version = version
            self.logger("Compiling schema", {"version": version, "files": len(files)})
        return self._cubes

    def _compile(self, files) -> List[Dict[str, Any]]:
        cubes = []
        for schema_file in files:
            try:
                document = yaml.safe_load(schema_file.content) or {}
            except yaml.YAMLError as error:
                logging.error(f"Invalid schema file {schema_file.file_name}: {error}")
                raise SchemaCompileError(f"{schema_file.file_name}: {error}") from error

            file_cubes = document.get("cubes") if isinstance(document, dict) else None
            if not isinstance(file_cubes, list):
                raise SchemaCompileError(f"{schema_file.file_name}: 'cubes' list is missing")
            cubes.extend(file_cubes)
        return cubes

    async def meta_config(self) -> List[Dict[str, Any]]:
        cubes = await self.get_cubes()
        return [
            {
                "name": cube.get("name"),
                "measures": [measure.get("name") for measure in cube.get("measures", [])],
                "dimensions": [
                    dimension.get("name") for dimension in cube.get("dimensions", [])
                ],
            }
            for cube in cubes
        ]
