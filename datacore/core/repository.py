import asyncio
from pathlib import Path
from typing import List

from datacore.core.schemas import SchemaFile


SCHEMA_SUFFIXES = {".yml", ".yaml"}


class FileRepository:
    """Schema definition files stored under one local directory."""

    def __init__(self, schema_path: str):
        self.schema_path = Path(schema_path)

    async def list_schema_files(self) -> List[SchemaFile]:
        return await asyncio.to_thread(self._read_schema_files)

    def _read_schema_files(self) -> List[SchemaFile]:
        if not self.schema_path.is_dir():
            return []

        return [
            SchemaFile(
                file_name=path.relative_to(self.schema_path).as_posix(),
                content=path.read_text(encoding="utf-8"),
            )
            for path in sorted(self.schema_path.rglob("*"))
            if path.is_file() and path.suffix in SCHEMA_SUFFIXES
        ]
