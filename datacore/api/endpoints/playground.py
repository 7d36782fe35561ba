import asyncio
import logging
from pathlib import Path
from typing import Annotated, Any, Dict, List

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.staticfiles import StaticFiles

from datacore.core import schemas
from datacore.core.errors import ConfigError, DriverAcquisitionError
from datacore.core.scaffolding import ScaffoldingError, ScaffoldingTemplate
from datacore.core.security import create_access_token
from datacore.core.server import ServerCore

router = APIRouter(prefix="/playground", tags=["Playground"])

logger = logging.getLogger(__name__)

PLAYGROUND_DIR = Path(__file__).resolve().parents[2] / "playground"


def get_server_core(request: Request) -> ServerCore:
    return request.app.state.server_core


core_dep = Annotated[ServerCore, Depends(get_server_core)]


def activate(app: FastAPI, core: ServerCore) -> None:
    """Add the dev-only playground routes and static assets to ``app``."""
    logger.info(f"Your temporary dev token: {create_access_token(core.api_secret)}")
    logger.info(f"Dev environment available at {core.api_url}")

    app.include_router(router)

    # Catch-all mount, must come after every other route
    if PLAYGROUND_DIR.is_dir():
        app.mount("/", StaticFiles(directory=str(PLAYGROUND_DIR), html=True), name="playground")


async def load_tables_schema(core: ServerCore) -> Dict[str, Any]:
    try:
        driver = await core.get_driver()
    except DriverAcquisitionError as error:
        logging.error(f"Driver unavailable: {error}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database connection failed",
        )
    except ConfigError as error:
        logging.error(f"Driver misconfigured: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error)
        )

    try:
        return await driver.tables_schema()
    except Exception as error:
        logging.error(f"Failed to load database schema: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load database schema",
        )


async def write_schema_files(schema_path: str, files: List[schemas.SchemaFile]) -> None:
    """
    Write generated files into the schema directory, one after another.

    Not transactional: when a write fails, files written before it stay on
    disk.
    """
    directory = Path(schema_path)
    await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)

    for schema_file in files:
        # Only the base name, generated names must not leave the directory
        target = directory / Path(schema_file.file_name).name
        await asyncio.to_thread(target.write_text, schema_file.content, encoding="utf-8")


@router.get("/context", response_model=schemas.PlaygroundContext)
async def get_context(core: core_dep):
    core.telemetry.fire("Dev Server Env Open")
    return schemas.PlaygroundContext(
        token=create_access_token(core.api_secret),
        api_url=core.api_url,
        anonymous_id=core.anonymous_id,
    )


@router.get("/db-schema", response_model=schemas.DbSchemaResponse)
async def get_db_schema(core: core_dep):
    core.telemetry.fire("Dev Server DB Schema Load")
    tables_schema = await load_tables_schema(core)
    return schemas.DbSchemaResponse(tables_schema=tables_schema)


@router.get("/files", response_model=schemas.FilesResponse)
async def get_files(core: core_dep):
    core.telemetry.fire("Dev Server Files Load")
    files = await core.repository.list_schema_files()
    return schemas.FilesResponse(files=files)


@router.post("/generate-schema", response_model=schemas.FilesResponse)
async def generate_schema(payload: schemas.GenerateSchemaRequest, core: core_dep):
    """
    Scaffold one schema file per requested table and save them to the schema
    directory.
    """
    core.telemetry.fire("Dev Server Generate Schema")
    tables_schema = await load_tables_schema(core)

    try:
        files = ScaffoldingTemplate(tables_schema).generate_files_by_table_names(
            payload.tables
        )
    except ScaffoldingError as error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))

    try:
        await write_schema_files(core.schema_path, files)
    except OSError as error:
        logging.error(f"Failed to write schema files: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to write schema files",
        )

    return schemas.FilesResponse(files=files)
