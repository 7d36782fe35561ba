from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI

from datacore.core.config import get_settings
from datacore.core.logs import configure_logging
from datacore.core.server import ServerCore


def create_app(options: Optional[Dict[str, Any]] = None) -> FastAPI:
    """
    Build the API application.

    Configuration errors raise here, before the server starts listening.
    Run with ``uvicorn datacore.main:create_app --factory``.
    """
    configure_logging(get_settings().LOG_LEVEL)
    core = ServerCore.create(options)

    # Release the driver once everything is done
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await core.startup()
        yield
        await core.shutdown()

    app = FastAPI(title="Datacore API", lifespan=lifespan)

    @app.get("/health")
    async def health():
        return {"status": "ok", "devServer": core.dev_server}

    core.init_app(app)
    return app


def run() -> None:
    settings = get_settings()
    uvicorn.run("datacore.main:create_app", factory=True, host="0.0.0.0", port=settings.PORT)


if __name__ == "__main__":
    run()
