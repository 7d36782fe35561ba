import inspect
import logging
from typing import Any, Callable, Optional

import jwt
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status

from datacore.core import schemas
from datacore.core.compiler import CompilerApi
from datacore.core.errors import ConfigError, DriverAcquisitionError
from datacore.core.logs import LogFunction
from datacore.core.orchestrator import OrchestratorApi, QueryError
from datacore.core.security import decode_access_token


class ApiGateway:
    """
    Public query API.

    Every route requires a token signed with the API secret, sent as
    ``Authorization: Bearer <token>`` or as the bare header value. A custom
    ``check_auth(request, authorization)`` hook replaces the JWT check.
    """

    def __init__(
        self,
        api_secret: str,
        compiler_api: CompilerApi,
        orchestrator_api: OrchestratorApi,
        logger: LogFunction,
        check_auth: Optional[Callable[..., Any]] = None,
    ):
        self.api_secret = api_secret
        self.compiler_api = compiler_api
        self.orchestrator_api = orchestrator_api
        self.logger = logger
        self.check_auth = check_auth or self.check_jwt

    def check_jwt(self, request: Request, authorization: Optional[str]) -> Any:
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
        if not authorization:
            raise credentials_exception

        token = authorization
        if token.lower().startswith("bearer "):
            token = token[len("bearer "):]

        try:
            return decode_access_token(token, self.api_secret)
        except jwt.InvalidTokenError:
            raise credentials_exception

    async def authenticate(self, request: Request) -> Any:
        result = self.check_auth(request, request.headers.get("Authorization"))
        if inspect.isawaitable(result):
            result = await result
        return result

    def init_app(self, app: FastAPI) -> None:
        router = APIRouter(
            prefix="/api/v1",
            tags=["Gateway"],
            dependencies=[Depends(self.authenticate)],
        )
        router.add_api_route(
            "/meta", self.meta, methods=["GET"], response_model=schemas.MetaResponse
        )
        router.add_api_route(
            "/load", self.load, methods=["POST"], response_model=schemas.LoadResponse
        )
        app.include_router(router)

    async def meta(self):
        try:
            cubes = await self.compiler_api.meta_config()
        except Exception as error:
            logging.error(f"Failed to compile schema: {error}")
            self.logger("Internal Server Error", {"error": str(error)})
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to compile schema",
            )
        return {"cubes": cubes}

    async def load(self, payload: schemas.LoadRequest):
        query = payload.query
        self.logger("Load Request", {"query": query.model_dump()})

        try:
            rows = await self.orchestrator_api.execute_query(query.sql, query.values)
        except QueryError as error:
            self.logger("User Error", {"query": query.model_dump(), "error": str(error)})
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
        except DriverAcquisitionError as error:
            self.logger("Internal Server Error", {"error": str(error)})
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Database connection failed",
            )
        except ConfigError as error:
            logging.error(f"Driver misconfigured: {error}")
            self.logger("Internal Server Error", {"error": str(error)})
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error)
            )

        self.logger("Load Request Success", {"query": query.model_dump()})
        return {"query": query, "data": rows}
