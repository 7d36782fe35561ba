"""
SERVER CORE - Composition root of a datacore process

Flow:
    options -> resolve_options() -> ServerCore
    ServerCore.init_app(app):
        placeholder check -> CompilerApi -> OrchestratorApi -> ApiGateway -> playground (dev only)

One ServerCore lives as long as the process. It owns the state that has to
be shared by every request: the cached driver, the telemetry emitter and the
fatal error supervisor.
"""

import logging
from functools import partial
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI

from datacore.api.gateway import ApiGateway
from datacore.core.compiler import CompilerApi
from datacore.core.config import (
    ServerOptions,
    check_env_for_placeholders,
    get_settings,
    resolve_options,
)
from datacore.core.driver_manager import DriverManager
from datacore.core.drivers import BaseDriver, registry_factory
from datacore.core.errors import ServerCoreError
from datacore.core.logs import default_logger, telemetry_logger
from datacore.core.orchestrator import OrchestratorApi
from datacore.core.repository import FileRepository
from datacore.core.supervisor import FatalErrorSupervisor
from datacore.core.telemetry import TelemetryEmitter


logger = logging.getLogger(__name__)


class ServerCore:
    def __init__(self, options: Optional[Dict[str, Any]] = None):
        self.options: ServerOptions = resolve_options(
            options, driver_factory_for=self.default_driver_factory
        )
        self.api_secret = self.options.api_secret
        self.db_type = self.options.db_type
        self.schema_path = self.options.schema_path
        self.dev_server = self.options.dev_server

        self.repository = FileRepository(self.schema_path)
        self.driver_manager = DriverManager(self.options.driver_factory)

        settings = get_settings()
        self.telemetry = TelemetryEmitter(
            url=settings.DATACORE_TELEMETRY_URL or "",
            write_key=settings.DATACORE_TELEMETRY_WRITE_KEY,
            enabled=bool(
                self.dev_server and self.options.telemetry and settings.DATACORE_TELEMETRY_URL
            ),
        )
        self.anonymous_id = self.telemetry.anonymous_id
        self.api_url = settings.DATACORE_API_URL or f"http://localhost:{settings.PORT}"

        if self.options.logger is not None:
            self.logger = self.options.logger
        elif self.dev_server:
            self.logger = telemetry_logger(self.telemetry)
        else:
            self.logger = default_logger

        self.supervisor = FatalErrorSupervisor(self.telemetry) if self.dev_server else None

        self.compiler_api: Optional[CompilerApi] = None
        self.orchestrator_api: Optional[OrchestratorApi] = None
        self.gateway: Optional[ApiGateway] = None
        self._initialized = False

    @classmethod
    def create(cls, options: Optional[Dict[str, Any]] = None) -> "ServerCore":
        return cls(options)

    def init_app(self, app: FastAPI) -> None:
        """Register every route of this server on ``app``. Runs once."""
        if self._initialized:
            raise ServerCoreError("init_app() has already been called for this server")

        check_env_for_placeholders()
        self._initialized = True
        self.compiler_api = self.create_compiler_api(self.repository)
        self.orchestrator_api = self.create_orchestrator_api()
        self.gateway = ApiGateway(
            self.api_secret,
            self.compiler_api,
            self.orchestrator_api,
            self.logger,
            check_auth=self.options.check_auth,
        )
        self.gateway.init_app(app)
        app.state.server_core = self

        if self.dev_server:
            self.init_dev_env(app)

    def init_dev_env(self, app: FastAPI) -> None:
        # Imported here, the playground router depends on this module
        from datacore.api.endpoints import playground

        playground.activate(app, self)

    def create_compiler_api(self, repository: FileRepository) -> CompilerApi:
        return CompilerApi(
            repository,
            self.db_type,
            schema_version=self.options.schema_version,
            dev_server=self.dev_server,
            logger=self.logger,
        )

    def create_orchestrator_api(self) -> OrchestratorApi:
        options = {
            "cache_prefix": get_settings().DATACORE_APP,
            **self.options.orchestrator_options,
        }
        return OrchestratorApi(self.get_driver, self.logger, options)

    async def get_driver(self) -> BaseDriver:
        return await self.driver_manager.get_driver()

    async def startup(self) -> None:
        if self.supervisor is not None:
            self.supervisor.install()
        if self.dev_server:
            self.telemetry.fire("Dev Server Start")

    async def shutdown(self) -> None:
        await self.telemetry.drain()
        await self.driver_manager.release()

    @staticmethod
    def default_driver_factory(db_type: str) -> Callable[[], BaseDriver]:
        # Rejects unknown db types while the server is being composed
        registry_factory(db_type)
        return partial(ServerCore.create_driver, db_type)

    @staticmethod
    def create_driver(db_type: Optional[str] = None) -> BaseDriver:
        check_env_for_placeholders()
        return registry_factory(db_type or get_settings().DATACORE_DB_TYPE)()
