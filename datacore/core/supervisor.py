import asyncio
import logging
import os
import sys
import traceback
from typing import Callable, List, Optional, Set

from datacore.core.errors import UnhandledProcessError
from datacore.core.telemetry import TelemetryEmitter


logger = logging.getLogger(__name__)

FATAL_ERROR_EVENT = "Dev Server Fatal Error"
REDIS_ERROR_MARKER = "Redis connection to"


def remediation_hints(platform: str) -> List[str]:
    hints = ["Dev server requires a locally running Redis instance to connect to"]
    if platform.startswith("win"):
        hints.append(
            "To install Redis on Windows please use "
            "https://github.com/MicrosoftArchive/redis/releases"
        )
    elif platform.startswith("darwin"):
        hints.append(
            "To install Redis on Mac please use "
            "https://redis.io/topics/quickstart or `$ brew install redis`"
        )
    else:
        hints.append("To install Redis please use https://redis.io/topics/quickstart")
    return hints


def terminate(status: int) -> None:
    logging.shutdown()
    os._exit(status)


class FatalErrorSupervisor:
    """
    Last line of defence for errors nothing else handled.

    The first fatal error starts a single telemetry report. Errors arriving
    after it wait for that same report, so at most one report is ever sent.
    Once the report settles the process exits with status 1.
    """

    def __init__(
        self,
        telemetry: TelemetryEmitter,
        exit_func: Callable[[int], None] = terminate,
        platform: Optional[str] = None,
    ):
        self.telemetry = telemetry
        self.exit_func = exit_func
        self.platform = platform or sys.platform
        self.cause: Optional[UnhandledProcessError] = None
        self._report: Optional[asyncio.Future] = None
        self._exited = False
        self._tasks: Set[asyncio.Task] = set()

    async def handle(self, error: BaseException) -> None:
        logger.error(
            f"Unhandled error: {error}",
            exc_info=(type(error), error, error.__traceback__),
        )
        if REDIS_ERROR_MARKER in str(error):
            for hint in remediation_hints(self.platform):
                print(hint)

        if self._report is None:
            self.cause = UnhandledProcessError(str(error))
            self.cause.__cause__ = error
            details = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
            self._report = asyncio.ensure_future(
                self.telemetry.emit(FATAL_ERROR_EVENT, {"error": details or repr(error)})
            )

        await self._report
        self._shutdown()

    def _shutdown(self) -> None:
        if self._exited:
            return
        self._exited = True
        self.exit_func(1)

    def install(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        loop = loop or asyncio.get_running_loop()
        loop.set_exception_handler(self._loop_exception_handler)
        sys.excepthook = self._excepthook

    def _loop_exception_handler(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        error = context.get("exception")
        if error is None:
            loop.default_exception_handler(context)
            return
        task = loop.create_task(self.handle(error))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _excepthook(self, exc_type, exc_value, exc_traceback) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        asyncio.run(self.handle(exc_value))
