import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from datacore.core.drivers import BaseDriver
from datacore.core.errors import DriverAcquisitionError, PlaceholderCredentialError


logger = logging.getLogger(__name__)


# Callers re-raise the error; mark it retrieved even if every caller was cancelled
def _retrieve_exception(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


class DriverManager:
    """
    Owns the one driver instance of a server process.

    The driver is built on first demand and kept for the lifetime of the
    manager. Only a driver whose connection test passed is cached. Concurrent
    callers that arrive while the driver is being built wait on the same
    initialization task instead of building their own.
    """

    def __init__(self, driver_factory: Callable[[], Any]):
        self.driver_factory = driver_factory
        self._driver: Optional[BaseDriver] = None
        self._pending: Optional[asyncio.Task] = None

    @property
    def driver(self) -> Optional[BaseDriver]:
        return self._driver

    async def get_driver(self) -> BaseDriver:
        if self._driver is not None:
            return self._driver

        if self._pending is None or self._pending.done():
            self._pending = asyncio.ensure_future(self._create_driver())
            self._pending.add_done_callback(_retrieve_exception)
        pending = self._pending

        try:
            # Shielded so one cancelled request does not abort the shared build
            return await asyncio.shield(pending)
        finally:
            if self._pending is pending and pending.done():
                self._pending = None

    async def _create_driver(self) -> BaseDriver:
        try:
            driver = self.driver_factory()
            if inspect.isawaitable(driver):
                driver = await driver
        except PlaceholderCredentialError:
            raise
        except Exception as error:
            logger.error(f"Driver construction failed: {error}")
            raise DriverAcquisitionError(f"Failed to create driver: {error}") from error

        try:
            connected = await driver.test_connection()
        except Exception as error:
            logger.error(f"Driver connection test failed: {error}")
            await self._discard(driver)
            raise DriverAcquisitionError(f"Connection test failed: {error}") from error

        if connected is False:
            await self._discard(driver)
            raise DriverAcquisitionError("Connection test failed")

        self._driver = driver
        logger.info(f"Driver ready: {type(driver).__name__}")
        return driver

    async def _discard(self, driver: Any) -> None:
        release = getattr(driver, "release", None)
        if release is None:
            return
        try:
            await release()
        except Exception as error:
            logger.warning(f"Failed to release discarded driver: {error}")

    async def release(self) -> None:
        """
        Close the cached driver. The next get_driver() builds a new one.

        A build still in flight is awaited first, so the driver it produces is
        closed too.
        """
        pending = self._pending
        if pending is not None and not pending.done():
            # Its failure belongs to the callers of get_driver()
            await asyncio.wait([pending])

        driver, self._driver = self._driver, None
        if driver is not None:
            await driver.release()
