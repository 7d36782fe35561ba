"""
Best-effort usage telemetry for the dev server.

Nothing in here may fail or slow down the caller: ``emit`` swallows every
delivery error and ``fire`` only schedules ``emit`` on the running loop.
"""

import asyncio
import hashlib
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import httpx

from datacore.core.errors import TelemetryDeliveryError


logger = logging.getLogger(__name__)

MACHINE_ID_FILES = ("/etc/machine-id", "/var/lib/dbus/machine-id")


def machine_id() -> str:
    """Stable per-machine id, hashed so the raw id never leaves the host."""
    raw = None
    for candidate in MACHINE_ID_FILES:
        try:
            raw = Path(candidate).read_text().strip()
        except OSError:
            continue
        if raw:
            break
    if not raw:
        raw = f"{uuid.getnode():012x}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class TelemetryEmitter:
    def __init__(
        self,
        url: str,
        write_key: Optional[str] = None,
        enabled: bool = True,
        anonymous_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 5.0,
    ):
        self.url = url
        self.write_key = write_key
        self.enabled = enabled
        self.anonymous_id = anonymous_id or machine_id()
        self.transport = transport
        self.timeout = timeout
        self._queue: List[Dict[str, Any]] = []
        self._tasks: Set[asyncio.Task] = set()

    def track(self, name: str, properties: Optional[Dict[str, Any]] = None) -> None:
        self._queue.append(
            {
                "type": "track",
                "event": name,
                "anonymousId": self.anonymous_id,
                "properties": properties or {},
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    async def flush(self) -> None:
        if not self._queue:
            return
        batch, self._queue = self._queue, []
        auth = (self.write_key, "") if self.write_key else None

        try:
            async with httpx.AsyncClient(
                transport=self.transport, timeout=self.timeout
            ) as client:
                response = await client.post(self.url, json={"batch": batch}, auth=auth)
                response.raise_for_status()
        except httpx.HTTPError as error:
            raise TelemetryDeliveryError(f"Failed to deliver {len(batch)} events: {error}") from error

    async def emit(self, name: str, properties: Optional[Dict[str, Any]] = None) -> None:
        """Deliver one event. Never raises."""
        if not self.enabled:
            return
        try:
            self.track(name, properties)
            await self.flush()
        except Exception as error:
            logger.debug(f"Telemetry event '{name}' dropped: {error}")

    def fire(
        self, name: str, properties: Optional[Dict[str, Any]] = None
    ) -> Optional[asyncio.Task]:
        """Schedule ``emit`` in the background and return right away."""
        if not self.enabled:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"Telemetry event '{name}' dropped: no running event loop")
            return None

        task = loop.create_task(self.emit(name, properties))
        # Keep a reference until done, the loop only holds weak ones
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled event. Used at shutdown."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
