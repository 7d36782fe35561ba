import json
import logging
from typing import Any, Callable, Dict, Optional

from datacore.core.telemetry import TelemetryEmitter


LogFunction = Callable[[str, Dict[str, Any]], None]

logger = logging.getLogger("datacore")

# Gateway log messages that are also reported as dev server telemetry
TRACKED_MESSAGES = {
    "Load Request",
    "Load Request Success",
    "Orchestrator error",
    "Internal Server Error",
    "User Error",
}


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def default_logger(msg: str, params: Optional[Dict[str, Any]] = None) -> None:
    logger.info(f"{msg}: {json.dumps(params or {}, default=str)}")


def telemetry_logger(telemetry: TelemetryEmitter) -> LogFunction:
    """Log like ``default_logger`` and report tracked messages as events."""

    def log(msg: str, params: Optional[Dict[str, Any]] = None) -> None:
        params = params or {}
        if msg in TRACKED_MESSAGES:
            telemetry.fire(msg, {"error": params.get("error")})
        default_logger(msg, params)

    return log
