import hashlib
import json
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from datacore.core.drivers import BaseDriver
from datacore.core.errors import ServerCoreError
from datacore.core.logs import LogFunction, default_logger


class QueryError(ServerCoreError):
    """The backing store rejected a query."""


class OrchestratorApi:
    """
    Runs queries through the shared driver and caches their results.

    Options:
        cache_prefix: namespace for cache keys, one per application
        cache_ttl: seconds a result stays cached, 0 disables caching
        cache_max_entries: results kept at most, the oldest go first
    """

    def __init__(
        self,
        driver_factory: Callable[[], Awaitable[BaseDriver]],
        logger: LogFunction = default_logger,
        options: Optional[Dict[str, Any]] = None,
    ):
        options = options or {}
        self.driver_factory = driver_factory
        self.logger = logger
        self.cache_prefix = options.get("cache_prefix") or "standalone"
        self.cache_ttl = options.get("cache_ttl", 10)
        self.cache_max_entries = options.get("cache_max_entries", 1000)
        # key -> (expires_at, rows), in insertion order
        self._cache: Dict[str, Tuple[float, List[Dict[str, Any]]]] = {}

    def cache_key(self, sql: str, values: Dict[str, Any]) -> str:
        payload = json.dumps([sql, values], sort_keys=True, default=str)
        return f"{self.cache_prefix}:{hashlib.sha256(payload.encode('utf-8')).hexdigest()}"

    def _cached(self, key: str) -> Optional[List[Dict[str, Any]]]:
        cached = self._cache.get(key)
        if cached is None:
            return None
        if cached[0] <= time.monotonic():
            del self._cache[key]
            return None
        return cached[1]

    def _store(self, key: str, rows: List[Dict[str, Any]]) -> None:
        now = time.monotonic()
        for stale in [k for k, (expires_at, _) in self._cache.items() if expires_at <= now]:
            del self._cache[stale]

        self._cache.pop(key, None)
        self._cache[key] = (now + self.cache_ttl, rows)
        while len(self._cache) > self.cache_max_entries:
            del self._cache[next(iter(self._cache))]

    async def execute_query(
        self, sql: str, values: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        values = values or {}
        key = self.cache_key(sql, values)

        cached = self._cached(key)
        if cached is not None:
            return cached

        driver = await self.driver_factory()
        try:
            rows = await driver.query(sql, values)
        except Exception as error:
            self.logger("Orchestrator error", {"query": sql, "error": str(error)})
            raise QueryError(str(error)) from error

        if self.cache_ttl:
            self._store(key, rows)
        return rows
