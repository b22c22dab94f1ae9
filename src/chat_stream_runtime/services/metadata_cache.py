from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

from loguru import logger

from chat_stream_runtime.models import ServiceMetadata

DEFAULT_TTL_SECONDS = 5 * 60


class MetadataCache:
    """Time-bounded cache of service metadata, keyed by base URL.

    Concurrent callers asking for the same key while a fetch is in flight
    share that fetch instead of starting their own.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[ServiceMetadata, float]] = {}
        self._in_flight: dict[str, asyncio.Task[ServiceMetadata]] = {}

    def get(self, key: str) -> ServiceMetadata | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        data, stored_at = entry
        if self._clock() - stored_at >= self._ttl_seconds:
            return None
        return data

    def set(self, key: str, data: ServiceMetadata) -> None:
        self._entries[key] = (data, self._clock())

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[ServiceMetadata]],
        *,
        force: bool = False,
    ) -> ServiceMetadata:
        if not force:
            cached = self.get(key)
            if cached is not None:
                return cached

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(key, fetch))
            self._in_flight[key] = task
        else:
            logger.debug(f"Joining in-flight metadata fetch for {key}")
        return await asyncio.shield(task)

    async def _fetch(self, key: str, fetch: Callable[[], Awaitable[ServiceMetadata]]) -> ServiceMetadata:
        try:
            data = await fetch()
            self.set(key, data)
            return data
        finally:
            self._in_flight.pop(key, None)
