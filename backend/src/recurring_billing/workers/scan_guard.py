"""Single-flight guards for the overdue scan.

A guard is held for the whole pass. A tick that cannot take it skips
instead of waiting, so passes never overlap or queue up behind each other.
"""
import asyncio
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncIterator, Protocol

import redis.asyncio as redis
import structlog
from redis.exceptions import LockError

from recurring_billing.config import settings

logger = structlog.get_logger(__name__)

SCAN_LOCK_KEY = "recurring_billing:overdue_scan"


class ScanGuard(Protocol):
    def hold(self) -> AbstractAsyncContextManager[bool]: ...


class LocalScanGuard:
    """Per-process guard; enough when a single worker runs the scan."""

    def __init__(self):
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[bool]:
        """Yield True while holding the guard, False if a pass is already running."""
        if self._lock.locked():
            yield False
            return
        async with self._lock:
            yield True


class RedisScanGuard:
    """
    System-wide guard backed by a Redis lock.

    The lock expires after `timeout` seconds so a worker that dies
    mid-pass cannot block scans forever.
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        key: str = SCAN_LOCK_KEY,
        timeout: int | None = None,
    ):
        """
        Initialize Redis scan guard.

        Args:
            client: Redis client; built from settings.redis_url when omitted
            key: Lock key shared by all workers
            timeout: Lock expiry in seconds
        """
        self.client = client or redis.from_url(
            str(settings.redis_url),
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        self.key = key
        self.timeout = timeout or settings.scan_lock_timeout_seconds

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[bool]:
        """Yield True while holding the lock, False if another worker holds it."""
        lock = self.client.lock(self.key, timeout=self.timeout, blocking=False)
        acquired = await lock.acquire(blocking=False)
        if not acquired:
            logger.info("scan_lock_busy", key=self.key)
            yield False
            return

        logger.debug("scan_lock_acquired", key=self.key, timeout=self.timeout)
        try:
            yield True
        finally:
            try:
                await lock.release()
            except LockError:
                # Expired mid-pass; another worker may already hold it
                logger.warning("scan_lock_lost", key=self.key, timeout=self.timeout)

    async def close(self) -> None:
        """Close Redis connection."""
        await self.client.aclose()
