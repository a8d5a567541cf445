import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class TransactionLock:
    """
    Single-holder lock serializing top-level savepoint scopes on the
    shared transactional connection. Waiters are granted the lock in the
    order they asked for it.

    The underlying `asyncio.Lock` is recreated whenever it is free and
    used from another event loop, so one helper can serve tests that each
    run in their own loop.
    """

    def __init__(self) -> None:
        self._lock: Optional[asyncio.Lock] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._waiting = 0

    def _get_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or (
            self._loop is not loop and not self._lock.locked()
        ):
            self._lock = asyncio.Lock()
            self._loop = loop
        return self._lock

    async def acquire(self) -> None:
        lock = self._get_lock()
        if not lock.locked():
            await lock.acquire()
            return

        self._waiting += 1
        logger.debug(
            "Waiting for transaction lock (%d waiting)", self._waiting
        )
        try:
            await lock.acquire()
        finally:
            self._waiting -= 1

    def release(self) -> None:
        if self._lock is None:
            raise RuntimeError("Lock is not acquired")
        self._lock.release()

    @property
    def locked(self) -> bool:
        return self._lock is not None and self._lock.locked()

    @property
    def waiting(self) -> int:
        return self._waiting

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
