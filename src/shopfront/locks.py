"""Per-identity mutual-exclusion gate for cart mutations."""

import asyncio
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncIterator, Protocol

from .errors import LockTimeoutError
from .logs import get_logger

log = get_logger("locks")


class KeyedGate(Protocol):
    """
    At most one holder per key.

    Implementations may be process-local or distributed; callers only rely on
    acquire/release and the `hold` context manager.
    """

    async def acquire(self, key: str, max_wait: float) -> None: ...

    async def release(self, key: str) -> None: ...

    def hold(self, key: str, max_wait: float | None = None) -> AbstractAsyncContextManager[None]: ...


class InMemoryKeyedGate:
    """
    Process-local gate backed by a set of held keys.

    Waiters poll at a fixed interval rather than queueing, so there is no
    fairness guarantee between them. Provides no protection across processes.
    """

    def __init__(self, poll_interval: float = 0.01, default_max_wait: float = 5.0):
        self._held: set[str] = set()
        self._poll_interval = poll_interval
        self._default_max_wait = default_max_wait

    def is_held(self, key: str) -> bool:
        return key in self._held

    async def acquire(self, key: str, max_wait: float) -> None:
        """
        Wait until `key` is free, then take it.

        Raises:
            LockTimeoutError: If `max_wait` seconds pass without acquiring.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max_wait
        # Check-and-add has no await in between, so it is atomic on the event loop.
        while key in self._held:
            if loop.time() >= deadline:
                log.warning("lock_timeout", key=key, max_wait=max_wait)
                raise LockTimeoutError(key, max_wait)
            await asyncio.sleep(self._poll_interval)
        self._held.add(key)

    async def release(self, key: str) -> None:
        self._held.discard(key)

    @asynccontextmanager
    async def hold(self, key: str, max_wait: float | None = None) -> AsyncIterator[None]:
        """Hold `key` for the duration of the block, releasing on every exit path."""
        await self.acquire(key, self._default_max_wait if max_wait is None else max_wait)
        try:
            yield
        finally:
            await self.release(key)
