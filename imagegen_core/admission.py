"""
imagegen_core - Admission Control
=================================

Counting permit pools that bound in-flight generations per backend class.

- ``remote`` (default 4): platform + OpenAI-compatible calls combined
- ``local``  (default 1): the local pipeline runs strictly serially

Waiters are served FIFO. A released permit is handed straight to the oldest
waiter, so a task arriving later can never slip in ahead of the queue.

Pools are plain objects owned by whoever constructs them; there is no
process-wide instance.

Usage:
    admission = AdmissionController(remote_capacity=4, local_capacity=1)

    async with admission.permit("local"):
        result = await backend.generate(request)
"""

import asyncio
import contextlib
from collections import deque
from contextlib import asynccontextmanager

from .config import Settings
from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    "PermitPool",
    "AdmissionController",
    "REMOTE_POOL",
    "LOCAL_POOL",
]

REMOTE_POOL = "remote"
LOCAL_POOL = "local"


class PermitPool:
    """FIFO counting semaphore with direct hand-off on release."""

    def __init__(self, name: str, capacity: int):
        if capacity < 1:
            raise ValueError(f"Pool '{name}' capacity must be at least 1, got {capacity}")
        self.name = name
        self._capacity = capacity
        self._available = capacity
        self._waiters: deque[asyncio.Future] = deque()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_use(self) -> int:
        """Permits currently held."""
        return self._capacity - self._available

    @property
    def waiting(self) -> int:
        """Tasks queued for a permit."""
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self):
        """Wait for a permit. Never fails; cancellation while queued leaves the queue."""
        if self._available > 0 and not self.waiting:
            self._available -= 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        logger.debug(
            "Waiting for permit",
            extra={"pool": self.name, "in_use": self.in_use, "waiting": self.waiting},
        )
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Permit was handed over just as we were cancelled; pass it on.
                self._release_one()
            else:
                with contextlib.suppress(ValueError):
                    self._waiters.remove(waiter)
            raise

    def release(self):
        """Return a permit. Releasing more than was acquired is a programming error."""
        if self._available >= self._capacity:
            raise RuntimeError(f"Pool '{self.name}' released more times than acquired")
        self._release_one()

    def _release_one(self):
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # Hand-off: the permit moves to the waiter without touching the count.
                waiter.set_result(None)
                return
        self._available += 1

    @asynccontextmanager
    async def permit(self):
        """Scoped acquisition; the permit is released on every exit path."""
        await self.acquire()
        try:
            yield self
        finally:
            self.release()

    def __repr__(self) -> str:
        return (
            f"PermitPool(name={self.name!r}, capacity={self._capacity}, "
            f"in_use={self.in_use}, waiting={self.waiting})"
        )


class AdmissionController:
    """The ``remote`` and ``local`` permit pools."""

    def __init__(self, remote_capacity: int = 4, local_capacity: int = 1):
        self.pools: dict[str, PermitPool] = {
            REMOTE_POOL: PermitPool(REMOTE_POOL, remote_capacity),
            LOCAL_POOL: PermitPool(LOCAL_POOL, local_capacity),
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "AdmissionController":
        return cls(
            remote_capacity=settings.generation.remote_concurrency,
            local_capacity=settings.generation.local_concurrency,
        )

    def pool(self, pool_id: str) -> PermitPool:
        try:
            return self.pools[pool_id]
        except KeyError:
            raise KeyError(f"Unknown admission pool: {pool_id!r}") from None

    async def acquire(self, pool_id: str):
        await self.pool(pool_id).acquire()

    def release(self, pool_id: str):
        self.pool(pool_id).release()

    def permit(self, pool_id: str):
        """``async with admission.permit("remote"): ...``"""
        return self.pool(pool_id).permit()

    def status(self) -> dict[str, dict[str, int]]:
        return {
            name: {"capacity": p.capacity, "in_use": p.in_use, "waiting": p.waiting}
            for name, p in self.pools.items()
        }
