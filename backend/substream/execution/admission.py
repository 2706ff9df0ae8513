"""
Bounded-concurrency admission control for pipelines.

Design rules:
- At most max_concurrent slots outstanding at any time
- FIFO order for queued requests, no prioritization
- A released slot is handed straight to the oldest waiter, so a new
  submission can never overtake the queue
- Every slot is released exactly once, whatever the outcome
"""

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

from .errors import AdmissionRejectedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class AdmissionStats:
    """Snapshot of admission state."""

    active: int
    queued: int
    max: int

    def as_dict(self) -> dict:
        return {"active": self.active, "queued": self.queued, "max": self.max}


class AdmissionSlot:
    """
    One concurrency token.

    release() is idempotent; only the first call returns the slot.
    """

    def __init__(self, controller: "AdmissionController"):
        self._controller = controller
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._controller._release()


class AdmissionController:
    """
    FIFO admission gate over a fixed number of slots.

    All state is mutated from the event loop thread only, so counter and
    queue updates are atomic with respect to each other.
    """

    def __init__(self, max_concurrent: int = 5, max_queued: Optional[int] = None):
        """
        Initialize controller.

        Args:
            max_concurrent: Number of pipelines allowed to run at once
            max_queued: Queue limit, None for unbounded
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self.max_concurrent = max_concurrent
        self.max_queued = max_queued
        self._active = 0
        self._waiters: deque[asyncio.Future] = deque()

    def stats(self) -> AdmissionStats:
        """Current active/queued/max counts. Pure read."""
        return AdmissionStats(
            active=self._active,
            queued=len(self._waiters),
            max=self.max_concurrent,
        )

    async def acquire(self) -> AdmissionSlot:
        """
        Wait for a free slot.

        Raises:
            AdmissionRejectedError: If the queue is at max_queued
        """
        if self._active < self.max_concurrent and not self._waiters:
            self._active += 1
            logger.debug(f"[Admission] Acquired slot. Active: {self._active}, Queued: 0")
            return AdmissionSlot(self)

        if self.max_queued is not None and len(self._waiters) >= self.max_queued:
            raise AdmissionRejectedError(len(self._waiters), self.max_queued)

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        logger.warning(
            f"[Admission] Queueing request. Active: {self._active}, "
            f"Queued: {len(self._waiters)}, Max: {self.max_concurrent}"
        )

        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was handed over just before cancellation: pass it on
                self._release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

        logger.debug(
            f"[Admission] Acquired queued slot. Active: {self._active}, "
            f"Queued: {len(self._waiters)}"
        )
        return AdmissionSlot(self)

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[AdmissionSlot]:
        """Hold a slot for the duration of the block."""
        admission_slot = await self.acquire()
        try:
            yield admission_slot
        finally:
            admission_slot.release()

    async def submit(self, task: Callable[[], Awaitable[T]]) -> T:
        """
        Run task under a slot, queueing FIFO if none is free.

        The slot is released whether the task returns or raises.
        """
        async with self.slot():
            return await task()

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # Hand-off: active count stays the same
                waiter.set_result(None)
                return
        self._active = max(0, self._active - 1)
        logger.debug(f"[Admission] Released slot. Active: {self._active}, Queued: 0")
