"""Process-wide admission control for expensive generation jobs.

The controller bounds how many generation jobs run at once. Jobs that arrive
while every slot is taken wait in a FIFO queue and are granted slots strictly
in arrival order as running jobs release theirs.

One instance is created at application startup and handed to request handlers
through a FastAPI dependency. All state lives on the instance; there is no
module-level queue.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from services.gateway.exceptions import AdmissionTimeout


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class QueuedJob:
    """A job waiting for a slot.

    `waiter` is only attached once a caller actually awaits the grant, so jobs
    can be queued and granted from synchronous code as well.
    """

    job_id: str
    enqueued_at: float
    waiter: asyncio.Future[None] | None = None
    loop: asyncio.AbstractEventLoop | None = None


@dataclass(frozen=True, slots=True)
class AdmissionDecision:
    """Outcome of `request_slot`: granted now, or queued at `position`."""

    job_id: str
    granted: bool
    position: int | None = None


@dataclass(frozen=True, slots=True)
class QueueStatus:
    active_count: int
    queue_length: int
    capacity: int

    @property
    def available_slots(self) -> int:
        return self.capacity - self.active_count


def format_wait(seconds: int) -> str:
    """Render a wait estimate, e.g. ``45 seconds``, ``2 minutes``, ``1m 30s``."""
    if seconds < 60:
        return f"{seconds} seconds"
    minutes, remainder = divmod(seconds, 60)
    if remainder == 0:
        return f"{minutes} {'minute' if minutes == 1 else 'minutes'}"
    return f"{minutes}m {remainder}s"


class AdmissionController:
    """Bounded-concurrency gate with a FIFO wait queue.

    Slot bookkeeping is guarded by a lock held only while state is mutated;
    waiters are notified after the lock is released. Active jobs are tracked
    by id, so releasing an unknown or already released job is a no-op.
    """

    def __init__(self, capacity: int, estimated_seconds_per_request: int = 30):
        if capacity < 1:
            raise ValueError("capacity must be a positive integer")
        self._capacity = capacity
        self._estimated_seconds = estimated_seconds_per_request
        self._active: set[str] = set()
        self._queue: OrderedDict[str, QueuedJob] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    # ------------------------------------------------------------------
    # Core contract
    # ------------------------------------------------------------------
    def request_slot(self, job_id: str) -> AdmissionDecision:
        """Grant a slot immediately if one is free, otherwise enqueue the job."""
        with self._lock:
            if job_id in self._active:
                return AdmissionDecision(job_id=job_id, granted=True)
            if job_id in self._queue:
                return AdmissionDecision(
                    job_id=job_id,
                    granted=False,
                    position=self._position_locked(job_id),
                )
            if len(self._active) < self._capacity:
                self._active.add(job_id)
                active = len(self._active)
                decision = AdmissionDecision(job_id=job_id, granted=True)
            else:
                self._queue[job_id] = QueuedJob(
                    job_id=job_id, enqueued_at=time.monotonic()
                )
                decision = AdmissionDecision(
                    job_id=job_id, granted=False, position=len(self._queue)
                )

        if decision.granted:
            logger.info(
                "Slot granted to %s immediately (%d/%d)",
                job_id,
                active,
                self._capacity,
            )
        else:
            logger.info("Job %s queued at position %d", job_id, decision.position)
        return decision

    def release_slot(self, job_id: str) -> None:
        """Free the slot held by `job_id` and hand it to the queue head, if any."""
        with self._lock:
            if job_id not in self._active:
                return
            self._active.discard(job_id)
            granted = self._grant_next_locked()
            active = len(self._active)

        logger.info("Released slot for %s (%d/%d)", job_id, active, self._capacity)
        if granted is not None:
            logger.info(
                "Slot granted to queued job %s after %.1fs",
                granted.job_id,
                time.monotonic() - granted.enqueued_at,
            )
            _notify(granted, _resolve_future)

    def cancel_wait(self, job_id: str) -> bool:
        """Remove a queued job. Returns False if it was not waiting."""
        with self._lock:
            job = self._queue.pop(job_id, None)
        if job is None:
            return False
        logger.info("Job %s left the queue before being granted a slot", job_id)
        _notify(job, _cancel_future)
        return True

    def status(self) -> QueueStatus:
        with self._lock:
            return QueueStatus(
                active_count=len(self._active),
                queue_length=len(self._queue),
                capacity=self._capacity,
            )

    def position(self, job_id: str) -> int | None:
        """Current 1-based queue position of `job_id`, or None if not queued."""
        with self._lock:
            if job_id not in self._queue:
                return None
            return self._position_locked(job_id)

    def is_active(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._active

    # ------------------------------------------------------------------
    # Waiting helpers
    # ------------------------------------------------------------------
    async def acquire(self, job_id: str, timeout: float | None = None) -> None:
        """Wait until `job_id` holds a slot.

        A timeout raises `AdmissionTimeout`; cancellation re-raises. In both
        cases the job leaves the queue without consuming a slot, and a grant
        that raced with the abandonment is handed back.
        """
        decision = self.request_slot(job_id)
        if decision.granted:
            return

        loop = asyncio.get_running_loop()
        with self._lock:
            job = self._queue.get(job_id)
            if job is None:
                # Granted between request_slot and here.
                return
            job.loop = loop
            job.waiter = waiter = loop.create_future()

        try:
            await asyncio.wait_for(asyncio.shield(waiter), timeout)
        except TimeoutError as exc:
            self._abandon(job_id)
            raise AdmissionTimeout(
                f"No generation slot became available within {timeout:g}s",
                retry_after_seconds=self._estimated_seconds,
            ) from exc
        except asyncio.CancelledError:
            self._abandon(job_id)
            raise

    @asynccontextmanager
    async def slot(
        self, job_id: str, timeout: float | None = None
    ) -> AsyncIterator[None]:
        """Hold a slot for the duration of the block; always released on exit."""
        await self.acquire(job_id, timeout)
        try:
            yield
        finally:
            self.release_slot(job_id)

    def estimated_wait_seconds(self, position: int) -> int:
        return position * self._estimated_seconds

    def queue_message(self, position: int) -> str:
        wait = format_wait(self.estimated_wait_seconds(position))
        return f"You're in position {position}. Estimated wait: {wait}"

    # ------------------------------------------------------------------
    # Internals (callers hold self._lock)
    # ------------------------------------------------------------------
    def _position_locked(self, job_id: str) -> int:
        for index, queued_id in enumerate(self._queue, start=1):
            if queued_id == job_id:
                return index
        raise KeyError(job_id)

    def _grant_next_locked(self) -> QueuedJob | None:
        if not self._queue or len(self._active) >= self._capacity:
            return None
        _, job = self._queue.popitem(last=False)
        self._active.add(job.job_id)
        return job

    def _abandon(self, job_id: str) -> None:
        """Drop a waiter that gave up: dequeue it, or hand back a racing grant."""
        if not self.cancel_wait(job_id):
            self.release_slot(job_id)


def _notify(job: QueuedJob, callback) -> None:
    if job.waiter is None or job.loop is None:
        return
    job.loop.call_soon_threadsafe(callback, job.waiter)


def _resolve_future(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)


def _cancel_future(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.cancel()
