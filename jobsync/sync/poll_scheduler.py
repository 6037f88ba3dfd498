"""Backoff-scheduled polling of active jobs.

One repeating timer. Its interval doubles for every ``backoff_step`` of
the oldest active job's observed age, capped at ``max_interval``. Every
active job is fetched on every tick; the backoff only slows the ticks down.
"""

import asyncio
import logging
import math
from datetime import datetime
from typing import Callable, Dict, Optional

from jobsync.channels.store.base import JobStore
from jobsync.jobs.errors import StoreError
from jobsync.jobs.index import JobIndex
from jobsync.jobs.lattice import is_terminal
from jobsync.jobs.models import JobPatch, utcnow
from jobsync.sync.reconciler import UpdateReconciler

logger = logging.getLogger(__name__)

# Beyond this many doublings the cap always wins
_MAX_DOUBLINGS = 32


def compute_interval(
    oldest_age: float,
    base_interval: float = 2.0,
    max_interval: float = 30.0,
    backoff_step: float = 30.0,
) -> float:
    """``min(base * 2**floor(age / step), max)``, all in seconds."""
    doublings = math.floor(max(oldest_age, 0.0) / backoff_step)
    if doublings >= _MAX_DOUBLINGS:
        return max_interval
    return min(base_interval * 2 ** doublings, max_interval)


class PollScheduler:

    def __init__(
        self,
        index: JobIndex,
        store: JobStore,
        reconciler: UpdateReconciler,
        base_interval: float = 2.0,
        max_interval: float = 30.0,
        backoff_step: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._index = index
        self._store = store
        self._reconciler = reconciler
        self._base_interval = base_interval
        self._max_interval = max_interval
        self._backoff_step = backoff_step
        self._clock = clock
        self._tracking: Dict[str, datetime] = {}
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self.interval = base_interval

    @property
    def tracking(self) -> Dict[str, datetime]:
        return dict(self._tracking)

    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._tracking.clear()
        self.interval = self._base_interval

    def forget(self, job_id: str) -> None:
        """Drop the tracking start time of a job that left the active set."""
        self._tracking.pop(job_id, None)

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break
            try:
                await self.tick()
            except Exception:
                logger.exception("Poll tick failed")

    async def tick(self) -> None:
        active = self._index.active()
        if not active:
            self._set_interval(self._base_interval)
            self._tracking.clear()
            return

        now = self._clock()
        active_ids = {job.id for job in active}
        for job_id in list(self._tracking):
            if job_id not in active_ids:
                del self._tracking[job_id]

        oldest_age = 0.0
        for job in active:
            started = self._tracking.setdefault(job.id, now)
            oldest_age = max(oldest_age, (now - started).total_seconds())

        self._set_interval(compute_interval(
            oldest_age, self._base_interval, self._max_interval, self._backoff_step
        ))
        await asyncio.gather(*(self._poll_job(job.id) for job in active))

    async def _poll_job(self, job_id: str) -> None:
        try:
            record = await self._store.get(job_id)
        except StoreError as e:
            logger.warning(f"Poll of job {job_id} failed, retrying next tick: {e}")
            return
        if record is None:
            logger.warning(f"Job {job_id} missing from store during poll")
            return

        await self._reconciler.apply_patch(job_id, JobPatch.from_job(record), source="poll")
        current = self._index.get(job_id)
        if current is None or is_terminal(current.status):
            self.forget(job_id)

    def _set_interval(self, interval: float) -> None:
        if interval != self.interval:
            logger.debug(f"Poll interval {self.interval:.0f}s -> {interval:.0f}s")
            self.interval = interval
