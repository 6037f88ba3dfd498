"""Force-fails jobs that have sat in queued/running for too long."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from jobsync.jobs.errors import timeout_message
from jobsync.jobs.index import JobIndex
from jobsync.jobs.lattice import TIMEOUT_WATCHED_STATUSES
from jobsync.jobs.models import Job, JobPatch, JobStatus, JobType, utcnow
from jobsync.sync.push_listener import PushListener
from jobsync.sync.reconciler import UpdateReconciler

logger = logging.getLogger(__name__)


class TimeoutSentinel:
    """Scans on its own timer; races benignly with poll and push.

    Whichever terminal update reaches the reconciler first wins, so a job
    that completed between the scan and the patch is left alone.
    """

    def __init__(
        self,
        index: JobIndex,
        reconciler: UpdateReconciler,
        push_listener: PushListener,
        scan_interval: float = 30.0,
        default_timeout_minutes: int = 15,
        video_timeout_minutes: int = 30,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._index = index
        self._reconciler = reconciler
        self._push_listener = push_listener
        self._scan_interval = scan_interval
        self._default_timeout_minutes = default_timeout_minutes
        self._video_timeout_minutes = video_timeout_minutes
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._running = False

    def threshold_minutes(self, job: Job) -> int:
        if job.type == JobType.VIDEO:
            return self._video_timeout_minutes
        return self._default_timeout_minutes

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

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._scan_interval)
            except asyncio.CancelledError:
                break
            try:
                await self.scan()
            except Exception:
                logger.exception("Timeout scan failed")

    async def scan(self) -> List[str]:
        """Fail every overdue job. Returns the ids that were failed."""
        now = self._clock()
        overdue = [
            job for job in self._index.all()
            if job.status in TIMEOUT_WATCHED_STATUSES
            and now - job.created_at > timedelta(minutes=self.threshold_minutes(job))
        ]

        failed: List[str] = []
        for job in overdue:
            minutes = self.threshold_minutes(job)
            patch = JobPatch(status=JobStatus.FAILED, error=timeout_message(minutes))
            updated = await self._reconciler.apply_patch(job.id, patch, source="timeout")
            await self._push_listener.unsubscribe(job.id)
            if updated is not None and updated.status == JobStatus.FAILED:
                failed.append(job.id)
        if failed:
            logger.info(f"Timed out {len(failed)} job(s)")
        return failed
