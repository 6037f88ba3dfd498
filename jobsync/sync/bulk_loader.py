"""Paged loading of a user's existing jobs.

Phase one reads the light metadata columns newest first; phase two hydrates
``outputs`` for completed jobs in fixed-size batches. Only the metadata
phase is retried on store timeouts.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from jobsync.channels.store.base import JobStore
from jobsync.jobs.errors import StorageCapacityError, StoreTimeoutError
from jobsync.jobs.index import JobIndex
from jobsync.jobs.models import Job, JobPatch, JobStatus, filter_references, utcnow
from jobsync.sync.reconciler import UpdateReconciler

logger = logging.getLogger(__name__)


class BulkLoader:

    def __init__(
        self,
        owner_id: str,
        index: JobIndex,
        store: JobStore,
        reconciler: UpdateReconciler,
        batch_size: int = 10,
        max_retries: int = 3,
        retry_base: float = 2.0,
        recent_window: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._owner_id = owner_id
        self._index = index
        self._store = store
        self._reconciler = reconciler
        self._batch_size = batch_size
        self._max_retries = max_retries
        self._retry_base = retry_base
        self._recent_window = recent_window
        self._clock = clock
        self._sleep = sleep

    async def load_page(
        self, offset: int = 0, limit: int = 20, reset: bool = False
    ) -> Tuple[List[Job], int]:
        """Fetch one page and merge it into the index.

        With ``reset`` the index is rebuilt from the page, keeping jobs created
        locally in the last few seconds that the server snapshot missed.

        Returns the page's jobs (as now tracked) and the owner's total count.
        """
        rows, total = await self._fetch_metadata(offset, limit)
        jobs = self._parse_rows(rows)
        await self._hydrate(jobs)

        if reset:
            page = await self._reset_index(jobs)
        else:
            page = await self._merge_index(jobs)
        logger.info(f"Loaded {len(page)} job(s) at offset {offset} (total {total})")
        return page, total

    async def _fetch_metadata(self, offset: int, limit: int):
        last_error: Optional[StoreTimeoutError] = None
        for attempt in range(self._max_retries + 1):
            try:
                return await self._store.list_by_owner(self._owner_id, offset, limit)
            except StoreTimeoutError as e:
                last_error = e
                if attempt >= self._max_retries:
                    break
                delay = self._retry_base * 2 ** attempt
                logger.warning(
                    f"Job list timed out (attempt {attempt + 1}/{self._max_retries + 1}), "
                    f"retrying in {delay:.0f}s"
                )
                await self._sleep(delay)
        raise StorageCapacityError(self._max_retries + 1, last_error) from last_error

    @staticmethod
    def _parse_rows(rows: List[Dict]) -> List[Job]:
        jobs = []
        for row in rows:
            try:
                jobs.append(Job.from_row(row))
            except (ValidationError, KeyError) as e:
                logger.warning(f"Skipping unreadable job row {row.get('id')}: {e}")
        return jobs

    async def _hydrate(self, jobs: List[Job]) -> None:
        completed = [i for i, job in enumerate(jobs) if job.status == JobStatus.COMPLETED]
        for start in range(0, len(completed), self._batch_size):
            positions = completed[start:start + self._batch_size]
            outputs = await self._store.fetch_outputs([jobs[i].id for i in positions])
            for i in positions:
                kept, dropped = filter_references(outputs.get(jobs[i].id))
                if dropped:
                    logger.debug(f"Dropped {dropped} inline output(s) from job {jobs[i].id}")
                jobs[i] = jobs[i].model_copy(update={"outputs": kept})

    @staticmethod
    def _snapshot_patch(job: Job) -> JobPatch:
        # Only completed rows had their outputs hydrated
        return JobPatch.from_job(job, include_outputs=job.status == JobStatus.COMPLETED)

    async def _merge_index(self, jobs: List[Job]) -> List[Job]:
        for job in jobs:
            if job.id in self._index:
                await self._reconciler.apply_patch(job.id, self._snapshot_patch(job), source="load")
            else:
                self._index.insert(job, front=False)
        return [self._index.get(job.id) for job in jobs if job.id in self._index]

    async def _reset_index(self, jobs: List[Job]) -> List[Job]:
        fetched: List[Job] = []
        for job in jobs:
            if job.id in self._index:
                # A stale snapshot must not move a tracked job backwards
                await self._reconciler.apply_patch(job.id, self._snapshot_patch(job), source="load")
                fetched.append(self._index.get(job.id) or job)
            else:
                fetched.append(job)

        now = self._clock()
        fetched_ids = {job.id for job in jobs}
        recent = [
            job for job in self._index.all()
            if job.id not in fetched_ids
            and (now - job.created_at).total_seconds() < self._recent_window
        ]
        if recent:
            logger.debug(f"Keeping {len(recent)} recent job(s) missing from the snapshot")
        result = recent + fetched
        self._index.reset(result)
        return result
