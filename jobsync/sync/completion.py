"""Hands completed multi-part jobs to the compositor.

A best-effort enhancement on top of an already completed job: the composite
is appended to ``outputs`` on success; on failure the per-part outputs stay
and the job stays ``completed``.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from jobsync.channels.compositor.base import Compositor
from jobsync.jobs.models import COMPOSITING_STAGE, Job, JobProgress, JobStatus
from jobsync.sync.reconciler import UpdateReconciler

logger = logging.getLogger(__name__)


def expected_count(manifest: Optional[Dict[str, Any]]) -> int:
    """Number of sub-units the manifest says the job produces (0 if unknown)."""
    if not manifest:
        return 0
    for key in ("expectedCount", "sceneCount"):
        value = manifest.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    scenes = manifest.get("scenePrompts")
    if isinstance(scenes, list):
        return len(scenes)
    return 0


class CompletionDispatcher:

    def __init__(self, reconciler: UpdateReconciler, compositor: Compositor):
        self._reconciler = reconciler
        self._compositor = compositor
        self._dispatched: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()

    def should_compose(self, job: Job) -> bool:
        if job.status != JobStatus.COMPLETED or job.id in self._dispatched:
            return False
        expected = expected_count(job.manifest)
        return expected > 1 and len(job.outputs) == expected

    async def evaluate(self, job: Job) -> bool:
        """Start compositing in the background if ``job`` qualifies."""
        if not self.should_compose(job):
            return False
        self._dispatched.add(job.id)
        logger.info(f"Compositing {len(job.outputs)} outputs of job {job.id}")
        task = asyncio.create_task(self._compose(job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    def forget(self, job_id: str) -> None:
        """Drop the dispatch record of a job that is no longer tracked."""
        self._dispatched.discard(job_id)

    def is_dispatched(self, job_id: str) -> bool:
        return job_id in self._dispatched

    async def wait_idle(self) -> None:
        """Wait for every running composite to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()

    async def _compose(self, job: Job) -> None:
        parts = len(job.outputs)

        async def on_progress(percent: int) -> None:
            await self._reconciler.annotate_completed(
                job.id,
                progress=JobProgress(
                    stage=COMPOSITING_STAGE,
                    percent=max(0, min(100, int(percent))),
                    message=f"Combining {parts} parts...",
                ),
            )

        try:
            result = await self._compositor.compose(list(job.outputs), on_progress, job_id=job.id)
        except Exception as e:
            logger.warning(f"Compositing failed for job {job.id}; keeping individual outputs: {e}")
            await self._reconciler.annotate_completed(
                job.id,
                progress=JobProgress(
                    stage=JobStatus.COMPLETED.value,
                    percent=100,
                    message="Could not combine parts; individual outputs are available",
                ),
            )
            return

        await self._reconciler.annotate_completed(
            job.id,
            progress=JobProgress(
                stage=JobStatus.COMPLETED.value,
                percent=100,
                message=f"Combined {parts} parts",
            ),
            append_output=result,
        )
        logger.info(f"Job {job.id} composite ready: {result}")
