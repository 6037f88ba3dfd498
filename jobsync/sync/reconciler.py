"""Update reconciler: the single writer of tracked job state.

Every update, whether it came from the push channel, a poll, the timeout
sentinel or a user action, is merged here against the job's *current* state:

1. A job in a terminal state never changes again.
2. A patch whose status is behind the current status is discarded whole.
3. Present fields replace current ones; absent fields are kept.
4. A merge with no visible difference is a no-op (no listeners, no write).

Accepted changes are written through to the job store. A failed write is
logged and the in-memory state is kept.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from jobsync.channels.store.base import JobStore
from jobsync.jobs.errors import ErrorCategory, StoreError, classify_failure
from jobsync.jobs.index import JobIndex
from jobsync.jobs.lattice import is_regression, is_terminal
from jobsync.jobs.models import Job, JobPatch, JobProgress, JobStatus, utcnow

logger = logging.getLogger(__name__)

JobHook = Callable[[Job], Awaitable[None]]
ChangeListener = Callable[[Job], None]

# A None value for these is treated as "absent"; only error can be cleared
_NON_CLEARABLE = ("status", "progress", "outputs", "manifest", "started_at", "completed_at")
_WRITABLE_FIELDS = (
    "status", "progress", "outputs", "manifest", "error", "started_at", "completed_at",
)


def _observable(job: Job):
    return (job.status, job.progress.observable(), tuple(job.outputs), job.error)


def reconcile(current: Job, patch: JobPatch, now: Optional[datetime] = None) -> Optional[Job]:
    """Merge ``patch`` into ``current``. Returns ``None`` when the patch is discarded."""
    if is_terminal(current.status):
        return None

    changes = {
        name: value
        for name, value in patch.changes().items()
        if not (name in _NON_CLEARABLE and value is None)
    }
    new_status = changes.get("status")
    if new_status is not None and is_regression(current.status, new_status):
        return None

    merged = current.model_copy(update=changes)
    if merged.status != JobStatus.FAILED and merged.error is not None:
        merged = merged.model_copy(update={"error": None})

    if _observable(merged) == _observable(current):
        return None

    now = now or utcnow()
    stamps: Dict[str, datetime] = {}
    if merged.status != JobStatus.QUEUED and merged.started_at is None:
        stamps["started_at"] = now
    if is_terminal(merged.status) and merged.completed_at is None:
        stamps["completed_at"] = now
    if stamps:
        merged = merged.model_copy(update=stamps)
    return merged


def diff_patch(before: Job, after: Job) -> JobPatch:
    """Patch holding only the writable fields that differ between two versions."""
    fields = {
        name: getattr(after, name)
        for name in _WRITABLE_FIELDS
        if getattr(after, name) != getattr(before, name)
    }
    return JobPatch(**fields)


class UpdateReconciler:
    """Applies patches to the job index and writes accepted changes through."""

    def __init__(
        self,
        index: JobIndex,
        store: JobStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._index = index
        self._store = store
        self._clock = clock
        self._terminal_hooks: List[JobHook] = []
        self._completion_hooks: List[JobHook] = []
        self._listeners: List[ChangeListener] = []

    def on_terminal(self, hook: JobHook) -> None:
        """Run ``hook`` when a job enters ``completed`` or ``failed``."""
        self._terminal_hooks.append(hook)

    def on_completed(self, hook: JobHook) -> None:
        """Run ``hook`` after a job entering ``completed`` has been written."""
        self._completion_hooks.append(hook)

    def add_listener(self, listener: ChangeListener) -> None:
        """``listener`` is called synchronously with every accepted change."""
        self._listeners.append(listener)

    async def apply_patch(self, job_id: str, patch: JobPatch, source: str = "") -> Optional[Job]:
        current = self._index.get(job_id)
        if current is None:
            logger.debug(f"Ignoring {source or 'patch'} for untracked job {job_id}")
            return None

        updated = reconcile(current, patch, self._clock())
        if updated is None:
            return None

        self._index.replace(updated)
        self._notify(updated)

        entered_terminal = is_terminal(updated.status)
        if entered_terminal:
            self._log_terminal(updated, source)
            await self._run_hooks(self._terminal_hooks, updated)

        await self._write_through(current, updated)

        if updated.status == JobStatus.COMPLETED:
            await self._run_hooks(self._completion_hooks, updated)
        return updated

    async def annotate_completed(
        self,
        job_id: str,
        progress: Optional[JobProgress] = None,
        append_output: Optional[str] = None,
    ) -> Optional[Job]:
        """Update progress or add an output on a ``completed`` job. Status is never touched."""
        current = self._index.get(job_id)
        if current is None or current.status != JobStatus.COMPLETED:
            return None
        update = {}
        if progress is not None:
            update["progress"] = progress
        if append_output is not None and append_output not in current.outputs:
            update["outputs"] = current.outputs + [append_output]
        updated = current.model_copy(update=update)
        if _observable(updated) == _observable(current):
            return None
        self._index.replace(updated)
        self._notify(updated)
        await self._write_through(current, updated)
        return updated

    async def _write_through(self, before: Job, after: Job) -> None:
        row = diff_patch(before, after).to_row()
        if not row:
            return
        try:
            await self._store.update(after.id, row)
        except StoreError as e:
            logger.error(f"Write-through failed for job {after.id}: {e}")

    def _notify(self, job: Job) -> None:
        for listener in self._listeners:
            try:
                listener(job)
            except Exception:
                logger.exception(f"Change listener failed for job {job.id}")

    async def _run_hooks(self, hooks: List[JobHook], job: Job) -> None:
        for hook in hooks:
            try:
                await hook(job)
            except Exception:
                logger.exception(f"Hook {getattr(hook, '__name__', hook)} failed for job {job.id}")

    @staticmethod
    def _log_terminal(job: Job, source: str) -> None:
        via = f" via {source}" if source else ""
        if job.status == JobStatus.COMPLETED:
            logger.info(f"Job {job.id} completed{via} with {len(job.outputs)} output(s)")
        elif classify_failure(job) == ErrorCategory.JOB_TIMEOUT:
            logger.info(f"Job {job.id} failed{via}: {job.error}")
        else:
            logger.warning(f"Job {job.id} failed{via}: {job.error}")
