"""Job sync engine: wires the update channels around one reconciler."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from jobsync.channels.backend.base import GenerationBackend
from jobsync.channels.compositor.base import Compositor
from jobsync.channels.ledger.base import LedgerService
from jobsync.channels.push.base import PushChannel
from jobsync.channels.store.base import JobStore
from jobsync.config import Settings, settings as default_settings
from jobsync.jobs.errors import JobSyncError
from jobsync.jobs.index import JobIndex
from jobsync.jobs.lattice import is_terminal
from jobsync.jobs.models import GenerationOptions, Job, JobPatch, JobStatus, utcnow
from jobsync.sync.bulk_loader import BulkLoader
from jobsync.sync.completion import CompletionDispatcher
from jobsync.sync.poll_scheduler import PollScheduler
from jobsync.sync.push_listener import PushListener
from jobsync.sync.reconciler import ChangeListener, UpdateReconciler
from jobsync.sync.submission import SubmissionPipeline
from jobsync.sync.timeout_sentinel import TimeoutSentinel

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled by user"


class JobSyncEngine:
    """Local view of one user's generation jobs.

    Lifecycle: ``start()`` connects push, loads the first page and arms the
    poll and timeout timers; ``stop()`` clears both timers, unsubscribes every
    job and disconnects push.
    """

    def __init__(
        self,
        user_id: str,
        store: JobStore,
        push_channel: PushChannel,
        ledger: LedgerService,
        backend: GenerationBackend,
        compositor: Compositor,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        config = config or default_settings
        self.user_id = user_id
        self._config = config
        self._store = store
        self._push_channel = push_channel

        self.index = JobIndex()
        self.reconciler = UpdateReconciler(self.index, store, clock=clock)
        self.push_listener = PushListener(push_channel, self.reconciler)
        self.poll_scheduler = PollScheduler(
            self.index,
            store,
            self.reconciler,
            base_interval=config.poll_base_interval_seconds,
            max_interval=config.poll_max_interval_seconds,
            backoff_step=config.poll_backoff_step_seconds,
            clock=clock,
        )
        self.timeout_sentinel = TimeoutSentinel(
            self.index,
            self.reconciler,
            self.push_listener,
            scan_interval=config.timeout_scan_interval_seconds,
            default_timeout_minutes=config.job_timeout_minutes,
            video_timeout_minutes=config.video_job_timeout_minutes,
            clock=clock,
        )
        self.completion = CompletionDispatcher(self.reconciler, compositor)
        self.submission = SubmissionPipeline(
            user_id, self.index, store, ledger, backend, self.push_listener, clock=clock
        )
        self.loader = BulkLoader(
            user_id,
            self.index,
            store,
            self.reconciler,
            batch_size=config.hydrate_batch_size,
            max_retries=config.load_max_retries,
            retry_base=config.load_retry_base_seconds,
            recent_window=config.recent_job_window_seconds,
            clock=clock,
            sleep=sleep,
        )

        self.reconciler.on_terminal(self._on_terminal)
        self.reconciler.on_completed(self.completion.evaluate)
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, load_initial: bool = True) -> None:
        if self._started:
            return
        try:
            await self._push_channel.connect()
        except Exception as e:
            logger.warning(f"Push channel unavailable, falling back to polling: {e}")

        await self.poll_scheduler.start()
        await self.timeout_sentinel.start()
        self._started = True

        if load_initial:
            try:
                await self.reload()
            except JobSyncError as e:
                # Engine stays up; a later reload() fills the index
                logger.error(f"Initial job load failed: {e}")
        logger.info(f"Job sync started for user {self.user_id}")

    async def stop(self) -> None:
        await self.poll_scheduler.stop()
        await self.timeout_sentinel.stop()
        await self.push_listener.unsubscribe_all()
        await self.completion.shutdown()
        await self._push_channel.disconnect()
        self._started = False
        logger.info(f"Job sync stopped for user {self.user_id}")

    def add_listener(self, listener: ChangeListener) -> None:
        self.reconciler.add_listener(listener)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def jobs(self) -> List[Job]:
        return self.index.all()

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.index.get(job_id)

    def active_job(self) -> Optional[Job]:
        return self.index.active_job()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def submit(self, options: Union[GenerationOptions, Dict[str, Any]]) -> str:
        return await self.submission.submit(options)

    async def reload(self, limit: Optional[int] = None) -> Tuple[List[Job], int]:
        """Rebuild the index from the first page of the store."""
        before = {job.id for job in self.index.all()}
        page, total = await self.loader.load_page(0, limit or self._config.page_size, reset=True)
        for job_id in before - {job.id for job in self.index.all()}:
            await self._untrack(job_id)
        await self._subscribe_active()
        return page, total

    async def load_more(self, offset: int, limit: Optional[int] = None) -> Tuple[List[Job], int]:
        page, total = await self.loader.load_page(offset, limit or self._config.page_size)
        await self._subscribe_active()
        return page, total

    async def cancel_job(self, job_id: str) -> Optional[Job]:
        patch = JobPatch(status=JobStatus.FAILED, error=CANCELLED_MESSAGE)
        return await self.reconciler.apply_patch(job_id, patch, source="user")

    async def delete_job(self, job_id: str) -> bool:
        if job_id not in self.index:
            return False
        await self._store.delete(job_id)
        self.index.remove(job_id)
        await self._untrack(job_id)
        return True

    async def clear_finished_jobs(self) -> int:
        """Delete every completed or failed job. Returns how many were removed."""
        finished = [job.id for job in self.index.all() if is_terminal(job.status)]
        if not finished:
            return 0
        await self._store.delete_many(finished)
        for job_id in finished:
            self.index.remove(job_id)
            self.completion.forget(job_id)
        logger.info(f"Cleared {len(finished)} finished job(s)")
        return len(finished)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _on_terminal(self, job: Job) -> None:
        await self.push_listener.unsubscribe(job.id)
        self.poll_scheduler.forget(job.id)

    async def _untrack(self, job_id: str) -> None:
        await self.push_listener.unsubscribe(job_id)
        self.poll_scheduler.forget(job_id)
        self.completion.forget(job_id)

    async def _subscribe_active(self) -> None:
        for job in self.index.active():
            await self.push_listener.subscribe(job.id)
