"""Job submission: debit -> persist -> start -> track.

Each step either succeeds or the submission stops there. Steps after the
debit undo what came before them (delete the record, refund the debit) and
then raise, so no job exists without a debit and no debit without a job.
A crash between the debit and the insert is not compensated.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union

from pydantic import ValidationError

from jobsync.channels.backend.base import GenerationBackend
from jobsync.channels.ledger.base import LedgerReceipt, LedgerService
from jobsync.channels.store.base import JobStore
from jobsync.jobs.errors import (
    BackendError,
    InvalidSubmission,
    JobSyncError,
    LedgerError,
    LedgerRejection,
    StoreError,
    SubmissionFailed,
    SubmissionRejected,
)
from jobsync.jobs.index import JobIndex
from jobsync.jobs.models import GenerationOptions, Job, JobProgress, JobStatus, utcnow
from jobsync.jobs.pricing import action_type, estimate_cost
from jobsync.sync.push_listener import PushListener

logger = logging.getLogger(__name__)

QUEUED_MESSAGE = "Job queued..."


def initial_manifest(job_id: str, options: GenerationOptions) -> Optional[Dict[str, Any]]:
    """Manifest for multi-part jobs: one sub-unit per scene prompt."""
    scenes = options.scene_prompts or []
    if len(scenes) < 2:
        return None
    return {
        "jobId": job_id,
        "type": options.type.value,
        "scenePrompts": list(scenes),
        "expectedCount": len(scenes),
    }


class SubmissionPipeline:

    def __init__(
        self,
        user_id: str,
        index: JobIndex,
        store: JobStore,
        ledger: LedgerService,
        backend: GenerationBackend,
        push_listener: PushListener,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self._user_id = user_id
        self._index = index
        self._store = store
        self._ledger = ledger
        self._backend = backend
        self._push_listener = push_listener
        self._clock = clock
        self._id_factory = id_factory

    async def submit(self, options: Union[GenerationOptions, Dict[str, Any]]) -> str:
        """Create and start a job. Returns its id.

        Raises:
            InvalidSubmission: options failed validation
            SubmissionRejected: the ledger refused the debit
            SubmissionFailed: a later step failed; nothing was left behind
        """
        if not isinstance(options, GenerationOptions):
            try:
                options = GenerationOptions.model_validate(options)
            except ValidationError as e:
                raise InvalidSubmission(str(e)) from e

        job_id = self._id_factory()
        try:
            amount = estimate_cost(options)
        except ValueError as e:
            raise InvalidSubmission(str(e)) from e

        # 1. Debit
        try:
            receipt = await self._ledger.debit(job_id, action_type(options), amount)
        except LedgerRejection as e:
            logger.info(f"Submission {job_id} rejected by ledger: {e.reason.value}")
            raise SubmissionRejected(e.reason, e.detail) from e
        except LedgerError as e:
            raise SubmissionFailed(job_id, "debit", e) from e

        # 2. Persist
        job = Job(
            id=job_id,
            user_id=self._user_id,
            type=options.type,
            options=options,
            status=JobStatus.QUEUED,
            progress=JobProgress(stage=JobStatus.QUEUED.value, percent=0, message=QUEUED_MESSAGE),
            manifest=initial_manifest(job_id, options),
            created_at=self._clock(),
        )
        try:
            await self._store.insert(job)
        except StoreError as e:
            await self._refund(receipt)
            raise SubmissionFailed(job_id, "persist", e) from e

        # 3. Start server-side work under the same id
        try:
            await self._backend.start(job_id, self._user_id, options)
        except BackendError as e:
            await self._discard(job_id)
            await self._refund(receipt)
            raise SubmissionFailed(job_id, "start", e) from e

        # 4. Track locally; polling picks it up on the next tick
        self._index.insert(job, front=True)
        await self._push_listener.subscribe(job_id)
        logger.info(f"Submitted {options.type.value} job {job_id} ({amount} tokens)")
        return job_id

    async def _discard(self, job_id: str) -> None:
        try:
            await self._store.delete(job_id)
        except StoreError as e:
            logger.error(f"Could not delete record of unstarted job {job_id}: {e}")

    async def _refund(self, receipt: LedgerReceipt) -> None:
        try:
            await self._ledger.refund(receipt)
        except JobSyncError as e:
            logger.error(
                f"Refund of {receipt.amount} token(s) for job {receipt.job_id} failed; "
                f"needs manual reconciliation: {e}"
            )
