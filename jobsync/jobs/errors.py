"""Error types raised by the sync engine and its collaborators."""

from enum import Enum
from typing import Optional

from jobsync.jobs.models import Job, JobStatus

TIMEOUT_ERROR_PREFIX = "Job timed out after"


class RejectionReason(str, Enum):
    INSUFFICIENT_BALANCE = "insufficient_balance"
    PLAN_REQUIRED = "plan_required"
    FEATURE_GATED = "feature_gated"


class ErrorCategory(str, Enum):
    JOB_TIMEOUT = "job_timeout"
    GENERIC = "generic"


class JobSyncError(Exception):
    """Base class for engine errors."""


class InvalidSubmission(JobSyncError):
    """Generation options failed validation; no job was created."""


class SubmissionRejected(JobSyncError):
    """The ledger refused to debit the job's cost; no job was created."""

    def __init__(self, reason: RejectionReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(detail or reason.value)


class SubmissionFailed(JobSyncError):
    """A later submission step failed after the debit; the debit was refunded."""

    def __init__(self, job_id: str, step: str, cause: Exception):
        self.job_id = job_id
        self.step = step
        self.cause = cause
        super().__init__(f"Submission of {job_id} failed at {step}: {cause}")


class LedgerRejection(JobSyncError):
    def __init__(self, reason: RejectionReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(detail or reason.value)


class LedgerError(JobSyncError):
    """Ledger call failed for a reason outside the rejection set."""


class StoreError(JobSyncError):
    """Job store call failed. Not retried automatically."""


class StoreTimeoutError(StoreError):
    """Job store call timed out. Retryable."""


class StorageCapacityError(JobSyncError):
    """Store kept timing out past the retry ceiling."""

    def __init__(self, attempts: int, cause: Optional[Exception] = None):
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Job storage is over capacity or timing out (gave up after {attempts} attempts)"
        )


class BackendError(JobSyncError):
    """Generation backend refused or failed to start a job."""


class CompositorError(JobSyncError):
    """Compositor could not combine the outputs."""


def timeout_message(minutes: int) -> str:
    return f"{TIMEOUT_ERROR_PREFIX} {minutes} minutes"


def classify_failure(job: Job) -> Optional[ErrorCategory]:
    """Category of a failed job; ``None`` when the job has not failed.

    Job timeouts are an expected outcome and are reported quietly.
    """
    if job.status != JobStatus.FAILED:
        return None
    if job.error and job.error.startswith(TIMEOUT_ERROR_PREFIX):
        return ErrorCategory.JOB_TIMEOUT
    return ErrorCategory.GENERIC
