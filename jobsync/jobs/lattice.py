"""Ordering over job statuses.

The non-failed chain is totally ordered; ``failed`` is absorbing and sits
outside the order. ``completed`` and ``failed`` are terminal.
"""

from jobsync.jobs.models import JobStatus

STATUS_ORDER = [
    JobStatus.QUEUED,
    JobStatus.RUNNING,
    JobStatus.UPSCALING,
    JobStatus.ENCODING,
    JobStatus.COMPLETED,
]

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

ACTIVE_STATUSES = frozenset({
    JobStatus.QUEUED,
    JobStatus.RUNNING,
    JobStatus.UPSCALING,
    JobStatus.ENCODING,
})

# Statuses the timeout sentinel watches
TIMEOUT_WATCHED_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.RUNNING})


def status_index(status: JobStatus) -> int:
    """Position of ``status`` in the ordered chain. ``failed`` has no index."""
    if status == JobStatus.FAILED:
        raise ValueError("failed is outside the status order")
    return STATUS_ORDER.index(status)


def is_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_active(status: JobStatus) -> bool:
    return status in ACTIVE_STATUSES


def is_regression(current: JobStatus, new: JobStatus) -> bool:
    """True when moving from ``current`` to ``new`` goes backwards in the chain."""
    if new == JobStatus.FAILED or current == JobStatus.FAILED:
        return False
    return status_index(new) < status_index(current)
