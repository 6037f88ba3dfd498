"""In-memory index of the jobs this engine tracks, newest first."""

from typing import Dict, Iterable, List, Optional

from jobsync.jobs.lattice import is_active
from jobsync.jobs.models import Job, JobStatus

_IN_FLIGHT = (JobStatus.RUNNING, JobStatus.UPSCALING, JobStatus.ENCODING)


class JobIndex:
    """Ordered id -> Job mapping owned by the engine.

    Only the reconciler replaces entries of tracked jobs; submission and bulk
    loading insert new ones.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._order: List[str] = []

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def all(self) -> List[Job]:
        return [self._jobs[job_id] for job_id in self._order]

    def active(self) -> List[Job]:
        """Jobs still expected to change (queued, running, upscaling, encoding)."""
        return [job for job in self.all() if is_active(job.status)]

    def active_job(self) -> Optional[Job]:
        """The job currently doing work, if any."""
        for job in self.all():
            if job.status in _IN_FLIGHT:
                return job
        return None

    def insert(self, job: Job, front: bool = True) -> None:
        if job.id in self._jobs:
            raise KeyError(f"Job {job.id} is already tracked")
        self._jobs[job.id] = job
        if front:
            self._order.insert(0, job.id)
        else:
            self._order.append(job.id)

    def replace(self, job: Job) -> None:
        if job.id not in self._jobs:
            raise KeyError(f"Job {job.id} is not tracked")
        self._jobs[job.id] = job

    def remove(self, job_id: str) -> Optional[Job]:
        job = self._jobs.pop(job_id, None)
        if job is not None:
            self._order.remove(job_id)
        return job

    def reset(self, jobs: Iterable[Job]) -> None:
        """Replace the whole index, keeping the given order."""
        self._jobs = {}
        self._order = []
        for job in jobs:
            if job.id not in self._jobs:
                self.insert(job, front=False)

    def clear(self) -> None:
        self._jobs.clear()
        self._order.clear()
