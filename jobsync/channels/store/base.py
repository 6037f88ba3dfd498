"""Job store interface (durable job records)."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from jobsync.jobs.models import Job

# Columns read by the metadata phase of a page load; ``outputs`` is hydrated later.
METADATA_COLUMNS = (
    "id, user_id, type, status, prompt, negative_prompt, width, height, "
    "duration, fps, seed, steps, cfg_scale, num_images, "
    "progress_stage, progress_percent, current_step, total_steps, eta, "
    "progress_message, manifest, error, created_at, started_at, completed_at"
)


class JobStore(ABC):
    """Abstract interface for the authoritative job store.

    Implementations raise ``StoreTimeoutError`` for timeouts and
    ``StoreError`` for everything else.
    """

    @abstractmethod
    async def insert(self, job: Job) -> None:
        ...

    @abstractmethod
    async def update(self, job_id: str, fields: Dict[str, Any]) -> None:
        """Write the given columns of one job."""
        ...

    @abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    async def list_by_owner(
        self, owner_id: str, offset: int, limit: int
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Metadata rows (no ``outputs``) newest first, plus the owner's total count."""
        ...

    @abstractmethod
    async def fetch_outputs(self, job_ids: Sequence[str]) -> Dict[str, List[Any]]:
        """Raw ``outputs`` arrays keyed by job id."""
        ...

    @abstractmethod
    async def delete(self, job_id: str) -> None:
        ...

    @abstractmethod
    async def delete_many(self, job_ids: Sequence[str]) -> None:
        ...
