"""In-process job store for local development and tests.

Keeps store rows in a dict. No external dependencies (Supabase) needed.
"""

import copy
from typing import Any, Dict, List, Optional, Sequence, Tuple

from jobsync.channels.store.base import JobStore
from jobsync.jobs.errors import StoreError
from jobsync.jobs.models import Job


class InMemoryJobStore(JobStore):
    """Row-level store with the same column layout as the ``jobs`` table."""

    def __init__(self) -> None:
        self._rows: Dict[str, Dict[str, Any]] = {}

    async def insert(self, job: Job) -> None:
        if job.id in self._rows:
            raise StoreError(f"Job {job.id} already exists")
        self._rows[job.id] = job.to_row()

    async def update(self, job_id: str, fields: Dict[str, Any]) -> None:
        row = self._rows.get(job_id)
        if row is None:
            raise StoreError(f"Job {job_id} not found")
        row.update(copy.deepcopy(fields))

    async def get(self, job_id: str) -> Optional[Job]:
        row = self._rows.get(job_id)
        if row is None:
            return None
        return Job.from_row(copy.deepcopy(row))

    async def list_by_owner(
        self, owner_id: str, offset: int, limit: int
    ) -> Tuple[List[Dict[str, Any]], int]:
        owned = [r for r in self._rows.values() if r.get("user_id") == owner_id]
        owned.sort(key=lambda r: r["created_at"], reverse=True)
        page = []
        for row in owned[offset:offset + limit]:
            meta = copy.deepcopy(row)
            meta.pop("outputs", None)
            page.append(meta)
        return page, len(owned)

    async def fetch_outputs(self, job_ids: Sequence[str]) -> Dict[str, List[Any]]:
        return {
            job_id: list(self._rows[job_id].get("outputs") or [])
            for job_id in job_ids
            if job_id in self._rows
        }

    async def delete(self, job_id: str) -> None:
        self._rows.pop(job_id, None)

    async def delete_many(self, job_ids: Sequence[str]) -> None:
        for job_id in job_ids:
            self._rows.pop(job_id, None)

    def row(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Raw stored row (inspection helper)."""
        return self._rows.get(job_id)

    def put_row(self, row: Dict[str, Any]) -> None:
        """Store a raw row as-is, e.g. one written by the server side."""
        self._rows[row["id"]] = copy.deepcopy(row)
