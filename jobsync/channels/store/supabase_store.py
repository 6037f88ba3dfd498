"""Supabase-backed job store (``jobs`` table).

The Supabase client is synchronous, so every call runs in a thread executor
to keep the event loop free.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
from postgrest.exceptions import APIError

from jobsync.channels.store.base import METADATA_COLUMNS, JobStore
from jobsync.config import settings
from jobsync.db.supabase_client import get_supabase
from jobsync.jobs.errors import StoreError, StoreTimeoutError
from jobsync.jobs.models import Job

logger = logging.getLogger(__name__)

# Postgres "query_canceled", raised when statement_timeout fires
STATEMENT_TIMEOUT_CODE = "57014"


def is_timeout_error(exc: Exception) -> bool:
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return True
    if isinstance(exc, APIError):
        if str(exc.code) == STATEMENT_TIMEOUT_CODE:
            return True
        return "statement timeout" in (exc.message or "").lower()
    return False


class SupabaseJobStore(JobStore):

    def __init__(self, client_factory: Callable = get_supabase, table: Optional[str] = None):
        self._client_factory = client_factory
        self._table = table or settings.jobs_table

    async def _run(self, op: str, fn: Callable[[], Any]) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except Exception as e:
            if is_timeout_error(e):
                raise StoreTimeoutError(f"{op} timed out: {e}") from e
            raise StoreError(f"{op} failed: {e}") from e

    def _jobs(self):
        return self._client_factory().table(self._table)

    async def insert(self, job: Job) -> None:
        row = job.to_row()
        await self._run("insert", lambda: self._jobs().insert(row).execute())

    async def update(self, job_id: str, fields: Dict[str, Any]) -> None:
        await self._run(
            "update",
            lambda: self._jobs().update(fields).eq("id", job_id).execute(),
        )

    async def get(self, job_id: str) -> Optional[Job]:
        response = await self._run(
            "get",
            lambda: self._jobs().select("*").eq("id", job_id).limit(1).execute(),
        )
        if not response.data:
            return None
        return Job.from_row(response.data[0])

    async def list_by_owner(
        self, owner_id: str, offset: int, limit: int
    ) -> Tuple[List[Dict[str, Any]], int]:
        response = await self._run(
            "list",
            lambda: (
                self._jobs()
                .select(METADATA_COLUMNS, count="exact")
                .eq("user_id", owner_id)
                .order("created_at", desc=True)
                .range(offset, offset + limit - 1)
                .execute()
            ),
        )
        rows = response.data or []
        total = response.count if response.count is not None else len(rows)
        return rows, total

    async def fetch_outputs(self, job_ids: Sequence[str]) -> Dict[str, List[Any]]:
        if not job_ids:
            return {}
        ids = list(job_ids)
        response = await self._run(
            "fetch outputs",
            lambda: self._jobs().select("id, outputs").in_("id", ids).execute(),
        )
        return {row["id"]: row.get("outputs") or [] for row in response.data or []}

    async def delete(self, job_id: str) -> None:
        await self._run("delete", lambda: self._jobs().delete().eq("id", job_id).execute())

    async def delete_many(self, job_ids: Sequence[str]) -> None:
        if not job_ids:
            return
        ids = list(job_ids)
        await self._run("delete many", lambda: self._jobs().delete().in_("id", ids).execute())
        logger.info(f"Deleted {len(ids)} job(s)")
