"""Token ledger backed by the ``deduct_tokens`` / ``refund_tokens`` RPCs."""

import asyncio
import logging
from typing import Callable

from postgrest.exceptions import APIError

from jobsync.channels.ledger.base import LedgerReceipt, LedgerService
from jobsync.config import settings
from jobsync.db.supabase_client import get_supabase
from jobsync.jobs.errors import LedgerError, LedgerRejection, RejectionReason

logger = logging.getLogger(__name__)

# Exception text raised by the RPCs -> rejection reason
_REASON_MARKERS = (
    ("insufficient token balance", RejectionReason.INSUFFICIENT_BALANCE),
    ("no active subscription", RejectionReason.PLAN_REQUIRED),
    ("not available on", RejectionReason.FEATURE_GATED),
)


def rejection_reason(message: str):
    lowered = (message or "").lower()
    for marker, reason in _REASON_MARKERS:
        if marker in lowered:
            return reason
    return None


class SupabaseLedger(LedgerService):

    def __init__(self, user_id: str = "", client_factory: Callable = get_supabase):
        self._user_id = user_id or settings.owner_id
        self._client_factory = client_factory

    async def _rpc(self, name: str, params: dict):
        """Run RPC ``name`` in an executor. Transport failures become ``LedgerError``."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None, lambda: self._client_factory().rpc(name, params).execute()
            )
        except APIError:
            raise
        except Exception as e:
            raise LedgerError(f"{name} failed: {e}") from e

    async def debit(self, job_id: str, action_type: str, amount: int) -> LedgerReceipt:
        try:
            await self._rpc("deduct_tokens", {
                "_user_id": self._user_id,
                "_amount": amount,
                "_job_id": job_id,
                "_action_type": action_type,
            })
        except APIError as e:
            reason = rejection_reason(e.message)
            if reason is not None:
                raise LedgerRejection(reason, e.message) from e
            raise LedgerError(f"Token deduction failed: {e.message}") from e
        logger.info(f"Debited {amount} token(s) for job {job_id} ({action_type})")
        return LedgerReceipt(job_id=job_id, action_type=action_type, amount=amount)

    async def refund(self, receipt: LedgerReceipt) -> None:
        try:
            await self._rpc("refund_tokens", {
                "_user_id": self._user_id,
                "_amount": receipt.amount,
                "_job_id": receipt.job_id,
            })
        except APIError as e:
            raise LedgerError(f"Token refund failed: {e.message}") from e
        logger.info(f"Refunded {receipt.amount} token(s) for job {receipt.job_id}")
