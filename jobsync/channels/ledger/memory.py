"""In-process token ledger for local development and tests."""

from typing import Dict, List, Optional, Set

from jobsync.channels.ledger.base import LedgerReceipt, LedgerService
from jobsync.jobs.errors import LedgerRejection, RejectionReason


class InMemoryLedger(LedgerService):

    def __init__(
        self,
        balance: int = 0,
        subscribed: bool = True,
        gated_actions: Optional[Set[str]] = None,
    ):
        self.balance = balance
        self.subscribed = subscribed
        self.gated_actions = set(gated_actions or ())
        self.receipts: List[LedgerReceipt] = []
        self.refunds: List[LedgerReceipt] = []
        self._open: Dict[str, LedgerReceipt] = {}

    async def debit(self, job_id: str, action_type: str, amount: int) -> LedgerReceipt:
        if not self.subscribed:
            raise LedgerRejection(RejectionReason.PLAN_REQUIRED, "No active subscription")
        if action_type in self.gated_actions:
            raise LedgerRejection(
                RejectionReason.FEATURE_GATED, f"{action_type} is not available on this plan"
            )
        if amount > self.balance:
            raise LedgerRejection(RejectionReason.INSUFFICIENT_BALANCE, "Insufficient token balance")
        self.balance -= amount
        receipt = LedgerReceipt(job_id=job_id, action_type=action_type, amount=amount)
        self.receipts.append(receipt)
        self._open[job_id] = receipt
        return receipt

    async def refund(self, receipt: LedgerReceipt) -> None:
        if self._open.pop(receipt.job_id, None) is None:
            return
        self.balance += receipt.amount
        self.refunds.append(receipt)
