"""Ledger service interface (debits a job's cost before it starts)."""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class LedgerReceipt(BaseModel):
    job_id: str
    action_type: str
    amount: int


class LedgerService(ABC):

    @abstractmethod
    async def debit(self, job_id: str, action_type: str, amount: int) -> LedgerReceipt:
        """Atomically debit ``amount`` tagged with ``job_id``.

        Raises ``LedgerRejection`` with a ``RejectionReason`` when refused.
        """
        ...

    @abstractmethod
    async def refund(self, receipt: LedgerReceipt) -> None:
        """Credit back a debit whose job never got created."""
        ...
