"""Push channel interface (per-job update notifications)."""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict

# Receives one raw ``job.update`` message
MessageHandler = Callable[[Dict[str, Any]], Awaitable[None]]


class PushChannel(ABC):
    """Best-effort, unordered delivery. Messages may be dropped while disconnected."""

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    async def subscribe(self, job_id: str, handler: MessageHandler) -> None:
        ...

    @abstractmethod
    async def unsubscribe(self, job_id: str) -> None:
        ...
