"""In-process push channel built on one asyncio queue per job.

Used for local development and to drive the reconciler with a deterministic
sequence of messages in tests.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from jobsync.channels.push.base import MessageHandler, PushChannel

logger = logging.getLogger(__name__)


class QueuePushChannel(PushChannel):

    def __init__(self) -> None:
        self._connected = False
        self._handlers: Dict[str, MessageHandler] = {}
        self._queues: Dict[str, asyncio.Queue] = {}
        self._pumps: Dict[str, asyncio.Task] = {}
        self._retiring: List[asyncio.Task] = []

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False
        for job_id in list(self._handlers):
            await self.unsubscribe(job_id)
        await self.drain()

    def is_connected(self) -> bool:
        return self._connected

    async def subscribe(self, job_id: str, handler: MessageHandler) -> None:
        if job_id in self._handlers:
            self._handlers[job_id] = handler
            return
        queue: asyncio.Queue = asyncio.Queue()
        self._handlers[job_id] = handler
        self._queues[job_id] = queue
        self._pumps[job_id] = asyncio.create_task(self._pump(job_id, queue))

    async def unsubscribe(self, job_id: str) -> None:
        self._handlers.pop(job_id, None)
        queue = self._queues.pop(job_id, None)
        pump = self._pumps.pop(job_id, None)
        if queue is None:
            return
        # The pump may be the caller (a handler unsubscribing on a terminal
        # update), so it is stopped with a sentinel rather than cancelled.
        queue.put_nowait(None)
        if pump is not None:
            self._retiring.append(pump)

    async def publish(self, job_id: str, message: Dict[str, Any]) -> bool:
        """Deliver ``message`` to the job's subscriber. Returns False if dropped."""
        queue = self._queues.get(job_id)
        if not self._connected or queue is None:
            logger.debug(f"Dropping push message for {job_id} (no subscriber)")
            return False
        await queue.put(message)
        return True

    async def drain(self) -> None:
        """Wait until every queued message has been handled."""
        for queue in list(self._queues.values()):
            await queue.join()
        retiring, self._retiring = self._retiring, []
        current = asyncio.current_task()
        await asyncio.gather(*(t for t in retiring if t is not current))

    def subscribed(self) -> List[str]:
        return list(self._handlers)

    async def _pump(self, job_id: str, queue: asyncio.Queue) -> None:
        while True:
            message: Optional[Dict[str, Any]] = await queue.get()
            try:
                if message is None:
                    break
                handler = self._handlers.get(job_id)
                if handler is None:
                    continue
                try:
                    await handler(message)
                except Exception:
                    logger.exception(f"Push handler for {job_id} failed")
            finally:
                queue.task_done()
