"""Forwards push notifications for tracked jobs to the reconciler."""

import logging
from typing import Any, Dict, Set

from pydantic import ValidationError

from jobsync.channels.push.base import PushChannel
from jobsync.jobs.models import JobPatch
from jobsync.sync.reconciler import UpdateReconciler

logger = logging.getLogger(__name__)


class PushListener:
    """Per-job subscriptions. Push is an optimization; polling covers its gaps."""

    def __init__(self, channel: PushChannel, reconciler: UpdateReconciler):
        self._channel = channel
        self._reconciler = reconciler
        self._subscribed: Set[str] = set()

    def is_connected(self) -> bool:
        return self._channel.is_connected()

    def is_subscribed(self, job_id: str) -> bool:
        return job_id in self._subscribed

    async def subscribe(self, job_id: str) -> bool:
        """Subscribe when the channel is up. Returns whether a subscription exists."""
        if job_id in self._subscribed:
            return True
        if not self._channel.is_connected():
            logger.debug(f"Push channel offline; job {job_id} will be tracked by polling only")
            return False

        async def handle(message: Dict[str, Any]) -> None:
            await self._on_message(job_id, message)

        await self._channel.subscribe(job_id, handle)
        self._subscribed.add(job_id)
        return True

    async def unsubscribe(self, job_id: str) -> None:
        if job_id not in self._subscribed:
            return
        self._subscribed.discard(job_id)
        await self._channel.unsubscribe(job_id)

    async def unsubscribe_all(self) -> None:
        for job_id in list(self._subscribed):
            await self.unsubscribe(job_id)

    async def _on_message(self, job_id: str, message: Dict[str, Any]) -> None:
        try:
            patch = JobPatch.from_message(message)
        except (ValidationError, ValueError, TypeError) as e:
            logger.error(f"Dropping malformed push message for {job_id}: {e}")
            return
        if patch.is_empty():
            return
        await self._reconciler.apply_patch(job_id, patch, source="push")
