"""Compositor interface and a retrying wrapper."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional

from jobsync.jobs.errors import CompositorError

logger = logging.getLogger(__name__)

# Receives a percent in [0, 100]
ProgressCallback = Callable[[int], Awaitable[None]]

_RETRYABLE_MARKERS = (
    "network",
    "fetch",
    "timeout",
    "connection",
    "out of memory",
    "resource temporarily unavailable",
    "busy",
)


class Compositor(ABC):

    @abstractmethod
    async def compose(
        self,
        refs: List[str],
        on_progress: ProgressCallback,
        job_id: Optional[str] = None,
    ) -> str:
        """Combine ``refs`` into one artifact and return its reference.

        Raises ``CompositorError`` on failure.
        """
        ...


def is_retryable(error: Exception) -> bool:
    if isinstance(error, (asyncio.TimeoutError, ConnectionError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)


class RetryingCompositor(Compositor):
    """Retries transient compositor failures with exponential backoff."""

    def __init__(
        self,
        inner: Compositor,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 10.0,
        backoff_multiplier: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._inner = inner
        self._max_retries = max_retries
        self._initial_delay = initial_delay
        self._max_delay = max_delay
        self._backoff_multiplier = backoff_multiplier
        self._sleep = sleep

    async def compose(
        self,
        refs: List[str],
        on_progress: ProgressCallback,
        job_id: Optional[str] = None,
    ) -> str:
        for attempt in range(self._max_retries + 1):
            try:
                return await self._inner.compose(refs, on_progress, job_id=job_id)
            except Exception as e:
                if not is_retryable(e) or attempt >= self._max_retries:
                    logger.error(f"Compositing failed for {job_id} after {attempt + 1} attempt(s): {e}")
                    if isinstance(e, CompositorError):
                        raise
                    raise CompositorError(str(e)) from e
                delay = min(
                    self._initial_delay * self._backoff_multiplier ** attempt,
                    self._max_delay,
                )
                logger.warning(
                    f"Compositing attempt {attempt + 1} failed for {job_id}: {e}; "
                    f"retrying in {delay:.1f}s"
                )
                await on_progress(0)
                await self._sleep(delay)
        raise CompositorError("Compositing failed after maximum retries")
