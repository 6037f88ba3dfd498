import asyncio

import pytest

from jobsync.channels.compositor.base import Compositor, RetryingCompositor, is_retryable
from jobsync.jobs.errors import CompositorError


class ScriptedCompositor(Compositor):
    """Raises the scripted errors in order, then succeeds."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.attempts = 0

    async def compose(self, refs, on_progress, job_id=None):
        self.attempts += 1
        if self.errors:
            raise self.errors.pop(0)
        await on_progress(100)
        return "https://cdn.example.com/final.mp4"


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


async def noop_progress(percent):
    return None


@pytest.mark.parametrize(
    "error, retryable",
    [
        (asyncio.TimeoutError(), True),
        (ConnectionError("reset"), True),
        (RuntimeError("Network request failed"), True),
        (RuntimeError("worker busy"), True),
        (ValueError("invalid codec"), False),
    ],
)
def test_is_retryable(error, retryable):
    assert is_retryable(error) is retryable


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_backoff():
    inner = ScriptedCompositor(RuntimeError("fetch failed"), RuntimeError("connection lost"))
    sleep = RecordingSleep()
    compositor = RetryingCompositor(inner, sleep=sleep)

    result = await compositor.compose(["a", "b"], noop_progress, job_id="video-1")

    assert result == "https://cdn.example.com/final.mp4"
    assert inner.attempts == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_backoff_is_capped():
    inner = ScriptedCompositor(*[RuntimeError("timeout")] * 5)
    sleep = RecordingSleep()
    compositor = RetryingCompositor(inner, max_retries=5, initial_delay=4.0, sleep=sleep)

    await compositor.compose(["a"], noop_progress)

    assert sleep.delays == [4.0, 8.0, 10.0, 10.0, 10.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    inner = ScriptedCompositor(*[RuntimeError("network down")] * 4)
    sleep = RecordingSleep()
    compositor = RetryingCompositor(inner, sleep=sleep)

    with pytest.raises(CompositorError):
        await compositor.compose(["a"], noop_progress)

    assert inner.attempts == 4
    assert len(sleep.delays) == 3


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried():
    inner = ScriptedCompositor(ValueError("unsupported container"))
    sleep = RecordingSleep()
    compositor = RetryingCompositor(inner, sleep=sleep)

    with pytest.raises(CompositorError, match="unsupported container"):
        await compositor.compose(["a"], noop_progress)

    assert inner.attempts == 1
    assert sleep.delays == []
