from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from jobsync.channels.backend.base import GenerationBackend
from jobsync.channels.compositor.base import Compositor
from jobsync.channels.ledger.memory import InMemoryLedger
from jobsync.channels.push.queue_channel import QueuePushChannel
from jobsync.channels.store.memory import InMemoryJobStore
from jobsync.config import Settings
from jobsync.jobs.errors import BackendError, CompositorError, StoreError
from jobsync.jobs.models import Job, JobProgress, JobStatus, JobType
from jobsync.sync.engine import JobSyncEngine

USER_ID = "user-1"
T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0) -> None:
        self.now += timedelta(seconds=seconds, minutes=minutes)


class StubBackend(GenerationBackend):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.started: List[str] = []

    async def start(self, job_id, user_id, options) -> None:
        if self.fail:
            raise BackendError("backend unavailable")
        self.started.append(job_id)


class StubCompositor(Compositor):
    def __init__(self, result: str = "https://cdn.example.com/final.mp4", error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls: List[List[str]] = []

    async def compose(self, refs, on_progress, job_id=None) -> str:
        self.calls.append(list(refs))
        await on_progress(50)
        if self.error is not None:
            raise self.error
        return self.result


class FlakyStore(InMemoryJobStore):
    """In-memory store whose updates can be made to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_updates = False
        self.update_calls = 0

    async def update(self, job_id, fields) -> None:
        self.update_calls += 1
        if self.fail_updates:
            raise StoreError("write failed")
        await super().update(job_id, fields)


def make_job(
    job_id: str = "job-1",
    status: JobStatus = JobStatus.QUEUED,
    job_type: JobType = JobType.IMAGE,
    created_at: datetime = T0,
    **kwargs,
) -> Job:
    return Job(
        id=job_id,
        user_id=USER_ID,
        type=job_type,
        status=status,
        progress=JobProgress(stage=status.value, percent=kwargs.pop("percent", 0)),
        created_at=created_at,
        **kwargs,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def channel():
    return QueuePushChannel()


@pytest.fixture
def ledger():
    return InMemoryLedger(balance=500)


@pytest.fixture
def backend():
    return StubBackend()


@pytest.fixture
def compositor():
    return StubCompositor()


@pytest.fixture
def test_settings():
    return Settings(owner_id=USER_ID, push_mode="queue")


@pytest.fixture
def engine(store, channel, ledger, backend, compositor, clock, test_settings):
    async def no_sleep(seconds):
        return None

    return JobSyncEngine(
        user_id=USER_ID,
        store=store,
        push_channel=channel,
        ledger=ledger,
        backend=backend,
        compositor=compositor,
        config=test_settings,
        clock=clock,
        sleep=no_sleep,
    )
