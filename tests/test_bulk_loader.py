from datetime import timedelta

import pytest

from jobsync.jobs.errors import StorageCapacityError, StoreError, StoreTimeoutError
from jobsync.jobs.index import JobIndex
from jobsync.jobs.models import JobStatus
from jobsync.sync.bulk_loader import BulkLoader
from jobsync.sync.reconciler import UpdateReconciler

from conftest import T0, USER_ID, FlakyStore, make_job


class SlowListStore(FlakyStore):
    """Times out on the first ``timeouts`` list calls."""

    def __init__(self, timeouts: int = 0, error: Exception = None):
        super().__init__()
        self.timeouts = timeouts
        self.error = error
        self.list_calls = 0
        self.output_calls = []

    async def list_by_owner(self, owner_id, offset, limit):
        self.list_calls += 1
        if self.error is not None:
            raise self.error
        if self.list_calls <= self.timeouts:
            raise StoreTimeoutError("canceling statement due to statement timeout")
        return await super().list_by_owner(owner_id, offset, limit)

    async def fetch_outputs(self, job_ids):
        self.output_calls.append(list(job_ids))
        return await super().fetch_outputs(job_ids)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def make_loader(store, clock, index=None, sleep=None):
    index = index if index is not None else JobIndex()
    reconciler = UpdateReconciler(index, store, clock=clock)
    loader = BulkLoader(USER_ID, index, store, reconciler, clock=clock, sleep=sleep or RecordingSleep())
    return index, loader


async def seed(store, count, status=JobStatus.QUEUED, prefix="old"):
    jobs = []
    for i in range(count):
        job = make_job(f"{prefix}-{i}", status=status, created_at=T0 - timedelta(minutes=i + 1))
        await store.insert(job)
        jobs.append(job)
    return jobs


@pytest.mark.asyncio
async def test_reload_keeps_recent_local_job_missing_from_snapshot(clock):
    store = SlowListStore()
    await seed(store, 10)
    index = JobIndex()
    fresh = make_job("fresh", created_at=clock() - timedelta(seconds=2))
    index.insert(fresh)
    index, loader = make_loader(store, clock, index=index)

    page, total = await loader.load_page(0, 20, reset=True)

    assert total == 10
    ids = [job.id for job in index.all()]
    assert len(ids) == 11
    assert ids[0] == "fresh"
    assert ids[1:] == [f"old-{i}" for i in range(10)]


@pytest.mark.asyncio
async def test_reload_drops_older_local_job_missing_from_snapshot(clock):
    store = SlowListStore()
    await seed(store, 2)
    index = JobIndex()
    index.insert(make_job("stale-local", created_at=clock() - timedelta(seconds=30)))
    index, loader = make_loader(store, clock, index=index)

    await loader.load_page(0, 20, reset=True)

    assert "stale-local" not in index


@pytest.mark.asyncio
async def test_persistent_timeouts_raise_capacity_error(clock):
    store = SlowListStore(timeouts=4)
    sleep = RecordingSleep()
    index, loader = make_loader(store, clock, sleep=sleep)

    with pytest.raises(StorageCapacityError) as exc:
        await loader.load_page(0, 20, reset=True)

    assert exc.value.attempts == 4
    assert store.list_calls == 4
    assert sleep.delays == [2.0, 4.0, 8.0]


@pytest.mark.asyncio
async def test_timeout_then_success(clock):
    store = SlowListStore(timeouts=2)
    await seed(store, 3)
    sleep = RecordingSleep()
    index, loader = make_loader(store, clock, sleep=sleep)

    page, total = await loader.load_page(0, 20, reset=True)

    assert total == 3
    assert sleep.delays == [2.0, 4.0]
    assert len(index) == 3


@pytest.mark.asyncio
async def test_other_store_errors_are_not_retried(clock):
    store = SlowListStore(error=StoreError("permission denied"))
    sleep = RecordingSleep()
    index, loader = make_loader(store, clock, sleep=sleep)

    with pytest.raises(StoreError):
        await loader.load_page(0, 20)

    assert store.list_calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_completed_outputs_are_hydrated_in_batches(clock):
    store = SlowListStore()
    await seed(store, 25, status=JobStatus.COMPLETED)
    await seed(store, 3, status=JobStatus.RUNNING, prefix="live")
    for i in range(25):
        await store.update(f"old-{i}", {"outputs": [f"https://cdn.example.com/{i}.png"]})
    index, loader = make_loader(store, clock)

    page, total = await loader.load_page(0, 50)

    assert [len(batch) for batch in store.output_calls] == [10, 10, 5]
    assert index.get("old-7").outputs == ["https://cdn.example.com/7.png"]
    assert index.get("live-0").outputs == []


@pytest.mark.asyncio
async def test_inline_outputs_are_dropped_on_hydrate(clock):
    store = SlowListStore()
    await seed(store, 1, status=JobStatus.COMPLETED)
    await store.update("old-0", {
        "outputs": ["data:image/png;base64,iVBORw0KGgo=", "https://cdn.example.com/ok.png"],
    })
    index, loader = make_loader(store, clock)

    await loader.load_page(0, 20)

    assert index.get("old-0").outputs == ["https://cdn.example.com/ok.png"]


@pytest.mark.asyncio
async def test_stale_snapshot_cannot_regress_tracked_job(clock):
    store = SlowListStore()
    await seed(store, 1, status=JobStatus.RUNNING)
    index = JobIndex()
    index.insert(make_job("old-0", status=JobStatus.ENCODING, percent=80,
                          created_at=T0 - timedelta(minutes=1)))
    index, loader = make_loader(store, clock, index=index)

    await loader.load_page(0, 20, reset=True)

    assert index.get("old-0").status == JobStatus.ENCODING
    assert index.get("old-0").progress.percent == 80


@pytest.mark.asyncio
async def test_load_more_appends_after_existing_jobs(clock):
    store = SlowListStore()
    await seed(store, 5)
    index, loader = make_loader(store, clock)

    await loader.load_page(0, 2, reset=True)
    page, total = await loader.load_page(2, 2)

    assert [job.id for job in page] == ["old-2", "old-3"]
    assert [job.id for job in index.all()] == ["old-0", "old-1", "old-2", "old-3"]
    assert total == 5


async def track_running_with_part(store, index):
    job = make_job("old-0", status=JobStatus.RUNNING, percent=40,
                   created_at=T0 - timedelta(minutes=1),
                   outputs=["https://cdn.example.com/part1.mp4"])
    await store.insert(job)
    index.insert(job)
    return job


@pytest.mark.asyncio
async def test_reload_keeps_partial_outputs_of_running_job(clock):
    store = SlowListStore()
    index = JobIndex()
    await track_running_with_part(store, index)
    await store.update("old-0", {"progress_percent": 60})
    index, loader = make_loader(store, clock, index=index)

    await loader.load_page(0, 20, reset=True)

    job = index.get("old-0")
    assert job.progress.percent == 60
    assert job.outputs == ["https://cdn.example.com/part1.mp4"]
    assert store.row("old-0")["outputs"] == ["https://cdn.example.com/part1.mp4"]


@pytest.mark.asyncio
async def test_load_more_keeps_partial_outputs_of_running_job(clock):
    store = SlowListStore()
    index = JobIndex()
    await track_running_with_part(store, index)
    await store.update("old-0", {"status": "encoding", "progress_stage": "encoding"})
    index, loader = make_loader(store, clock, index=index)

    await loader.load_page(0, 20)

    job = index.get("old-0")
    assert job.status == JobStatus.ENCODING
    assert job.outputs == ["https://cdn.example.com/part1.mp4"]
    assert store.row("old-0")["outputs"] == ["https://cdn.example.com/part1.mp4"]
