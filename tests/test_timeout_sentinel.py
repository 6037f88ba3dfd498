import pytest

from jobsync.channels.push.queue_channel import QueuePushChannel
from jobsync.jobs.errors import ErrorCategory, classify_failure
from jobsync.jobs.index import JobIndex
from jobsync.jobs.models import JobStatus, JobType
from jobsync.sync.push_listener import PushListener
from jobsync.sync.reconciler import UpdateReconciler
from jobsync.sync.timeout_sentinel import TimeoutSentinel

from conftest import make_job


async def make_sentinel(store, clock, *jobs):
    index = JobIndex()
    for job in jobs:
        index.insert(job, front=False)
        await store.insert(job)
    reconciler = UpdateReconciler(index, store, clock=clock)
    channel = QueuePushChannel()
    await channel.connect()
    listener = PushListener(channel, reconciler)
    for job in jobs:
        await listener.subscribe(job.id)
    return index, listener, TimeoutSentinel(index, reconciler, listener, clock=clock)


@pytest.mark.asyncio
async def test_video_job_fails_after_30_minutes(store, clock):
    job = make_job("video-1", status=JobStatus.RUNNING, job_type=JobType.VIDEO)
    index, listener, sentinel = await make_sentinel(store, clock, job)
    clock.advance(minutes=31)

    assert await sentinel.scan() == ["video-1"]

    failed = index.get("video-1")
    assert failed.status == JobStatus.FAILED
    assert failed.error == "Job timed out after 30 minutes"
    assert classify_failure(failed) == ErrorCategory.JOB_TIMEOUT
    assert not listener.is_subscribed("video-1")
    assert store.row("video-1")["status"] == "failed"


@pytest.mark.asyncio
async def test_other_jobs_fail_after_15_minutes(store, clock):
    job = make_job("image-1", status=JobStatus.QUEUED, job_type=JobType.IMAGE)
    index, listener, sentinel = await make_sentinel(store, clock, job)
    clock.advance(minutes=16)

    await sentinel.scan()

    assert index.get("image-1").error == "Job timed out after 15 minutes"


@pytest.mark.asyncio
async def test_video_job_at_20_minutes_is_untouched(store, clock):
    job = make_job("video-1", status=JobStatus.RUNNING, job_type=JobType.VIDEO)
    index, listener, sentinel = await make_sentinel(store, clock, job)
    clock.advance(minutes=20)

    assert await sentinel.scan() == []
    assert index.get("video-1").status == JobStatus.RUNNING
    assert listener.is_subscribed("video-1")


@pytest.mark.asyncio
async def test_only_queued_and_running_jobs_are_watched(store, clock):
    jobs = [
        make_job("upscaling", status=JobStatus.UPSCALING),
        make_job("encoding", status=JobStatus.ENCODING),
        make_job("done", status=JobStatus.COMPLETED),
    ]
    index, listener, sentinel = await make_sentinel(store, clock, *jobs)
    clock.advance(minutes=120)

    assert await sentinel.scan() == []
    assert [j.status for j in index.all()] == [
        JobStatus.UPSCALING, JobStatus.ENCODING, JobStatus.COMPLETED,
    ]
