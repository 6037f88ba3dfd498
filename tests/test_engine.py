from datetime import timedelta

import pytest

from jobsync.jobs.errors import StoreTimeoutError
from jobsync.jobs.models import JobPatch, JobStatus

from conftest import T0, make_job


def push_update(job_id, status, percent, **extra):
    message = {
        "type": "job.update",
        "jobId": job_id,
        "status": status,
        "progress": {"stage": status, "progress": percent},
    }
    message.update(extra)
    return message


@pytest.mark.asyncio
async def test_start_loads_jobs_and_subscribes_active_ones(engine, store, channel):
    await store.insert(make_job("done", status=JobStatus.COMPLETED, created_at=T0 - timedelta(minutes=5)))
    await store.insert(make_job("live", status=JobStatus.RUNNING, created_at=T0 - timedelta(minutes=1)))

    await engine.start()
    try:
        assert [job.id for job in engine.jobs()] == ["live", "done"]
        assert engine.active_job().id == "live"
        assert channel.subscribed() == ["live"]
        assert engine.poll_scheduler.is_running()
        assert engine.timeout_sentinel.is_running()
    finally:
        await engine.stop()

    assert not engine.poll_scheduler.is_running()
    assert not engine.timeout_sentinel.is_running()
    assert channel.subscribed() == []
    assert not channel.is_connected()


@pytest.mark.asyncio
async def test_push_and_poll_converge(engine, store, channel):
    await engine.start(load_initial=False)
    try:
        job_id = await engine.submit({"prompt": "a lighthouse", "type": "image"})

        await channel.publish(job_id, push_update(job_id, "running", 30))
        await channel.drain()
        assert engine.get_job(job_id).status == JobStatus.RUNNING

        await store.update(job_id, {
            "status": "completed",
            "progress_stage": "completed",
            "progress_percent": 100,
            "outputs": ["https://cdn.example.com/lighthouse.png"],
        })
        await engine.poll_scheduler.tick()

        job = engine.get_job(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.outputs == ["https://cdn.example.com/lighthouse.png"]
        assert channel.subscribed() == []
        assert engine.poll_scheduler.tracking == {}

        # A late push after completion changes nothing
        assert await channel.publish(job_id, push_update(job_id, "running", 10)) is False
        assert engine.get_job(job_id).status == JobStatus.COMPLETED
    finally:
        await engine.stop()


@pytest.mark.asyncio
async def test_works_without_push(engine, store, channel):
    async def refuse():
        raise ConnectionError("push endpoint unreachable")

    channel.connect = refuse
    await engine.start(load_initial=False)
    try:
        job_id = await engine.submit({"prompt": "a kite", "type": "image"})
        assert channel.subscribed() == []

        await store.update(job_id, {"status": "running", "progress_stage": "running"})
        await engine.poll_scheduler.tick()
        assert engine.get_job(job_id).status == JobStatus.RUNNING
    finally:
        await engine.stop()


@pytest.mark.asyncio
async def test_timeout_scan_fails_and_untracks(engine, store, channel, clock):
    await engine.start(load_initial=False)
    try:
        job_id = await engine.submit({"prompt": "a glacier", "type": "video", "video_model": "wan"})
        clock.advance(minutes=31)

        await engine.timeout_sentinel.scan()

        job = engine.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert job.error == "Job timed out after 30 minutes"
        assert channel.subscribed() == []
        assert store.row(job_id)["status"] == "failed"
    finally:
        await engine.stop()


@pytest.mark.asyncio
async def test_cancel_job(engine, store):
    await engine.start(load_initial=False)
    try:
        job_id = await engine.submit({"prompt": "a bridge", "type": "3d"})

        cancelled = await engine.cancel_job(job_id)

        assert cancelled.status == JobStatus.FAILED
        assert cancelled.error == "Cancelled by user"
        assert await engine.cancel_job(job_id) is None
        assert store.row(job_id)["error"] == "Cancelled by user"
    finally:
        await engine.stop()


@pytest.mark.asyncio
async def test_delete_and_clear_finished(engine, store):
    await store.insert(make_job("a", status=JobStatus.COMPLETED, created_at=T0 - timedelta(minutes=3)))
    await store.insert(make_job("b", status=JobStatus.FAILED, error="boom",
                                created_at=T0 - timedelta(minutes=2)))
    await store.insert(make_job("c", status=JobStatus.RUNNING, created_at=T0 - timedelta(minutes=1)))
    await engine.start()
    try:
        assert await engine.delete_job("c") is True
        assert await engine.delete_job("missing") is False
        assert store.row("c") is None

        assert await engine.clear_finished_jobs() == 2
        assert engine.jobs() == []
        assert store.row("a") is None and store.row("b") is None
        assert await engine.clear_finished_jobs() == 0
    finally:
        await engine.stop()


@pytest.mark.asyncio
async def test_reload_untracks_jobs_that_disappeared(engine, store, channel, clock):
    await store.insert(make_job("gone", status=JobStatus.RUNNING, created_at=T0 - timedelta(minutes=1)))
    await engine.start()
    try:
        assert channel.subscribed() == ["gone"]
        await store.delete("gone")

        await engine.reload()

        assert engine.get_job("gone") is None
        assert channel.subscribed() == []
    finally:
        await engine.stop()


@pytest.mark.asyncio
async def test_failed_initial_load_leaves_engine_running(engine, store, channel, caplog):
    real_list = store.list_by_owner
    calls = []

    async def timing_out(owner_id, offset, limit):
        calls.append(offset)
        if len(calls) <= 4:
            raise StoreTimeoutError("canceling statement due to statement timeout")
        return await real_list(owner_id, offset, limit)

    store.list_by_owner = timing_out
    await store.insert(make_job("live", status=JobStatus.RUNNING, created_at=T0 - timedelta(minutes=1)))

    await engine.start()
    try:
        assert engine.poll_scheduler.is_running()
        assert engine.timeout_sentinel.is_running()
        assert channel.is_connected()
        assert engine.jobs() == []
        assert "Initial job load failed" in caplog.text

        await engine.reload()
        assert [job.id for job in engine.jobs()] == ["live"]
        assert channel.subscribed() == ["live"]
    finally:
        await engine.stop()


async def complete_three_scene_video(engine):
    job_id = await engine.submit({
        "prompt": "a heist", "type": "video", "video_model": "wan",
        "scene_prompts": ["plan", "break-in", "escape"],
    })
    parts = [f"https://cdn.example.com/{job_id}-{i}.mp4" for i in range(3)]
    await engine.reconciler.apply_patch(job_id, JobPatch(status=JobStatus.COMPLETED, outputs=parts))
    await engine.completion.wait_idle()
    assert engine.completion.is_dispatched(job_id)
    return job_id


@pytest.mark.asyncio
async def test_removed_jobs_are_dropped_from_completion_records(engine, compositor):
    await engine.start(load_initial=False)
    try:
        deleted = await complete_three_scene_video(engine)
        cleared = await complete_three_scene_video(engine)
        assert len(compositor.calls) == 2

        await engine.delete_job(deleted)
        assert not engine.completion.is_dispatched(deleted)
        assert engine.completion.is_dispatched(cleared)

        await engine.clear_finished_jobs()
        assert not engine.completion.is_dispatched(cleared)
    finally:
        await engine.stop()
