"""JobStore invariants enforced at the write boundary."""

import asyncio
import uuid

import pytest

from reelgen.errors import ArtifactOverwrite, InvalidTransition, NotFound


@pytest.mark.asyncio
async def test_create_job_defaults(new_job):
    job = await new_job()
    assert job.status == "queued"
    assert job.progress == 0
    assert job.version == 1
    assert job.root_job_id == job.id
    assert job.retry_count == 0


@pytest.mark.asyncio
async def test_progress_never_decreases(job_store, new_job):
    job = await new_job()
    await job_store.patch(job.id, progress=40)
    updated = await job_store.patch(job.id, progress=25)
    assert updated.progress == 40
    updated = await job_store.patch(job.id, progress=250)
    assert updated.progress == 100


@pytest.mark.asyncio
async def test_artifact_fields_are_append_only(job_store, new_job):
    job = await new_job()
    await job_store.patch(job.id, audio_id="a" * 32)

    # Same value again is a no-op
    await job_store.patch(job.id, audio_id="a" * 32)

    with pytest.raises(ArtifactOverwrite):
        await job_store.patch(job.id, audio_id="b" * 32)
    with pytest.raises(ArtifactOverwrite):
        await job_store.patch(job.id, audio_id=None)


@pytest.mark.asyncio
async def test_terminal_state_is_final(job_store, new_job):
    job = await new_job()
    await job_store.patch(job.id, status="failed", error="scripting failed: boom")
    with pytest.raises(InvalidTransition):
        await job_store.patch(job.id, status="scripting")


@pytest.mark.asyncio
async def test_patch_unknown_job(job_store):
    with pytest.raises(NotFound):
        await job_store.patch(uuid.uuid4(), progress=10)


@pytest.mark.asyncio
async def test_claim_is_exclusive(job_store, new_job):
    job = await new_job()
    results = await asyncio.gather(*(job_store.claim(job.id) for _ in range(3)))
    assert sorted(results) == [False, False, True]

    claimed = await job_store.require(job.id)
    assert claimed.status == "scripting"
    assert claimed.started_at is not None


@pytest.mark.asyncio
async def test_request_cancel_queued_job(job_store, new_job):
    job = await new_job()
    cancelled = await job_store.request_cancel(job.id)
    assert cancelled.status == "cancelled"
    assert cancelled.completed_at is not None
    assert await job_store.claim(job.id) is False


@pytest.mark.asyncio
async def test_request_cancel_running_job_sets_flag(job_store, new_job):
    job = await new_job()
    await job_store.claim(job.id)

    flagged = await job_store.request_cancel(job.id)

    assert flagged.status == "scripting"
    assert flagged.cancel_requested is True
    assert await job_store.is_cancel_requested(job.id) is True


@pytest.mark.asyncio
async def test_request_cancel_terminal_job(job_store, new_job):
    job = await new_job()
    await job_store.patch(job.id, status="completed", progress=100, video_id="c" * 32)
    with pytest.raises(InvalidTransition):
        await job_store.request_cancel(job.id)


@pytest.mark.asyncio
async def test_latest_child_picks_newest(job_store, new_job):
    parent = await new_job()
    first = await new_job(parent_job_id=parent.id, root_job_id=parent.id, version=2)
    await asyncio.sleep(0.01)
    second = await new_job(parent_job_id=parent.id, root_job_id=parent.id, version=2)

    latest = await job_store.latest_child(parent.id)
    assert latest.id == second.id
    assert latest.id != first.id
    assert await job_store.latest_child(second.id) is None


@pytest.mark.asyncio
async def test_stage_timings_and_retries(job_store, new_job):
    job = await new_job()
    await job_store.record_stage_timing(job.id, "scripting", 1.23456)
    await job_store.record_stage_timing(job.id, "imaging", 2.0)
    assert await job_store.increment_retry(job.id) == 1
    assert await job_store.increment_retry(job.id) == 2

    stored = await job_store.require(job.id)
    assert stored.stage_timings == {"scripting": 1.235, "imaging": 2.0}
    assert stored.retry_count == 2


@pytest.mark.asyncio
async def test_list_for_creator_most_recent_first(job_store, new_job):
    older = await new_job(prompt="first")
    await asyncio.sleep(0.01)
    newer = await new_job(prompt="second")
    await new_job(creator_id="someone-else", prompt="other")

    jobs = await job_store.list_for_creator(older.creator_id, limit=10)
    assert [j.id for j in jobs] == [newer.id, older.id]
