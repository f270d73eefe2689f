"""Orchestrator runs end to end against fake providers and a scripted renderer."""

import httpx
import pytest

from reelgen.errors import StageError
from reelgen.orchestrator.pipeline import run_pipeline
from reelgen.services.render.base import RenderStatus

from conftest import FakeImageGenerator, ScriptedRenderBackend


@pytest.fixture
def progress_log(job_store, monkeypatch):
    """Record every progress value written to the job store, in order."""
    values = []
    original = job_store.patch

    async def patch(job_id, **fields):
        job = await original(job_id, **fields)
        values.append(job.progress)
        return job

    monkeypatch.setattr(job_store, "patch", patch)
    return values


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_01_generate_runs_to_completed(ctx, new_job, artifacts, progress_log):
    job = await new_job()
    assert job.status == "queued" and job.progress == 0

    final = await run_pipeline(job.id, ctx)

    assert final.status == "completed"
    assert final.progress == 100
    assert final.error is None
    assert final.video_id and final.thumbnail_id
    assert artifacts.path_for(final.video_id).read_bytes() == ctx.renderer.output
    assert await artifacts.get_url(final.video_id) == f"http://test/api/artifacts/{final.video_id}"

    assert len(final.image_ids) == 2
    assert final.audio_id is not None
    assert final.script_id is not None
    assert final.generated_code
    assert final.code_used_fallback is False
    assert set(final.stage_timings) >= {"scripting", "imaging", "narrating", "generating_code", "rendering"}

    assert progress_log == sorted(progress_log)
    assert progress_log[-1] == 100


@pytest.mark.asyncio
async def test_02_render_spec_matches_job_geometry(ctx, new_job):
    job = await new_job(aspect_ratio="9:16", target_duration_seconds=60)
    await run_pipeline(job.id, ctx)

    spec = ctx.renderer.specs[0]
    assert (spec.width, spec.height) == (1080, 1920)
    assert spec.total_frames == 60 * 30
    assert spec.duration_seconds == pytest.approx(60.0)
    assert len(spec.image_urls) == 2
    assert spec.audio_url is not None
    assert spec.codec == "h264"


@pytest.mark.asyncio
async def test_03_render_progress_written_on_ten_percent_steps(ctx, new_job, progress_log):
    ctx.renderer = ScriptedRenderBackend([
        RenderStatus(done=False, fraction=0.11),
        RenderStatus(done=False, fraction=0.13),
        RenderStatus(done=False, fraction=0.19),
        RenderStatus(done=False, fraction=0.52),
        RenderStatus(done=True, fraction=1.0, output_location="mem://out.mp4"),
    ])
    job = await new_job()
    await run_pipeline(job.id, ctx)

    render_values = [v for v in progress_log if 70 < v < 95]
    # 10% -> 72, 50% -> 82; the 13% and 19% polls add nothing
    assert render_values == [72, 82]


# ---------------------------------------------------------------------------
# Failures are contained
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_04_imaging_error_fails_job(ctx, new_job, progress_log):
    ctx.image_generator = FakeImageGenerator(errors=[RuntimeError("rate limited")])
    job = await new_job()

    final = await run_pipeline(job.id, ctx)

    assert final.status == "failed"
    assert "rate limited" in final.error
    assert final.error.startswith("imaging failed")
    assert final.video_id is None
    assert final.image_ids is None
    # Frozen where imaging began
    assert final.progress == 15
    assert max(progress_log) == 15


@pytest.mark.asyncio
async def test_05_fatal_render_error_keeps_last_progress(ctx, new_job):
    ctx.renderer = ScriptedRenderBackend([
        RenderStatus(done=False, fraction=0.2),
        RenderStatus(done=False, fraction=0.4),
        RenderStatus(done=False, fraction=0.45, fatal_error=True, errors=["Chromium crashed"]),
    ])
    job = await new_job()

    final = await run_pipeline(job.id, ctx)

    assert final.status == "failed"
    assert "Chromium crashed" in final.error
    assert final.error.startswith("rendering failed")
    assert final.progress == 80
    assert final.video_id is None


@pytest.mark.asyncio
async def test_06_render_timeout_fails_job(ctx, new_job):
    renderer = ScriptedRenderBackend([RenderStatus(done=False, fraction=0.3)])
    renderer.max_polls = 5
    ctx.renderer = renderer
    job = await new_job()

    final = await run_pipeline(job.id, ctx)

    assert final.status == "failed"
    assert "did not complete after 5 polls" in final.error
    assert renderer.polls == 5


@pytest.mark.asyncio
async def test_07_unexpected_exception_is_contained(ctx, new_job, monkeypatch):
    async def broken(*args, **kwargs):
        raise KeyError("scenes")

    monkeypatch.setattr("reelgen.orchestrator.pipeline.narrate", broken)
    job = await new_job()

    final = await run_pipeline(job.id, ctx)

    assert final.status == "failed"
    assert final.error.startswith("narrating failed: KeyError")


@pytest.mark.asyncio
async def test_08_script_writer_failure_uses_fallback(ctx, new_job, job_store):
    ctx.script_writer.error = RuntimeError("model overloaded")
    job = await new_job()

    final = await run_pipeline(job.id, ctx)

    assert final.status == "completed"
    row = await job_store.get_script(final.script_id)
    assert row.used_fallback is True
    assert [s["id"] for s in row.scenes] == ["hook", "problem", "solution", "proof", "cta"]


# ---------------------------------------------------------------------------
# Ownership, retry and cancellation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_09_job_runs_only_once(ctx, new_job):
    job = await new_job()
    first = await run_pipeline(job.id, ctx)
    second = await run_pipeline(job.id, ctx)

    assert first.status == "completed"
    assert second is None
    assert len(ctx.renderer.specs) == 1


@pytest.mark.asyncio
async def test_10_no_retry_by_default(ctx, new_job):
    request = httpx.Request("POST", "https://images.test/gen")
    response = httpx.Response(503, request=request)
    ctx.image_generator = FakeImageGenerator(
        errors=[httpx.HTTPStatusError("unavailable", request=request, response=response)]
    )
    job = await new_job()

    final = await run_pipeline(job.id, ctx)

    assert final.status == "failed"
    assert final.retry_count == 0


@pytest.mark.asyncio
async def test_11_retriable_stage_error_is_retried(ctx, new_job):
    ctx.settings.pipeline.stage_max_attempts = 3
    ctx.image_generator = FakeImageGenerator(
        errors=[StageError("imaging", "upstream hiccup", retriable=True)]
    )
    job = await new_job()

    final = await run_pipeline(job.id, ctx)

    assert final.status == "completed"
    assert final.retry_count == 1
    assert len(final.image_ids) == 2


@pytest.mark.asyncio
async def test_11b_failed_video_upload_retries_without_rerendering(ctx, new_job, artifacts, monkeypatch):
    ctx.settings.pipeline.stage_max_attempts = 3
    original_store = artifacts.store
    uploads = []

    async def store(data, content_type):
        uploads.append(content_type)
        if content_type == "video/mp4" and uploads.count("video/mp4") == 1:
            raise httpx.ConnectError("upload connection reset")
        return await original_store(data, content_type)

    monkeypatch.setattr(artifacts, "store", store)
    job = await new_job()

    final = await run_pipeline(job.id, ctx)

    assert final.status == "completed"
    assert final.retry_count == 1
    assert len(ctx.renderer.specs) == 1
    assert uploads.count("video/mp4") == 2
    assert artifacts.path_for(final.video_id).read_bytes() == ctx.renderer.output


@pytest.mark.asyncio
async def test_11c_video_upload_failure_without_retry_fails_job(ctx, new_job, artifacts, monkeypatch):
    async def store(data, content_type):
        raise httpx.ConnectError("upload connection reset")

    monkeypatch.setattr(artifacts, "store", store)
    job = await new_job()

    final = await run_pipeline(job.id, ctx)

    assert final.status == "failed"
    assert final.retry_count == 0
    assert "upload of rendered video failed" in final.error


@pytest.mark.asyncio
async def test_12_non_retriable_error_is_not_retried(ctx, new_job):
    ctx.settings.pipeline.stage_max_attempts = 3
    ctx.image_generator = FakeImageGenerator(errors=[ValueError("bad prompt")])
    job = await new_job()

    final = await run_pipeline(job.id, ctx)

    assert final.status == "failed"
    assert final.retry_count == 0
    assert ctx.image_generator.calls == 1


@pytest.mark.asyncio
async def test_13_cancel_during_render_poll(ctx, new_job, job_store):
    renderer = ScriptedRenderBackend([RenderStatus(done=False, fraction=0.3)])
    ctx.renderer = renderer
    job = await new_job()

    async def cancel_on_second_poll(polls):
        if polls == 2:
            await job_store.request_cancel(job.id)

    renderer.on_poll = cancel_on_second_poll

    final = await run_pipeline(job.id, ctx)

    assert final.status == "cancelled"
    assert final.error is None
    assert final.video_id is None
    assert renderer.polls == 2


@pytest.mark.asyncio
async def test_14_cancel_at_stage_boundary(ctx, new_job, job_store, monkeypatch):
    from reelgen.orchestrator import pipeline as pipeline_module

    original = pipeline_module.generate_script

    async def script_then_cancel(job, c, on_progress):
        script = await original(job, c, on_progress)
        await job_store.request_cancel(job.id)
        return script

    monkeypatch.setattr(pipeline_module, "generate_script", script_then_cancel)
    job = await new_job()

    final = await run_pipeline(job.id, ctx)

    assert final.status == "cancelled"
    assert final.script_id is not None
    assert final.image_ids is None
    assert ctx.image_generator.calls == 0


@pytest.mark.asyncio
async def test_15_cancelled_queued_job_never_runs(ctx, new_job, job_store):
    job = await new_job()
    cancelled = await job_store.request_cancel(job.id)
    assert cancelled.status == "cancelled"

    assert await run_pipeline(job.id, ctx) is None
    assert ctx.renderer.specs == []
