"""Composition code generation: validation loop, fallback template and frame layout."""

import pytest

from reelgen.pipeline.codegen import build_fallback_code, generate_code, scene_frame_layout
from reelgen.schemas.script import ScriptScene
from reelgen.services.code_validator import validate_all

from conftest import VALID_CODE, FakeCodeWriter, make_script


def _scene(duration: float) -> ScriptScene:
    return ScriptScene(id="s", duration=duration, visual_direction="plain", mood="educational")


# ---------------------------------------------------------------------------
# Frame layout
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "durations,total",
    [
        ([20, 40], 1800),
        ([4.8, 10.2, 19.8, 15.0, 10.2], 1800),
        ([3, 3, 3], 100),
        ([1, 1, 1, 1], 450),
        ([0.1, 50], 300),
    ],
)
def test_layout_covers_total_frames(durations, total):
    layout = scene_frame_layout([_scene(d) for d in durations], total)

    assert sum(frames for _, frames in layout) == total
    assert all(frames >= 1 for _, frames in layout)
    starts = [start for start, _ in layout]
    assert starts[0] == 0
    for (start, frames), next_start in zip(layout, starts[1:] + [total]):
        assert start + frames == next_start


def test_layout_scales_script_durations():
    # Script says 30s but the job is 60s at 30fps
    layout = scene_frame_layout([_scene(10), _scene(20)], 1800)
    assert layout == [(0, 600), (600, 1200)]


# ---------------------------------------------------------------------------
# Fallback template
# ---------------------------------------------------------------------------

def test_fallback_code_is_valid_composition():
    script = make_script()
    code = build_fallback_code(script, image_count=1, has_audio=True, total_frames=1800)

    assert validate_all(code).valid
    assert code.rstrip().endswith("return MyVideo;")
    assert "images[0]" in code
    assert "images[1]" not in code
    assert "audioUrl" in code
    assert "durationInFrames: 1800" in code
    assert '"Smaller Files"' in code


def test_fallback_code_without_audio_or_images():
    code = build_fallback_code(make_script(), image_count=0, has_audio=False, total_frames=900)
    assert validate_all(code).valid
    assert "audioUrl" not in code
    assert "CinematicBG, {" not in code


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------

async def _run(ctx, new_job, **job_fields):
    job = await new_job(**job_fields)
    code = await generate_code(
        job,
        make_script(),
        ["http://test/a.png", "http://test/b.png"],
        "http://test/voice.mp3",
        ctx,
        width=1080,
        height=1920,
        total_frames=1800,
    )
    return job, code


@pytest.mark.asyncio
async def test_valid_reply_is_stored(ctx, new_job):
    ctx.code_writer = FakeCodeWriter([f"```jsx\n{VALID_CODE}\n```"])
    job, code = await _run(ctx, new_job)

    assert code == VALID_CODE
    stored = await ctx.job_store.require(job.id)
    assert stored.generated_code == VALID_CODE
    assert stored.code_used_fallback is False

    prompt = ctx.code_writer.prompts[0]
    assert "1800 frames" in prompt
    assert "1080x1920" in prompt
    assert "images[1]" in prompt
    assert "audioUrl" in prompt


@pytest.mark.asyncio
async def test_validation_errors_are_fed_back(ctx, new_job):
    ctx.code_writer = FakeCodeWriter(["const x = 1;", VALID_CODE])
    job, code = await _run(ctx, new_job)

    assert code == VALID_CODE
    assert len(ctx.code_writer.prompts) == 2
    assert "Fix These Issues" in ctx.code_writer.prompts[1]
    assert "too short" in ctx.code_writer.prompts[1]


@pytest.mark.asyncio
async def test_security_violation_stops_retrying(ctx, new_job):
    unsafe = VALID_CODE.replace("return MyVideo;", "fetch('https://evil.test');\nreturn MyVideo;")
    ctx.code_writer = FakeCodeWriter([unsafe, VALID_CODE])
    job, code = await _run(ctx, new_job)

    assert len(ctx.code_writer.prompts) == 1
    assert "fetch(" not in code
    stored = await ctx.job_store.require(job.id)
    assert stored.code_used_fallback is True


@pytest.mark.asyncio
async def test_all_attempts_failing_uses_fallback(ctx, new_job):
    ctx.code_writer = FakeCodeWriter(["nope", "still nope", "no"])
    job, code = await _run(ctx, new_job)

    assert len(ctx.code_writer.prompts) == ctx.settings.pipeline.code_max_attempts
    assert validate_all(code).valid
    assert (await ctx.job_store.require(job.id)).code_used_fallback is True
