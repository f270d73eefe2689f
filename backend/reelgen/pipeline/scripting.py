"""Scripting stage: creator prompt to a structured, scene-by-scene video script.

The first attempt sends the full prompt; later attempts send a simplified
one. If every attempt fails, a deterministic five-scene script is used so
the job can still produce a video.
"""

import logging

from reelgen.db.models import VideoJob
from reelgen.pipeline.context import PipelineContext, StageProgress, no_progress
from reelgen.schemas.script import (
    SCENE_MOODS,
    ColorPalette,
    OnScreenText,
    ScriptScene,
    VideoScriptSchema,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = f"""You are a video script writer. You write structured scripts for short \
animated explainer and promo videos that are rendered from code as motion graphics.

## Scene Types & Pacing
- Hook (3-5s): Grab attention immediately. Bold claim or provocative question.
- Problem (5-10s): Paint the pain. Make the viewer feel understood.
- Solution (8-15s): Introduce the idea, product or technique as the answer.
- Proof (5-10s): Evidence, numbers, examples.
- Features (8-15s): Key points with brief descriptions.
- CTA (5-8s): Clear call-to-action.

## Scene Moods
Use one of: {", ".join(SCENE_MOODS)}.

## Color Palette Selection
Pick hex colors that match the topic and mood. The background is usually dark
(e.g. #0a0a0a). Default: indigo #6366f1 + purple #7c3aed with a cyan accent #22d3ee.

## Image Prompt Guidelines
Write prompts for cinematic, moody images. Always include
"high quality, cinematic lighting, dark moody atmosphere, professional, 8k".
One image per scene at most; skip scenes that are text-only.

## Writing Style
- Direct, confident, concrete
- Avoid generic marketing language
- Short punchy sentences for hooks, longer for educational content
- Scene durations must add up to the target duration"""


def build_user_prompt(job: VideoJob) -> str:
    prompt = "Write a video script based on the following:\n\n"
    prompt += f'**Creator\'s prompt:** "{job.prompt}"\n'
    prompt += f"**Target duration:** {job.target_duration_seconds} seconds\n"
    prompt += f"**Aspect ratio:** {job.aspect_ratio}\n"
    if job.style:
        prompt += f"**Style:** {job.style}\n"
    prompt += (
        "\nGenerate the video script now. Ensure total scene durations add up to "
        f"approximately {job.target_duration_seconds} seconds."
    )
    return prompt


def build_simplified_prompt(job: VideoJob) -> str:
    return (
        f"Write a simple {job.target_duration_seconds}-second video script about: "
        f'"{job.prompt}". Use 4-5 scenes: hook, problem, solution, proof, CTA. '
        "Keep it concise. Return valid JSON matching the required format."
    )


# Share of the target duration per fallback scene; the CTA takes the rest
_FALLBACK_SPLIT = (("hook", 0.08), ("problem", 0.17), ("solution", 0.33), ("proof", 0.25))


def build_fallback_script(job: VideoJob) -> VideoScriptSchema:
    """Deterministic five-scene script used when the writer keeps failing."""
    duration = float(job.target_duration_seconds)
    durations = {scene_id: round(duration * share, 1) for scene_id, share in _FALLBACK_SPLIT}
    durations["cta"] = round(duration - sum(durations.values()), 1)

    topic = job.prompt.strip().splitlines()[0][:80] if job.prompt.strip() else "this topic"

    scenes = [
        ScriptScene(
            id="hook",
            duration=durations["hook"],
            voiceover="Here's what you need to know.",
            on_screen_text=OnScreenText(headline="Here's What You Need to Know", emphasis=["Need"]),
            visual_direction="Dark background with subtle glow, bold text entrance",
            mood="intrigue",
        ),
        ScriptScene(
            id="problem",
            duration=durations["problem"],
            voiceover="Most people get this wrong.",
            on_screen_text=OnScreenText(headline="Stop Guessing.", subhead="Start Knowing."),
            visual_direction="Moody, dark tones with text revealing the pain point",
            mood="frustration",
        ),
        ScriptScene(
            id="solution",
            duration=durations["solution"],
            voiceover=f"{topic}.",
            on_screen_text=OnScreenText(headline=topic, subhead="The essentials"),
            visual_direction="Bright accent colors revealing the key idea",
            mood="excitement",
        ),
        ScriptScene(
            id="proof",
            duration=durations["proof"],
            voiceover="It works, and it's simpler than you think.",
            on_screen_text=OnScreenText(headline="Simple. Proven."),
            visual_direction="Stats and examples with animated counters",
            mood="authority",
        ),
        ScriptScene(
            id="cta",
            duration=durations["cta"],
            voiceover="Start today.",
            on_screen_text=OnScreenText(headline="Start Today"),
            visual_direction="Strong call to action with brand colors",
            mood="urgency",
        ),
    ]
    return VideoScriptSchema(
        total_duration=duration,
        voiceover_script=" ".join(scene.voiceover for scene in scenes if scene.voiceover),
        scenes=scenes,
        color_palette=ColorPalette(primary="#6366f1", secondary="#7c3aed", accent="#22d3ee"),
        image_prompts=[
            "Abstract glowing light trails on dark background, cinematic lighting, "
            "dark moody atmosphere, professional, 8k",
            "Minimal workspace in dim studio light, high quality, cinematic, 8k",
        ],
    )


async def generate_script(
    job: VideoJob,
    ctx: PipelineContext,
    on_progress: StageProgress = no_progress,
) -> VideoScriptSchema:
    """Write and persist the script for a job; sets job.script_id.

    Never fails on writer errors (falls back to the template script);
    persistence errors propagate.
    """
    attempts = max(ctx.settings.pipeline.script_max_attempts, 1)
    script = None
    for attempt in range(attempts):
        prompt = build_user_prompt(job) if attempt == 0 else build_simplified_prompt(job)
        try:
            script = await ctx.script_writer.write(prompt, system_prompt=SYSTEM_PROMPT)
            break
        except Exception as e:
            logger.warning(
                f"Job {job.id}: script attempt {attempt + 1}/{attempts} failed: "
                f"{type(e).__name__}: {e}"
            )
        await on_progress((attempt + 1) / (attempts + 1))

    used_fallback = script is None
    if used_fallback:
        logger.info(f"Job {job.id}: falling back to template script")
        script = build_fallback_script(job)

    row = await ctx.job_store.save_script(job.id, script, used_fallback=used_fallback)
    await ctx.job_store.patch(job.id, script_id=str(row.id))
    logger.info(
        f"Job {job.id}: script {row.id} with {len(script.scenes)} scenes, "
        f"{len(script.image_prompts)} image prompts (fallback={used_fallback})"
    )
    return script
