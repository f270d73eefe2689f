"""Code generation stage: an LLM writes the motion-graphics composition.

The composition is a JavaScript function body executed by the renderer as
``new Function("React", "Remotion", "Components", "Theme", "images", "audioUrl", code)``
and must return a React component. Replies are de-fenced and validated;
validation errors are fed back into the next attempt. Security violations
stop retrying at once. When every attempt fails, a template composition is
built directly from the script.
"""

import json
import logging
from typing import Optional

from reelgen.db.models import VideoJob
from reelgen.pipeline.context import PipelineContext, StageProgress, no_progress
from reelgen.schemas.script import ScriptScene, VideoScriptSchema
from reelgen.services.code_validator import extract_code, validate_all, validate_security

logger = logging.getLogger(__name__)

# Frames before a scene's end where its exit animation starts
EXIT_FRAMES = 25


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

def scene_frame_layout(scenes: list[ScriptScene], total_frames: int) -> list[tuple[int, int]]:
    """Lay scenes out as (from_frame, duration_in_frames) covering exactly total_frames.

    Scene durations are scaled proportionally so the Sequences always add up
    to the job's frame count, whatever the script's own total says. Every
    scene gets at least one frame while total_frames allows it.

    Examples:
        >>> from reelgen.schemas.script import ScriptScene
        >>> s = lambda d: ScriptScene(id="s", duration=d, visual_direction="", mood="")
        >>> scene_frame_layout([s(1), s(3)], 120)
        [(0, 30), (30, 90)]
    """
    if not scenes:
        return []
    weights = [max(scene.duration, 0.0) for scene in scenes]
    total_weight = sum(weights) or float(len(scenes))
    if not sum(weights):
        weights = [1.0] * len(scenes)

    count = len(scenes)
    boundaries = []
    cumulative = 0.0
    for weight in weights:
        cumulative += weight
        boundaries.append(int(round(total_frames * cumulative / total_weight)))
    boundaries[-1] = total_frames

    layout = []
    start = 0
    for index, boundary in enumerate(boundaries):
        remaining = count - index - 1
        if total_frames >= count:
            boundary = min(max(boundary, start + 1), total_frames - remaining)
        layout.append((start, boundary - start))
        start = boundary
    return layout


# ---------------------------------------------------------------------------
# Prompt builders
# ---------------------------------------------------------------------------

def build_system_prompt(width: int, height: int, fps: int) -> str:
    return f"""You are a Remotion video composition code generator.

## YOUR OUTPUT FORMAT

Output ONLY a JavaScript function body (no markdown, no explanation, no fences).

The code is executed as:
new Function("React", "Remotion", "Components", "Theme", "images", "audioUrl", code)

So your code receives these parameters and must RETURN a React component:

const {{ AbsoluteFill, Sequence, useCurrentFrame, useVideoConfig, spring, interpolate, Img, Audio }} = Remotion;
const {{ CenterScene, Content, FadeUp, useExit, CinematicBG, GradientText, SectionLabel,
        FeatureCard, StatBlock, CTAButton, LogoIcon }} = Components;
const {{ C, F }} = Theme;

const MyVideo = () => (
  <AbsoluteFill style={{{{ backgroundColor: C.bg }}}}>
    <Sequence from={{0}} durationInFrames={{180}}>...</Sequence>
  </AbsoluteFill>
);

return MyVideo;

## DESIGN SYSTEM RULES

1. Layout: all scenes use AbsoluteFill with flexbox centering (CenterScene does this)
2. Text: headline 44-56px weight 900; subhead 24-28px weight 500-600; body 16-18px; fontFamily F
3. Colors: use the provided palette and the C theme object
4. Entrances: <FadeUp delay={{frame}}>; exits: useExit(exitStart, exitEnd) returns {{ op, y }}
5. Image scenes: <CinematicBG src={{images[i]}} overlayOpacity={{0.6}} /> inside AbsoluteFill, text in <Content>
6. Dimensions: {width}x{height} at {fps}fps

## STRICT RULES

1. Output ONLY the function body
2. The last line returns the root component (e.g. `return MyVideo;`)
3. Lay scenes out with Sequence; scene frames MUST match the given layout exactly
4. Use images by index: images[0], images[1], ...
5. If audioUrl is provided, add <Audio src={{audioUrl}} /> spanning the whole video
6. Every scene except the last has an exit transition via useExit
7. No fetch(), eval(), require(), import(), process., fs., child_process
8. Total frames across all Sequences must equal the total specified"""


def build_user_prompt(
    script: VideoScriptSchema,
    image_urls: list[str],
    audio_url: Optional[str],
    audio_duration: Optional[float],
    audio_words: Optional[list[dict]],
    total_frames: int,
    fps: int,
    width: int,
    height: int,
) -> str:
    prompt = "Generate a Remotion video composition for the following script.\n\n"

    prompt += "## VIDEO SPECS\n"
    prompt += f"- Total duration: {total_frames} frames ({total_frames / fps:g}s at {fps}fps)\n"
    prompt += f"- Dimensions: {width}x{height}\n\n"

    palette = script.color_palette
    prompt += "## COLOR PALETTE\n"
    prompt += f"- Primary: {palette.primary}\n"
    prompt += f"- Secondary: {palette.secondary}\n"
    prompt += f"- Accent: {palette.accent}\n"
    prompt += f"- Background: {palette.background}\n\n"

    prompt += "## SCENES\n"
    for scene, (start, frames) in zip(script.scenes, scene_frame_layout(script.scenes, total_frames)):
        text = scene.on_screen_text
        prompt += f'### Scene "{scene.id}" ({frames} frames, from={start}, mood: {scene.mood})\n'
        if text.headline:
            prompt += f'  Headline: "{text.headline}"\n'
        if text.subhead:
            prompt += f'  Subhead: "{text.subhead}"\n'
        if text.bullet_points:
            prompt += "  Bullets:\n"
            for bullet in text.bullet_points:
                prompt += f'    - "{bullet}"\n'
        if text.emphasis:
            prompt += f"  Emphasis words: {', '.join(text.emphasis)}\n"
        prompt += f"  Visual direction: {scene.visual_direction}\n"
        if scene.voiceover:
            prompt += f'  Voiceover: "{scene.voiceover}"\n'
        prompt += "\n"

    prompt += f"## AVAILABLE IMAGES ({len(image_urls)} total)\n"
    for index, url in enumerate(image_urls):
        prompt += f"  images[{index}]: {url[:80]}\n"
    prompt += "\n"

    if audio_url:
        prompt += "## AUDIO\n"
        prompt += "audioUrl is available; add <Audio src={audioUrl} /> spanning the video.\n"
        if audio_duration:
            prompt += f"Audio duration: {audio_duration:.1f}s\n"
        if audio_words:
            first = ", ".join(f'"{w["word"]}" @{w["start"]:.2f}s' for w in audio_words[:10])
            prompt += f"Word timestamps available ({len(audio_words)} words). First words: {first}\n"
        prompt += "\n"
    else:
        prompt += "## AUDIO\nNo audio; this is a text-only video.\n\n"

    prompt += "## REQUIREMENTS\n"
    prompt += f"- Total frames: {total_frames} (Sequences must add up to this)\n"
    prompt += "- Every scene except the last needs an exit animation (useExit)\n"
    prompt += "- Use the component library instead of raw divs where possible\n"
    prompt += "\nGenerate the code now."
    return prompt


def build_iteration_suffix(previous_code: str, feedback: str) -> str:
    return (
        "\n\n## ITERATION: MODIFY PREVIOUS VERSION\n"
        f'The creator wants these changes: "{feedback}"\n\n'
        "Here is the previous version of the video code. Modify it to apply the "
        "requested changes and keep everything else the same.\n\n"
        f"```\n{previous_code}\n```\n"
        "\nOutput the FULL modified code (not a diff). Apply ONLY the requested changes."
    )


def build_retry_suffix(errors: list[str]) -> str:
    listed = "\n".join(f"- {error}" for error in errors)
    return (
        "\n\n## IMPORTANT: Fix These Issues From Previous Attempt\n"
        f"Your previous code had these validation errors:\n{listed}\n\n"
        "Fix ALL of these issues and output corrected code."
    )


# ---------------------------------------------------------------------------
# Fallback template
# ---------------------------------------------------------------------------

def _js(value: str) -> str:
    return json.dumps(value)


def _text_children(scene: ScriptScene, indent: str) -> str:
    text = scene.on_screen_text
    children = [
        f"React.createElement(FadeUp, {{ delay: 8 }}, React.createElement(\"div\", "
        f"{{ style: {{ fontSize: 44, fontWeight: 900, fontFamily: F, lineHeight: 1.15, "
        f"color: \"#ffffff\", textShadow: \"0 2px 20px rgba(0,0,0,0.8)\" }} }}, "
        f"{_js(text.headline or '')}))"
    ]
    if text.subhead:
        children.append(
            f"React.createElement(FadeUp, {{ delay: 25, style: {{ fontSize: 22, color: \"#94a3b8\", "
            f"fontFamily: F, fontWeight: 500, marginTop: 16 }} }}, {_js(text.subhead)})"
        )
    for index, bullet in enumerate(text.bullet_points):
        children.append(
            f"React.createElement(FadeUp, {{ delay: {30 + index * 15}, style: {{ fontSize: 18, "
            f"color: \"#ffffff\", fontFamily: F, fontWeight: 500, marginTop: 8 }} }}, "
            f"{_js('→ ' + bullet)})"
        )
    return (",\n" + indent).join(children)


def build_fallback_code(
    script: VideoScriptSchema,
    image_count: int,
    has_audio: bool,
    total_frames: int,
) -> str:
    """Template composition: one text scene per script scene, image-backed where possible."""
    layout = scene_frame_layout(script.scenes, total_frames)
    palette = script.color_palette
    scene_defs = []
    sequences = []

    for index, (scene, (start, frames)) in enumerate(zip(script.scenes, layout)):
        is_last = index == len(layout) - 1
        exit_code = "" if is_last else (
            f"    var exit = useExit({max(frames - EXIT_FRAMES, 0)}, {frames});\n"
        )
        opacity = "1" if is_last else "exit.op"
        offset = "0" if is_last else "exit.y"

        if index < image_count:
            body = (
                f"    return React.createElement(AbsoluteFill, {{ style: {{ opacity: {opacity}, "
                f"transform: \"translateY(\" + {offset} + \"px)\" }} }},\n"
                f"      React.createElement(CinematicBG, {{ src: images[{index}], overlayOpacity: 0.6 }}),\n"
                f"      React.createElement(Content, null,\n"
                f"        {_text_children(scene, '        ')}\n"
                f"      )\n"
                f"    );\n"
            )
        else:
            body = (
                f"    return React.createElement(CenterScene, {{ opacity: {opacity}, translateY: {offset}, "
                f"seed: {index}, tint: {_js(palette.primary)} }},\n"
                f"      {_text_children(scene, '      ')}\n"
                f"    );\n"
            )
        scene_defs.append(f"var Scene{index} = function() {{\n{exit_code}{body}}};")
        sequences.append(
            f"    React.createElement(Sequence, {{ from: {start}, durationInFrames: {frames} }}, "
            f"React.createElement(Scene{index}, null))"
        )

    if has_audio:
        sequences.insert(
            0,
            f"    React.createElement(Sequence, {{ from: 0, durationInFrames: {total_frames} }}, "
            f"React.createElement(Audio, {{ src: audioUrl }}))",
        )

    header = "\n".join(
        f"var {name} = Remotion.{name};"
        for name in ("AbsoluteFill", "Sequence", "useCurrentFrame", "interpolate", "Audio")
    ) + "\n" + "\n".join(
        f"var {name} = Components.{name};"
        for name in ("CenterScene", "Content", "CinematicBG", "FadeUp", "useExit")
    ) + "\nvar F = Theme.F;\n"

    return (
        f"{header}\n"
        + "\n\n".join(scene_defs)
        + "\n\nvar MyVideo = function() {\n"
        + f"  return React.createElement(AbsoluteFill, {{ style: {{ backgroundColor: {_js(palette.background)} }} }},\n"
        + ",\n".join(sequences)
        + "\n  );\n};\n\nreturn MyVideo;"
    )


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------

async def generate_code(
    job: VideoJob,
    script: VideoScriptSchema,
    image_urls: list[str],
    audio_url: Optional[str],
    ctx: PipelineContext,
    on_progress: StageProgress = no_progress,
    *,
    width: int,
    height: int,
    total_frames: int,
) -> str:
    """Write, validate and persist the composition code; sets job.generated_code."""
    fps = ctx.settings.pipeline.fps
    system_prompt = build_system_prompt(width, height, fps)
    user_prompt = build_user_prompt(
        script,
        image_urls,
        audio_url,
        job.audio_duration_seconds,
        job.audio_words,
        total_frames,
        fps,
        width,
        height,
    )

    if job.parent_job_id is not None and job.iteration_prompt:
        parent = await ctx.job_store.get(job.parent_job_id)
        if parent is not None and parent.generated_code:
            user_prompt += build_iteration_suffix(parent.generated_code, job.iteration_prompt)
            logger.info(f"Job {job.id}: iterating on code from parent {parent.id}")

    attempts = max(ctx.settings.pipeline.code_max_attempts, 1)
    last_errors: list[str] = []
    code: Optional[str] = None

    for attempt in range(attempts):
        prompt = user_prompt if attempt == 0 else user_prompt + build_retry_suffix(last_errors)
        logger.info(f"Job {job.id}: code generation attempt {attempt + 1}/{attempts}")
        try:
            candidate = extract_code(await ctx.code_writer.write(prompt, system_prompt=system_prompt))
        except Exception as e:
            logger.warning(f"Job {job.id}: code attempt {attempt + 1} failed: {type(e).__name__}: {e}")
            last_errors = [str(e)]
            await on_progress((attempt + 1) / (attempts + 1))
            continue

        result = validate_all(candidate)
        if result.valid:
            code = candidate
            break

        logger.warning(f"Job {job.id}: validation failed (attempt {attempt + 1}): {result.errors}")
        last_errors = result.errors
        await on_progress((attempt + 1) / (attempts + 1))
        if not validate_security(candidate).safe:
            logger.error(f"Job {job.id}: security violations in generated code, skipping retries")
            break

    used_fallback = code is None
    if used_fallback:
        logger.info(f"Job {job.id}: falling back to template code")
        code = build_fallback_code(script, len(image_urls), audio_url is not None, total_frames)

    await ctx.job_store.patch(job.id, generated_code=code, code_used_fallback=used_fallback)
    logger.info(f"Job {job.id}: composition code stored ({len(code)} chars, fallback={used_fallback})")
    return code
