"""Narration stage: synthesize the script's voiceover with word timings."""

import logging
from typing import Optional

from reelgen.db.models import VideoJob
from reelgen.pipeline.context import PipelineContext, StageProgress, no_progress, stage_error_from
from reelgen.schemas.script import VideoScriptSchema
from reelgen.services.voice_synthesizer import SpeechResult

logger = logging.getLogger(__name__)


async def narrate(
    job: VideoJob,
    script: VideoScriptSchema,
    ctx: PipelineContext,
    on_progress: StageProgress = no_progress,
) -> Optional[SpeechResult]:
    """Synthesize and store narration; sets audio_id, duration and words.

    Returns None (and stores nothing) when the script has no voiceover.

    Raises:
        StageError: synthesis or upload failed
    """
    text = (script.voiceover_script or "").strip()
    if not text:
        logger.info(f"Job {job.id}: no voiceover text, rendering without audio")
        return None

    voice_id = job.voice_id or ctx.settings.providers.default_voice_id
    try:
        speech = await ctx.voice.synthesize(text, voice_id)
    except Exception as e:
        raise stage_error_from("narrating", e) from e
    await on_progress(0.8)

    try:
        audio_id = await ctx.artifacts.store(speech.audio, speech.content_type)
    except Exception as e:
        raise stage_error_from("narrating", e) from e

    await ctx.job_store.patch(
        job.id,
        audio_id=audio_id,
        audio_duration_seconds=speech.duration,
        audio_words=[w.model_dump() for w in speech.words],
    )
    logger.info(
        f"Job {job.id}: narration {audio_id} ({speech.duration:.1f}s, {len(speech.words)} words)"
    )
    return speech
