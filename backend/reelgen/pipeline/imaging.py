"""Imaging stage: one illustrative image per script image prompt.

All images are generated before any is stored, so a failure part-way
through leaves no image ids on the job.
"""

import logging

from reelgen.db.models import VideoJob
from reelgen.pipeline.context import PipelineContext, StageProgress, no_progress, stage_error_from
from reelgen.schemas.script import VideoScriptSchema
from reelgen.services.image_generator import GeneratedImage

logger = logging.getLogger(__name__)

# Share of the imaging window spent generating; the rest covers uploads
_GENERATE_SHARE = 0.9


async def generate_images(
    job: VideoJob,
    script: VideoScriptSchema,
    ctx: PipelineContext,
    on_progress: StageProgress = no_progress,
) -> list[str]:
    """Generate and store images; sets job.image_ids and returns them.

    Raises:
        StageError: any image failed to generate or store
    """
    prompts = [p for p in script.image_prompts if p.strip()]
    if not prompts:
        logger.info(f"Job {job.id}: script has no image prompts, skipping imaging")
        await ctx.job_store.patch(job.id, image_ids=[])
        return []

    images: list[GeneratedImage] = []
    for index, prompt in enumerate(prompts):
        try:
            images.append(await ctx.image_generator.generate(prompt, job.aspect_ratio))
        except Exception as e:
            logger.warning(f"Job {job.id}: image {index + 1}/{len(prompts)} failed: {e}")
            raise stage_error_from("imaging", e) from e
        await on_progress(_GENERATE_SHARE * (index + 1) / len(prompts))

    try:
        image_ids = [await ctx.artifacts.store(img.data, img.content_type) for img in images]
    except Exception as e:
        raise stage_error_from("imaging", e) from e

    await ctx.job_store.patch(job.id, image_ids=image_ids)
    logger.info(f"Job {job.id}: stored {len(image_ids)} images")
    return image_ids
