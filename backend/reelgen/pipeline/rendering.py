"""Rendering and finalization: composition code to a stored MP4 and thumbnail.

The render backend is whichever one the context was built with; this
module only builds the RenderSpec, maps progress, and stores the results.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from reelgen.db.models import VideoJob, utcnow
from reelgen.errors import RenderError
from reelgen.pipeline.context import PipelineContext, StageProgress, no_progress
from reelgen.services.render import RenderSpec, dimensions_for
from reelgen.services.render.base import CancelCheck
from reelgen.services.render.local import scratch_dir

logger = logging.getLogger(__name__)

THUMBNAIL_OFFSET_SECONDS = 1.0


def composition_geometry(job: VideoJob, fps: int) -> tuple[int, int, int]:
    """(width, height, total_frames) for a job's aspect ratio and duration."""
    width, height = dimensions_for(job.aspect_ratio)
    return width, height, int(job.target_duration_seconds * fps)


def build_render_spec(
    job: VideoJob,
    code: str,
    image_urls: list[str],
    audio_url: Optional[str],
    fps: int,
) -> RenderSpec:
    width, height, total_frames = composition_geometry(job, fps)
    return RenderSpec(
        code=code,
        image_urls=image_urls,
        audio_url=audio_url,
        total_frames=total_frames,
        width=width,
        height=height,
        fps=fps,
    )


async def render_video(
    job: VideoJob,
    spec: RenderSpec,
    ctx: PipelineContext,
    on_progress: StageProgress = no_progress,
    should_cancel: Optional[CancelCheck] = None,
) -> bytes:
    """Render through the configured backend; backend errors are already RenderErrors."""
    logger.info(
        f"Job {job.id}: rendering {spec.total_frames} frames at {spec.width}x{spec.height} "
        f"via {ctx.renderer.name}"
    )
    return await ctx.renderer.render(spec, on_progress=on_progress, should_cancel=should_cancel)


async def extract_thumbnail(
    video: bytes,
    tmp_dir: Optional[Path] = None,
    offset_seconds: float = THUMBNAIL_OFFSET_SECONDS,
) -> Optional[bytes]:
    """Grab one JPEG frame from an MP4 with ffmpeg.

    Returns None when ffmpeg is missing or fails; thumbnails are optional.
    """
    with scratch_dir(tmp_dir) as workdir:
        video_path = workdir / "video.mp4"
        thumb_path = workdir / "thumb.jpg"
        await asyncio.to_thread(video_path.write_bytes, video)
        try:
            proc = await asyncio.create_subprocess_exec(
                "ffmpeg",
                "-y",
                "-ss", f"{offset_seconds:g}",
                "-i", str(video_path),
                "-frames:v", "1",
                "-q:v", "3",
                str(thumb_path),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning(f"Thumbnail extraction unavailable: {e}")
            return None
        _, stderr = await proc.communicate()
        if proc.returncode != 0 or not thumb_path.is_file():
            tail = stderr.decode(errors="ignore").strip().splitlines()[-1:] if stderr else []
            logger.warning(f"ffmpeg thumbnail extraction failed (exit {proc.returncode}): {tail}")
            return None
        return await asyncio.to_thread(thumb_path.read_bytes)


async def store_video(job: VideoJob, video: bytes, ctx: PipelineContext) -> str:
    """Upload the rendered MP4 and return its artifact id.

    Raises:
        RenderError: retriable, so the rendering stage's retry policy applies
    """
    try:
        video_id = await ctx.artifacts.store(video, "video/mp4")
    except Exception as e:
        raise RenderError(f"upload of rendered video failed: {type(e).__name__}: {e}", retriable=True) from e
    logger.info(f"Job {job.id}: video stored as {video_id} ({len(video)} bytes)")
    return video_id


async def finalize(job: VideoJob, video: bytes, video_id: str, ctx: PipelineContext) -> VideoJob:
    """Attach a best-effort thumbnail and complete the job in one patch."""
    thumbnail_id = None
    try:
        thumbnail = await extract_thumbnail(video, ctx.settings.render.tmp_dir)
        if thumbnail is not None:
            thumbnail_id = await ctx.artifacts.store(thumbnail, "image/jpeg")
    except Exception as e:
        logger.warning(f"Job {job.id}: thumbnail skipped: {type(e).__name__}: {e}")

    return await ctx.job_store.patch(
        job.id,
        video_id=video_id,
        thumbnail_id=thumbnail_id,
        status="completed",
        progress=100,
        error=None,
        completed_at=utcnow(),
    )
