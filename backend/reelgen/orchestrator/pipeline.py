"""Main pipeline orchestrator: sequences the stages of one video job.

Coordinates a run with:
- Claim of the queued job, so only one execution ever owns it
- Strictly sequential stages, each persisting its artifact before the next starts
- Stage-local progress mapped into fixed windows of overall progress
- Bounded retry of transient stage failures (retry_count tracks re-executions)
- Cooperative cancellation at stage boundaries and render polls
- Containment: every failure ends as a failed or cancelled job, never an exception
"""

import logging
import time
import uuid
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from reelgen.db.models import VideoJob, utcnow
from reelgen.errors import InvalidTransition, PipelineCancelled, StageError
from reelgen.orchestrator.state import (
    PIPELINE_STATES,
    render_progress_step,
    window_progress,
)
from reelgen.pipeline.codegen import generate_code
from reelgen.pipeline.context import PipelineContext, StageProgress, stage_error_from
from reelgen.pipeline.imaging import generate_images
from reelgen.pipeline.narration import narrate
from reelgen.pipeline.rendering import (
    build_render_spec,
    composition_geometry,
    finalize,
    render_video,
    store_video,
)
from reelgen.pipeline.scripting import generate_script

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[str], None]


def _is_retriable(exc: BaseException) -> bool:
    return isinstance(exc, StageError) and exc.retriable


class PipelineRun:
    """One execution of the pipeline for one claimed job."""

    def __init__(
        self,
        job_id: uuid.UUID,
        ctx: PipelineContext,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.job_id = job_id
        self.ctx = ctx
        self.progress_callback = progress_callback
        self.current_stage = "queued"
        self._progress = 0

    # -- progress ------------------------------------------------------------

    def _notify(self, message: str) -> None:
        if self.progress_callback:
            self.progress_callback(message)

    async def _report(self, stage: str, fraction: float) -> None:
        value = window_progress(stage, fraction)
        if value <= self._progress:
            return
        self._progress = value
        await self.ctx.job_store.patch(self.job_id, progress=value)
        self._notify(f"{PIPELINE_STATES.get(stage, stage)} ({value}%)")

    def _reporter(self, stage: str) -> StageProgress:
        async def report(fraction: float) -> None:
            await self._report(stage, fraction)

        return report

    def _render_reporter(self) -> StageProgress:
        """Only write render progress when a 10% boundary is crossed."""
        last_step = [-1]

        async def report(fraction: float) -> None:
            step = render_progress_step(fraction)
            if step <= last_step[0]:
                return
            last_step[0] = step
            logger.info(f"Job {self.job_id}: render at {step * 10}%")
            await self._report("rendering", step / 10)

        return report

    # -- cancellation --------------------------------------------------------

    async def _cancel_requested(self) -> bool:
        return await self.ctx.job_store.is_cancel_requested(self.job_id)

    async def _check_cancelled(self) -> None:
        if await self._cancel_requested():
            raise PipelineCancelled(f"Job {self.job_id} cancelled by creator")

    # -- stages --------------------------------------------------------------

    async def _stage(
        self,
        stage: str,
        work: Callable[[VideoJob], Awaitable[T]],
        *,
        timing_key: Optional[str] = None,
    ) -> T:
        """Enter a stage, run it with bounded retry, and record its duration."""
        await self._check_cancelled()
        self.current_stage = stage
        await self.ctx.job_store.patch(self.job_id, status=stage)
        await self._report(stage, 0.0)
        self._notify(f"{PIPELINE_STATES[stage]}...")
        logger.info(f"Job {self.job_id}: starting {stage}")

        step_start = time.monotonic()
        result = await self._attempt(stage, work)

        step_duration = time.monotonic() - step_start
        await self.ctx.job_store.record_stage_timing(self.job_id, timing_key or stage, step_duration)
        logger.info(f"Job {self.job_id}: {timing_key or stage} completed in {step_duration:.2f}s")
        return result

    async def _attempt(self, stage: str, work: Callable[[VideoJob], Awaitable[T]]) -> T:
        """Run ``work`` under the stage retry policy; each re-run bumps retry_count."""
        pipeline_config = self.ctx.settings.pipeline
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(pipeline_config.stage_max_attempts, 1)),
            wait=wait_exponential(multiplier=pipeline_config.stage_retry_base_delay, max=60),
            retry=retry_if_exception(_is_retriable),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    count = await self.ctx.job_store.increment_retry(self.job_id)
                    logger.warning(
                        f"Job {self.job_id}: retrying {stage} "
                        f"(attempt {attempt.retry_state.attempt_number}, retry_count={count})"
                    )
                job = await self.ctx.job_store.require(self.job_id)
                try:
                    result = await work(job)
                except (StageError, PipelineCancelled):
                    raise
                except Exception as e:
                    raise stage_error_from(stage, e) from e
        return result

    async def _execute(self) -> None:
        ctx = self.ctx
        fps = ctx.settings.pipeline.fps

        script = await self._stage(
            "scripting",
            lambda job: generate_script(job, ctx, self._reporter("scripting")),
        )
        await self._stage(
            "imaging",
            lambda job: generate_images(job, script, ctx, self._reporter("imaging")),
        )
        await self._stage(
            "narrating",
            lambda job: narrate(job, script, ctx, self._reporter("narrating")),
        )

        async def write_code(job: VideoJob) -> str:
            width, height, total_frames = composition_geometry(job, fps)
            image_urls = await ctx.resolve_urls("generating_code", job.image_ids)
            audio_url = await ctx.resolve_url("generating_code", job.audio_id) if job.audio_id else None
            return await generate_code(
                job,
                script,
                image_urls,
                audio_url,
                ctx,
                self._reporter("generating_code"),
                width=width,
                height=height,
                total_frames=total_frames,
            )

        await self._stage("generating_code", write_code)

        async def render(job: VideoJob) -> bytes:
            image_urls = await ctx.resolve_urls("rendering", job.image_ids)
            audio_url = await ctx.resolve_url("rendering", job.audio_id) if job.audio_id else None
            spec = build_render_spec(job, job.generated_code, image_urls, audio_url, fps)
            return await render_video(
                job, spec, ctx, self._render_reporter(), should_cancel=self._cancel_requested
            )

        video = await self._stage("rendering", render)
        await self._check_cancelled()
        await self._report("finalizing", 0.0)
        self._notify("Storing video...")

        # Upload failures re-run only the upload, never the finished render
        step_start = time.monotonic()
        video_id = await self._attempt("rendering", lambda job: store_video(job, video, ctx))
        job = await self.ctx.job_store.require(self.job_id)
        try:
            await finalize(job, video, video_id, ctx)
        except (StageError, InvalidTransition):
            raise
        except Exception as e:
            raise stage_error_from("rendering", e) from e
        await ctx.job_store.record_stage_timing(
            self.job_id, "finalizing", time.monotonic() - step_start
        )

    async def run(self) -> VideoJob:
        """Run every stage; failures and cancellation become terminal job states."""
        pipeline_start = time.monotonic()
        try:
            await self._execute()
            logger.info(
                f"Job {self.job_id}: pipeline completed in {time.monotonic() - pipeline_start:.2f}s"
            )
            self._notify("Completed")

        except PipelineCancelled as e:
            logger.info(f"Job {self.job_id}: cancelled during {self.current_stage}: {e}")
            await self._terminate(status="cancelled")
            self._notify("Cancelled")

        except StageError as e:
            logger.error(f"Job {self.job_id}: {e}", exc_info=True)
            await self._terminate(status="failed", error=str(e))
            self._notify(f"Failed: {e}")

        except Exception as e:
            logger.error(
                f"Job {self.job_id}: pipeline failed at {self.current_stage}: "
                f"{type(e).__name__}: {e}",
                exc_info=True,
            )
            error = f"{self.current_stage} failed: {type(e).__name__}: {e}"
            await self._terminate(status="failed", error=error)
            self._notify(f"Failed: {error}")

        return await self.ctx.job_store.require(self.job_id)

    async def _terminate(self, *, status: str, error: Optional[str] = None) -> None:
        try:
            await self.ctx.job_store.patch(
                self.job_id, status=status, error=error, completed_at=utcnow()
            )
        except InvalidTransition as e:
            logger.warning(f"Job {self.job_id}: not moved to {status}: {e}")


async def run_pipeline(
    job_id: uuid.UUID,
    ctx: PipelineContext,
    progress_callback: Optional[ProgressCallback] = None,
) -> Optional[VideoJob]:
    """Claim a queued job and run it to a terminal state.

    Args:
        job_id: Job to run; must be queued
        ctx: Collaborators for the run
        progress_callback: Optional callback for status messages (e.g. CLI display)

    Returns:
        The job in its terminal state, or None when the job could not be
        claimed (not queued, or already owned by another execution).

    Raises:
        NotFound: job does not exist
    """
    job = await ctx.job_store.require(job_id)
    if not await ctx.job_store.claim(job_id):
        logger.info(f"Job {job_id}: not claimable (status {job.status}), skipping")
        return None
    logger.info(f"Job {job_id}: claimed (version {job.version}, creator {job.creator_id})")
    return await PipelineRun(job_id, ctx, progress_callback).run()
