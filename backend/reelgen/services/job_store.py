"""Durable job records: the single source of truth read by every stage.

Each public method opens its own short-lived session, so callers never share
a session across await points or tasks. Writes are field patches keyed by
job id, and the store enforces the record's invariants at the write boundary:

- progress never decreases
- artifact fields are append-only (set once, never cleared or reassigned)
- terminal states are final
"""

import logging
import uuid
from typing import Any, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reelgen.db.models import Creator, VideoJob, VideoScript, utcnow
from reelgen.errors import ArtifactOverwrite, InvalidTransition, NotFound
from reelgen.orchestrator.state import TERMINAL_STATES
from reelgen.schemas.script import VideoScriptSchema

logger = logging.getLogger(__name__)

ARTIFACT_FIELDS = (
    "script_id",
    "image_ids",
    "audio_id",
    "generated_code",
    "video_id",
    "thumbnail_id",
)


class JobStore:
    """Async repository for VideoJob, VideoScript and Creator rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # -- creators ------------------------------------------------------------

    async def get_creator(self, creator_id: str) -> Optional[Creator]:
        async with self._session_factory() as session:
            return await session.get(Creator, creator_id)

    # -- jobs ----------------------------------------------------------------

    async def create_job(self, **fields: Any) -> VideoJob:
        """Insert a new job in the queued state.

        root_job_id defaults to the job's own id for chain roots.
        """
        async with self._session_factory() as session:
            job = VideoJob(status="queued", progress=0, **fields)
            if job.id is None:
                job.id = uuid.uuid4()
            if job.root_job_id is None:
                job.root_job_id = job.id
            session.add(job)
            await session.commit()
            logger.info(
                f"Job {job.id} created (version {job.version}, "
                f"parent {job.parent_job_id}, creator {job.creator_id})"
            )
            return job

    async def get(self, job_id: uuid.UUID) -> Optional[VideoJob]:
        async with self._session_factory() as session:
            return await session.get(VideoJob, job_id)

    async def require(self, job_id: uuid.UUID) -> VideoJob:
        """Load a job or raise NotFound."""
        job = await self.get(job_id)
        if job is None:
            raise NotFound(f"Video job {job_id} not found")
        return job

    async def claim(self, job_id: uuid.UUID) -> bool:
        """Atomically move a queued job into scripting.

        Returns False when the job is not queued (already claimed by another
        execution, cancelled, or finished), in which case the caller must not
        run it.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(VideoJob)
                .where(VideoJob.id == job_id, VideoJob.status == "queued")
                .values(status="scripting", started_at=utcnow(), updated_at=utcnow())
            )
            await session.commit()
            return result.rowcount == 1

    async def patch(self, job_id: uuid.UUID, **fields: Any) -> VideoJob:
        """Apply a field patch, enforcing the job invariants.

        Raises:
            NotFound: job does not exist
            ArtifactOverwrite: an artifact field is already set to another value
            InvalidTransition: status change requested on a terminal job
        """
        async with self._session_factory() as session:
            job = await session.get(VideoJob, job_id)
            if job is None:
                raise NotFound(f"Video job {job_id} not found")

            new_status = fields.get("status")
            if new_status is not None and new_status != job.status and job.status in TERMINAL_STATES:
                raise InvalidTransition(
                    f"Job {job_id} is {job.status}; cannot move to {new_status}"
                )

            for name in ARTIFACT_FIELDS:
                if name in fields:
                    current = getattr(job, name)
                    if current is not None and fields[name] != current:
                        raise ArtifactOverwrite(f"Job {job_id}: {name} is already set")

            if "progress" in fields:
                requested = int(fields["progress"])
                if requested < job.progress:
                    logger.debug(
                        f"Job {job_id}: ignoring progress {requested} < {job.progress}"
                    )
                fields["progress"] = min(max(requested, job.progress), 100)

            for name, value in fields.items():
                setattr(job, name, value)
            await session.commit()
            return job

    async def record_stage_timing(self, job_id: uuid.UUID, stage: str, seconds: float) -> None:
        async with self._session_factory() as session:
            job = await session.get(VideoJob, job_id)
            if job is None:
                raise NotFound(f"Video job {job_id} not found")
            timings = dict(job.stage_timings or {})
            timings[stage] = round(seconds, 3)
            job.stage_timings = timings
            await session.commit()

    async def increment_retry(self, job_id: uuid.UUID) -> int:
        async with self._session_factory() as session:
            job = await session.get(VideoJob, job_id)
            if job is None:
                raise NotFound(f"Video job {job_id} not found")
            job.retry_count = (job.retry_count or 0) + 1
            await session.commit()
            return job.retry_count

    async def request_cancel(self, job_id: uuid.UUID) -> VideoJob:
        """Cancel a queued job outright, or flag an in-flight one.

        Raises:
            NotFound: job does not exist
            InvalidTransition: job is already terminal
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(VideoJob)
                .where(VideoJob.id == job_id, VideoJob.status == "queued")
                .values(
                    status="cancelled",
                    cancel_requested=True,
                    completed_at=utcnow(),
                    updated_at=utcnow(),
                )
            )
            await session.commit()
            if result.rowcount == 1:
                logger.info(f"Job {job_id} cancelled before start")
                return await session.get(VideoJob, job_id, populate_existing=True)

            job = await session.get(VideoJob, job_id, populate_existing=True)
            if job is None:
                raise NotFound(f"Video job {job_id} not found")
            if job.status in TERMINAL_STATES:
                raise InvalidTransition(f"Job {job_id} is already {job.status}")
            job.cancel_requested = True
            await session.commit()
            logger.info(f"Job {job_id} cancellation requested at status {job.status}")
            return job

    async def is_cancel_requested(self, job_id: uuid.UUID) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(VideoJob.cancel_requested).where(VideoJob.id == job_id)
            )
            return bool(result.scalar_one_or_none())

    async def list_for_creator(self, creator_id: str, limit: int) -> list[VideoJob]:
        """Most recent first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(VideoJob)
                .where(VideoJob.creator_id == creator_id)
                .order_by(VideoJob.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_by_status(self, statuses: Iterable[str]) -> list[VideoJob]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(VideoJob)
                .where(VideoJob.status.in_(list(statuses)))
                .order_by(VideoJob.created_at)
            )
            return list(result.scalars().all())

    async def latest_child(self, job_id: uuid.UUID) -> Optional[VideoJob]:
        """Most recently created job whose parent is job_id (indexed lookup)."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(VideoJob)
                .where(VideoJob.parent_job_id == job_id)
                .order_by(VideoJob.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    # -- scripts -------------------------------------------------------------

    async def save_script(
        self, job_id: uuid.UUID, script: VideoScriptSchema, *, used_fallback: bool = False
    ) -> VideoScript:
        async with self._session_factory() as session:
            row = VideoScript(
                job_id=job_id,
                total_duration=script.total_duration,
                voiceover_script=script.voiceover_script,
                scenes=[scene.model_dump() for scene in script.scenes],
                color_palette=script.color_palette.model_dump(),
                image_prompts=list(script.image_prompts),
                used_fallback=used_fallback,
            )
            session.add(row)
            await session.commit()
            return row

    async def get_script(self, script_id: str | uuid.UUID) -> Optional[VideoScript]:
        if isinstance(script_id, str):
            try:
                script_id = uuid.UUID(script_id)
            except ValueError:
                return None
        async with self._session_factory() as session:
            return await session.get(VideoScript, script_id)
