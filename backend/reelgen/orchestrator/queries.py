"""Read-only projections over video jobs.

Artifact ids are the durable references; URLs are resolved on every read
and never stored.
"""

import logging
import uuid
from typing import Optional

from reelgen.db.models import VideoJob
from reelgen.schemas.jobs import JobDetail, JobListItem, JobProgress, VersionEntry
from reelgen.services.artifact_store import ArtifactStore
from reelgen.services.job_store import JobStore

logger = logging.getLogger(__name__)


class JobQueries:
    """Progress, detail, listing and version-history views."""

    def __init__(
        self,
        job_store: JobStore,
        artifacts: ArtifactStore,
        page_size: int = 20,
        max_page_size: int = 100,
    ):
        self.job_store = job_store
        self.artifacts = artifacts
        self.page_size = page_size
        self.max_page_size = max_page_size

    async def _url(self, storage_id: Optional[str]) -> Optional[str]:
        if not storage_id:
            return None
        return await self.artifacts.get_url(storage_id)

    async def get_progress(self, job_id: uuid.UUID) -> JobProgress:
        """Raises NotFound for an unknown job."""
        job = await self.job_store.require(job_id)
        return JobProgress(
            job_id=str(job.id),
            status=job.status,
            progress=job.progress,
            error=job.error,
            video_url=await self._url(job.video_id),
            thumbnail_url=await self._url(job.thumbnail_id),
        )

    async def get_job(self, job_id: uuid.UUID) -> JobDetail:
        """Full projection including resolved image and audio URLs."""
        job = await self.job_store.require(job_id)
        image_urls = []
        for storage_id in job.image_ids or []:
            url = await self._url(storage_id)
            if url:
                image_urls.append(url)
        return JobDetail(
            job_id=str(job.id),
            creator_id=job.creator_id,
            course_id=job.course_id,
            product_id=job.product_id,
            store_id=job.store_id,
            prompt=job.prompt,
            style=job.style,
            target_duration_seconds=job.target_duration_seconds,
            aspect_ratio=job.aspect_ratio,
            voice_id=job.voice_id,
            status=job.status,
            progress=job.progress,
            error=job.error,
            script_id=job.script_id,
            image_urls=image_urls,
            audio_url=await self._url(job.audio_id),
            audio_duration_seconds=job.audio_duration_seconds,
            video_url=await self._url(job.video_id),
            thumbnail_url=await self._url(job.thumbnail_id),
            code_used_fallback=job.code_used_fallback,
            version=job.version,
            parent_job_id=str(job.parent_job_id) if job.parent_job_id else None,
            root_job_id=str(job.root_job_id) if job.root_job_id else None,
            iteration_prompt=job.iteration_prompt,
            retry_count=job.retry_count or 0,
            cancel_requested=bool(job.cancel_requested),
            stage_timings=job.stage_timings or {},
            created_at=job.created_at,
            updated_at=job.updated_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )

    async def list_jobs(self, creator_id: str, limit: Optional[int] = None) -> list[JobListItem]:
        """Most recent first; limit is clamped to [1, max_page_size]."""
        limit = min(max(limit or self.page_size, 1), self.max_page_size)
        jobs = await self.job_store.list_for_creator(creator_id, limit)
        return [
            JobListItem(
                job_id=str(job.id),
                prompt=job.prompt,
                status=job.status,
                progress=job.progress,
                version=job.version,
                parent_job_id=str(job.parent_job_id) if job.parent_job_id else None,
                created_at=job.created_at,
            )
            for job in jobs
        ]

    async def get_version_history(self, job_id: uuid.UUID) -> list[VersionEntry]:
        """Root-to-latest chain containing job_id.

        Walks parent pointers up to the root, then forward one indexed
        lookup per level, taking the most recently created child where a
        parent has several.

        Raises:
            NotFound: job_id does not exist
        """
        job = await self.job_store.require(job_id)

        seen = {job.id}
        root = job
        while root.parent_job_id is not None:
            parent = await self.job_store.get(root.parent_job_id)
            if parent is None or parent.id in seen:
                logger.warning(f"Job {root.id}: broken parent link to {root.parent_job_id}")
                break
            seen.add(parent.id)
            root = parent

        chain: list[VideoJob] = [root]
        visited = {root.id}
        current = root
        while True:
            child = await self.job_store.latest_child(current.id)
            if child is None or child.id in visited:
                break
            chain.append(child)
            visited.add(child.id)
            current = child

        return [
            VersionEntry(
                job_id=str(node.id),
                version=node.version,
                iteration_prompt=node.iteration_prompt,
                status=node.status,
                created_at=node.created_at,
            )
            for node in chain
        ]
