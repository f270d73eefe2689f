"""Job submission entry points: generate, iterate and cancel.

All three validate synchronously and raise pre-flight errors to the caller.
generate and iterate insert a queued job and hand its id to the dispatcher,
returning as soon as the record exists.
"""

import logging
import uuid
from typing import Any, Callable, Optional

from reelgen.config import Settings
from reelgen.db.models import VideoJob
from reelgen.errors import InvalidRequest, UnknownCreator
from reelgen.services.job_store import JobStore
from reelgen.services.render import ASPECT_RATIO_DIMS

logger = logging.getLogger(__name__)

MIN_DURATION_SECONDS = 5
MAX_DURATION_SECONDS = 300

ITERATION_SEPARATOR = "\n\nIteration feedback: "

Dispatcher = Callable[[uuid.UUID], Any]


def compose_iteration_prompt(parent_prompt: str, feedback: str) -> str:
    return f"{parent_prompt}{ITERATION_SEPARATOR}{feedback}"


class VideoService:
    """Creates jobs and hands them to a dispatcher."""

    def __init__(self, job_store: JobStore, dispatch: Dispatcher, app_settings: Settings):
        self.job_store = job_store
        self.dispatch = dispatch
        self.settings = app_settings

    def _validate_options(self, style: str, target_duration_seconds: int, aspect_ratio: str) -> None:
        if aspect_ratio not in ASPECT_RATIO_DIMS:
            raise InvalidRequest(
                f"aspect_ratio must be one of {', '.join(ASPECT_RATIO_DIMS)}, got {aspect_ratio}"
            )
        if not MIN_DURATION_SECONDS <= target_duration_seconds <= MAX_DURATION_SECONDS:
            raise InvalidRequest(
                f"target_duration_seconds must be {MIN_DURATION_SECONDS}-{MAX_DURATION_SECONDS}, "
                f"got {target_duration_seconds}"
            )
        if not style.strip():
            raise InvalidRequest("style must not be empty")

    async def generate(
        self,
        creator_id: str,
        prompt: str,
        *,
        course_id: Optional[str] = None,
        product_id: Optional[str] = None,
        store_id: Optional[str] = None,
        style: Optional[str] = None,
        target_duration_seconds: Optional[int] = None,
        aspect_ratio: Optional[str] = None,
        voice_id: Optional[str] = None,
    ) -> VideoJob:
        """Create a fresh version-1 job and dispatch it.

        Raises:
            UnknownCreator: creator_id is not a known creator
            InvalidRequest: prompt or options failed validation
        """
        creator = await self.job_store.get_creator(creator_id)
        if creator is None:
            raise UnknownCreator(f"Unknown creator {creator_id}")
        if not prompt or not prompt.strip():
            raise InvalidRequest("prompt must not be empty")

        defaults = self.settings.pipeline
        style = style or defaults.default_style
        if target_duration_seconds is None:
            target_duration_seconds = defaults.default_duration_seconds
        aspect_ratio = aspect_ratio or defaults.default_aspect_ratio
        self._validate_options(style, target_duration_seconds, aspect_ratio)

        job = await self.job_store.create_job(
            creator_id=creator.id,
            course_id=course_id,
            product_id=product_id,
            store_id=store_id or creator.default_store_id,
            prompt=prompt.strip(),
            style=style,
            target_duration_seconds=target_duration_seconds,
            aspect_ratio=aspect_ratio,
            voice_id=voice_id,
            version=1,
        )
        logger.info(f"Created job {job.id} for prompt: {job.prompt[:50]}...")
        self.dispatch(job.id)
        return job

    async def iterate(self, job_id: uuid.UUID, feedback: str) -> VideoJob:
        """Fork a child job from an existing one with creator feedback.

        The child copies the parent's associations and options, appends the
        feedback to the parent prompt, and takes version parent.version + 1.

        Raises:
            NotFound: parent job does not exist
            InvalidRequest: feedback is empty
        """
        parent = await self.job_store.require(job_id)
        if not feedback or not feedback.strip():
            raise InvalidRequest("feedback must not be empty")
        feedback = feedback.strip()

        child = await self.job_store.create_job(
            creator_id=parent.creator_id,
            course_id=parent.course_id,
            product_id=parent.product_id,
            store_id=parent.store_id,
            prompt=compose_iteration_prompt(parent.prompt, feedback),
            style=parent.style,
            target_duration_seconds=parent.target_duration_seconds,
            aspect_ratio=parent.aspect_ratio,
            voice_id=parent.voice_id,
            version=parent.version + 1,
            parent_job_id=parent.id,
            root_job_id=parent.root_job_id or parent.id,
            iteration_prompt=feedback,
        )
        logger.info(f"Job {child.id}: iteration v{child.version} of {parent.id}")
        self.dispatch(child.id)
        return child

    async def cancel(self, job_id: uuid.UUID) -> VideoJob:
        """Cancel a queued job, or flag a running one for cooperative cancellation.

        Raises:
            NotFound: job does not exist
            InvalidTransition: job is already terminal
        """
        return await self.job_store.request_cancel(job_id)
