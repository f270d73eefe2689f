"""In-process job scheduler: one asyncio task per dispatched job.

Jobs are durable rows, so the scheduler itself holds no state worth
persisting. On startup, recover() re-dispatches queued jobs and fails the
ones a previous process left mid-stage.
"""

import asyncio
import logging
import uuid

from reelgen.db.models import utcnow
from reelgen.errors import InvalidTransition
from reelgen.orchestrator.pipeline import run_pipeline
from reelgen.orchestrator.state import ACTIVE_STATES
from reelgen.pipeline.context import PipelineContext

logger = logging.getLogger(__name__)

INTERRUPTED_ERROR = "interrupted: the server restarted while this job was running"


class JobScheduler:
    """Owns the background tasks running pipeline executions."""

    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx
        self._tasks: dict[uuid.UUID, asyncio.Task] = {}

    @property
    def running(self) -> set[uuid.UUID]:
        return {job_id for job_id, task in self._tasks.items() if not task.done()}

    def dispatch(self, job_id: uuid.UUID) -> bool:
        """Start a background run for job_id.

        Returns False when a live task already owns the job.
        """
        existing = self._tasks.get(job_id)
        if existing is not None and not existing.done():
            logger.warning(f"Job {job_id} is already running; dispatch ignored")
            return False
        task = asyncio.create_task(self._run(job_id), name=f"pipeline-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t, jid=job_id: self._forget(jid, _t))
        return True

    def _forget(self, job_id: uuid.UUID, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]

    async def _run(self, job_id: uuid.UUID) -> None:
        """Run pipeline in background; nothing escapes the task."""
        try:
            await run_pipeline(job_id, self.ctx)
        except asyncio.CancelledError:
            logger.info(f"Background pipeline for {job_id} cancelled by shutdown")
            raise
        except Exception as e:
            # Stage failures are already persisted by the orchestrator
            logger.error(
                f"Background pipeline failed for {job_id}: {type(e).__name__}: {e}",
                exc_info=True,
            )

    async def recover(self) -> int:
        """Fail jobs interrupted mid-stage and re-dispatch queued ones.

        Returns:
            Number of jobs re-dispatched
        """
        store = self.ctx.job_store
        for job in await store.list_by_status(ACTIVE_STATES):
            if job.id in self.running:
                continue
            try:
                await store.patch(
                    job.id, status="failed", error=INTERRUPTED_ERROR, completed_at=utcnow()
                )
                logger.warning(f"Job {job.id}: marked failed, interrupted at {job.status}")
            except InvalidTransition:
                continue

        queued = await store.list_by_status(["queued"])
        dispatched = sum(1 for job in queued if self.dispatch(job.id))
        if dispatched:
            logger.info(f"Re-dispatched {dispatched} queued job(s)")
        return dispatched

    async def wait_idle(self) -> None:
        """Wait for every dispatched run to finish."""
        while True:
            pending = [task for task in self._tasks.values() if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info(f"Scheduler stopped ({len(tasks)} task(s) cancelled)")
