"""API route handlers and request/response schemas."""

import logging
import mimetypes
import uuid
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import FileResponse
from pydantic import BaseModel

from reelgen import __version__
from reelgen.db.models import DEFAULT_CREATOR_ID
from reelgen.orchestrator.queries import JobQueries
from reelgen.orchestrator.service import VideoService
from reelgen.schemas.jobs import JobDetail, JobListItem, JobProgress, VersionEntry
from reelgen.services.artifact_store import LocalArtifactStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ============================================================================
# Pydantic Schemas
# ============================================================================

class GenerateRequest(BaseModel):
    """Request schema for POST /api/videos."""
    prompt: str
    creator_id: str = DEFAULT_CREATOR_ID
    course_id: Optional[str] = None
    product_id: Optional[str] = None
    store_id: Optional[str] = None
    style: Optional[str] = None
    target_duration_seconds: Optional[int] = None
    aspect_ratio: Optional[str] = None
    voice_id: Optional[str] = None


class IterateRequest(BaseModel):
    """Request schema for POST /api/videos/{id}/iterate."""
    feedback: str


class JobAccepted(BaseModel):
    """Response for accepted generate/iterate requests."""
    job_id: str
    status: str
    version: int
    parent_job_id: Optional[str] = None
    status_url: str


class CancelResponse(BaseModel):
    """Response schema for POST /api/videos/{id}/cancel."""
    job_id: str
    status: str
    cancel_requested: bool


# ============================================================================
# Helpers
# ============================================================================

def _service(request: Request) -> VideoService:
    return request.app.state.service


def _queries(request: Request) -> JobQueries:
    return request.app.state.queries


def _accepted(job) -> JobAccepted:
    return JobAccepted(
        job_id=str(job.id),
        status=job.status,
        version=job.version,
        parent_job_id=str(job.parent_job_id) if job.parent_job_id else None,
        status_url=f"/api/videos/{job.id}/progress",
    )


# ============================================================================
# Endpoint Handlers
# ============================================================================

@router.post("/videos", status_code=202, response_model=JobAccepted)
async def generate_video(body: GenerateRequest, request: Request):
    """Create a video job and start it in the background.

    Returns 202 Accepted with the job id as soon as the record exists.
    """
    job = await _service(request).generate(
        body.creator_id,
        body.prompt,
        course_id=body.course_id,
        product_id=body.product_id,
        store_id=body.store_id,
        style=body.style,
        target_duration_seconds=body.target_duration_seconds,
        aspect_ratio=body.aspect_ratio,
        voice_id=body.voice_id,
    )
    return _accepted(job)


@router.post("/videos/{job_id}/iterate", status_code=202, response_model=JobAccepted)
async def iterate_video(job_id: uuid.UUID, body: IterateRequest, request: Request):
    """Fork a new version of a job with feedback."""
    job = await _service(request).iterate(job_id, body.feedback)
    return _accepted(job)


@router.post("/videos/{job_id}/cancel", response_model=CancelResponse)
async def cancel_video(job_id: uuid.UUID, request: Request):
    """Cancel a job.

    Queued jobs are cancelled at once; running jobs stop at the next stage
    boundary or render poll. Returns 409 if the job is already terminal.
    """
    job = await _service(request).cancel(job_id)
    return CancelResponse(
        job_id=str(job.id), status=job.status, cancel_requested=bool(job.cancel_requested)
    )


@router.get("/videos/{job_id}/progress", response_model=JobProgress)
async def get_video_progress(job_id: uuid.UUID, request: Request):
    """Lightweight status for polling."""
    return await _queries(request).get_progress(job_id)


@router.get("/videos/{job_id}/versions", response_model=list[VersionEntry])
async def get_video_versions(job_id: uuid.UUID, request: Request):
    """Root-to-latest version chain containing this job."""
    return await _queries(request).get_version_history(job_id)


@router.get("/videos/{job_id}", response_model=JobDetail)
async def get_video(job_id: uuid.UUID, request: Request):
    """Full job detail with resolved artifact URLs."""
    return await _queries(request).get_job(job_id)


@router.get("/videos", response_model=list[JobListItem])
async def list_videos(
    request: Request,
    creator_id: str = DEFAULT_CREATOR_ID,
    limit: Optional[int] = Query(default=None, ge=1),
):
    """A creator's jobs, most recent first."""
    return await _queries(request).list_jobs(creator_id, limit)


@router.get("/artifacts/{storage_id}")
async def get_artifact(storage_id: str, request: Request):
    """Serve an artifact kept by the local artifact store."""
    artifacts = request.app.state.ctx.artifacts
    if not isinstance(artifacts, LocalArtifactStore):
        raise HTTPException(status_code=404, detail="Artifacts are not served by this instance")
    path = artifacts.path_for(storage_id)
    if path is None:
        raise HTTPException(status_code=404, detail="Artifact not found")
    media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    return FileResponse(path=str(path), media_type=media_type)


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": __version__,
        "renderer": request.app.state.ctx.renderer.name,
    }
