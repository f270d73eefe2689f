"""Read-side projections of video jobs returned by the API and CLI."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class JobProgress(BaseModel):
    """Lightweight polling view; artifact URLs are resolved on read."""
    job_id: str
    status: str
    progress: int
    error: Optional[str] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None


class JobDetail(BaseModel):
    """Full job view for detail screens."""
    job_id: str
    creator_id: str
    course_id: Optional[str] = None
    product_id: Optional[str] = None
    store_id: Optional[str] = None
    prompt: str
    style: str
    target_duration_seconds: int
    aspect_ratio: str
    voice_id: Optional[str] = None
    status: str
    progress: int
    error: Optional[str] = None
    script_id: Optional[str] = None
    image_urls: list[str] = []
    audio_url: Optional[str] = None
    audio_duration_seconds: Optional[float] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    code_used_fallback: Optional[bool] = None
    version: int
    parent_job_id: Optional[str] = None
    root_job_id: Optional[str] = None
    iteration_prompt: Optional[str] = None
    retry_count: int = 0
    cancel_requested: bool = False
    stage_timings: dict[str, float] = {}
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class JobListItem(BaseModel):
    """Item in a creator's job list."""
    job_id: str
    prompt: str
    status: str
    progress: int
    version: int
    parent_job_id: Optional[str] = None
    created_at: datetime


class VersionEntry(BaseModel):
    """One node of a version chain, root first."""
    job_id: str
    version: int
    iteration_prompt: Optional[str] = None
    status: str
    created_at: datetime
