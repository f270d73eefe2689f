"""SQLAlchemy 2.0 ORM models for reelgen."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Text, JSON, Integer, Float, Boolean, ForeignKey, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Naive UTC timestamp with microsecond resolution.

    Python-side defaults are used instead of server_default=func.now() because
    SQLite's CURRENT_TIMESTAMP only has second resolution, and version history
    orders sibling jobs by creation time.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Seeded on first run so the CLI and local API work without an identity provider
DEFAULT_CREATOR_ID = "default-creator"
DEFAULT_STORE_ID = "default-store"


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class Creator(Base):
    """Known creator allowed to submit jobs.

    Identity is owned by an external system; this table only records which
    creator ids are valid and the store to associate when none is given.
    """
    __tablename__ = "creators"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    default_store_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)


class VideoJob(Base):
    """One prompt-to-video request and its audit trail.

    Artifact id columns are storage identifiers from the artifact store and
    are append-only (enforced by JobStore). parent_job_id is a back-reference
    only; root_job_id is copied down the chain on creation.
    """
    __tablename__ = "video_jobs"
    __table_args__ = (
        Index("idx_video_jobs_creator_created", "creator_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    # Opaque foreign references
    creator_id: Mapped[str] = mapped_column(String(64))
    course_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    product_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    store_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Inputs (immutable once the job starts)
    prompt: Mapped[str] = mapped_column(Text)
    style: Mapped[str] = mapped_column(String(50))
    target_duration_seconds: Mapped[int] = mapped_column(Integer)
    aspect_ratio: Mapped[str] = mapped_column(String(10))
    voice_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(50), index=True)
    progress: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, default=False)

    # Artifacts
    script_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    image_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    audio_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    audio_duration_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    audio_words: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)  # [{word, start, end}]
    generated_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    code_used_fallback: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    video_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    thumbnail_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Versioning
    version: Mapped[int] = mapped_column(Integer, default=1)
    parent_job_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("video_jobs.id"), nullable=True, index=True
    )
    root_job_id: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True, index=True)
    iteration_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)

    # Per-stage durations in seconds, e.g. {"scripting": 4.2}
    stage_timings: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)


class VideoScript(Base):
    """Structured scene/narration breakdown owned by a single job."""
    __tablename__ = "video_scripts"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("video_jobs.id"), index=True)
    total_duration: Mapped[float] = mapped_column(Float)
    voiceover_script: Mapped[str] = mapped_column(Text)
    scenes: Mapped[list] = mapped_column(JSON)
    color_palette: Mapped[dict] = mapped_column(JSON)
    image_prompts: Mapped[list] = mapped_column(JSON)
    used_fallback: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
