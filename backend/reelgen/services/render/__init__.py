"""Render backends: turn generated composition code into an MP4."""

from reelgen.services.render.base import (
    ASPECT_RATIO_DIMS,
    RenderBackend,
    RenderHandle,
    RenderSpec,
    RenderStatus,
    dimensions_for,
)
from reelgen.services.render.registry import select_render_backend

__all__ = [
    "ASPECT_RATIO_DIMS",
    "RenderBackend",
    "RenderHandle",
    "RenderSpec",
    "RenderStatus",
    "dimensions_for",
    "select_render_backend",
]
