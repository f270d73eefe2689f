"""Render backend contract shared by the local and distributed renderers.

The orchestrator talks to every backend through the same three calls
(submit, poll, fetch_output) or through render(), which drives them as a
bounded poll loop. Backends report raw completion fractions; mapping them
onto job progress is the caller's job.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from reelgen.errors import PipelineCancelled, RenderError, RenderTimeout

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Composition geometry
# ---------------------------------------------------------------------------

ASPECT_RATIO_DIMS: dict[str, tuple[int, int]] = {
    "9:16": (1080, 1920),
    "16:9": (1920, 1080),
    "1:1": (1080, 1080),
}

DEFAULT_CODEC = "h264"
DEFAULT_IMAGE_FORMAT = "jpeg"


def dimensions_for(aspect_ratio: str) -> tuple[int, int]:
    """Map aspect ratio string to output resolution (width, height)."""
    if aspect_ratio not in ASPECT_RATIO_DIMS:
        raise ValueError(
            f"Unsupported aspect ratio: {aspect_ratio}. "
            f"Supported: {list(ASPECT_RATIO_DIMS.keys())}"
        )
    return ASPECT_RATIO_DIMS[aspect_ratio]


# ---------------------------------------------------------------------------
# Contract types
# ---------------------------------------------------------------------------

class RenderSpec(BaseModel):
    """Everything needed to render one composition."""

    model_config = ConfigDict(frozen=True)

    code: str
    image_urls: list[str]
    audio_url: Optional[str]
    total_frames: int
    width: int
    height: int
    fps: int = 30
    codec: str = DEFAULT_CODEC
    image_format: str = DEFAULT_IMAGE_FORMAT

    @property
    def duration_seconds(self) -> float:
        return self.total_frames / self.fps

    def input_props(self) -> dict:
        """Props handed to the composition that executes the generated code."""
        return {
            "code": self.code,
            "images": list(self.image_urls),
            "audioUrl": self.audio_url,
            "totalFrames": self.total_frames,
            "fps": self.fps,
            "width": self.width,
            "height": self.height,
        }


class RenderHandle(BaseModel):
    render_id: str
    bucket_name: Optional[str] = None


class RenderStatus(BaseModel):
    done: bool
    fraction: float
    fatal_error: bool = False
    errors: list[str] = Field(default_factory=list)
    output_location: Optional[str] = None


ProgressCallback = Callable[[float], Awaitable[None]]
CancelCheck = Callable[[], Awaitable[bool]]


# ---------------------------------------------------------------------------
# Backend ABC
# ---------------------------------------------------------------------------

class RenderBackend(ABC):
    """Turns a RenderSpec into MP4 bytes."""

    name = "render"

    def __init__(self, poll_interval: float = 2.0, max_polls: int = 450):
        self.poll_interval = poll_interval
        self.max_polls = max_polls

    @abstractmethod
    async def submit(self, spec: RenderSpec) -> RenderHandle:
        """Start a render and return a handle for polling."""
        ...

    @abstractmethod
    async def poll(self, handle: RenderHandle) -> RenderStatus:
        """Report the current state of a render."""
        ...

    @abstractmethod
    async def fetch_output(self, location: str) -> bytes:
        """Download the finished file."""
        ...

    async def close(self) -> None:
        """Release any held resources."""

    async def render(
        self,
        spec: RenderSpec,
        on_progress: Optional[ProgressCallback] = None,
        should_cancel: Optional[CancelCheck] = None,
    ) -> bytes:
        """Submit, poll until done, and download the output.

        Raises:
            RenderError: farm reported a fatal error, finished without an
                output, or a transport call failed
            RenderTimeout: max_polls exhausted before the render finished
            PipelineCancelled: should_cancel returned True between polls
        """
        try:
            handle = await self.submit(spec)
        except httpx.HTTPError as e:
            raise RenderError(f"render submission failed: {e}", retriable=True) from e
        logger.info(
            f"[{self.name}] render {handle.render_id} submitted "
            f"({spec.total_frames} frames, {spec.width}x{spec.height})"
        )

        for poll_attempt in range(self.max_polls):
            try:
                status = await self.poll(handle)
            except httpx.HTTPError as e:
                raise RenderError(f"render progress check failed: {e}", retriable=True) from e

            if status.fatal_error:
                detail = "; ".join(status.errors) or "unknown render error"
                logger.error(f"[{self.name}] render {handle.render_id} fatal: {detail}")
                raise RenderError(f"render farm reported a fatal error: {detail}", errors=status.errors)

            if on_progress is not None:
                await on_progress(status.fraction)

            if status.done:
                if not status.output_location:
                    raise RenderError("render finished without an output file")
                logger.info(
                    f"[{self.name}] render {handle.render_id} done after "
                    f"{poll_attempt + 1} polls, fetching {status.output_location}"
                )
                try:
                    return await self.fetch_output(status.output_location)
                except httpx.HTTPError as e:
                    raise RenderError(f"download of rendered video failed: {e}", retriable=True) from e

            if should_cancel is not None and await should_cancel():
                raise PipelineCancelled(f"render {handle.render_id} cancelled")

            await asyncio.sleep(self.poll_interval)

        raise RenderTimeout(
            f"render did not complete after {self.max_polls} polls "
            f"({self.max_polls * self.poll_interval:.0f}s)"
        )
