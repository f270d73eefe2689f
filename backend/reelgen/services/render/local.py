"""Single-process renderer driving the Remotion CLI.

Each render gets its own scratch directory holding the input props and the
output file. The directory is removed on every exit path, including a
failed or killed render.
"""

import asyncio
import json
import logging
import re
import shutil
import tempfile
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from reelgen.errors import PipelineCancelled, RenderError
from reelgen.orchestrator.state import render_progress_step
from reelgen.services.render.base import (
    CancelCheck,
    ProgressCallback,
    RenderBackend,
    RenderHandle,
    RenderSpec,
    RenderStatus,
)

logger = logging.getLogger(__name__)

# "Rendered 120/900", "Encoded 450/900", ...
_FRAME_PROGRESS_RE = re.compile(r"(\d+)\s*/\s*(\d+)")

_LOCAL_SCHEME = "local://"

# Trailing renderer output kept for error messages
_OUTPUT_TAIL_LINES = 20


@contextmanager
def scratch_dir(base: Optional[Path] = None) -> Iterator[Path]:
    """Create a private temp directory and remove it when the block exits."""
    if base is not None:
        base.mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix="reelgen_render_", dir=base))
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        logger.debug(f"Removed render scratch dir {path}")


def parse_frame_progress(line: str) -> Optional[float]:
    """Extract a completion fraction from a renderer progress line."""
    match = _FRAME_PROGRESS_RE.search(line)
    if not match:
        return None
    done, total = int(match.group(1)), int(match.group(2))
    if total <= 0:
        return None
    return min(done / total, 1.0)


class LocalRenderBackend(RenderBackend):
    """Bundles and renders in a local subprocess."""

    name = "local"

    def __init__(
        self,
        command: list[str],
        entry_point: str,
        *,
        composition_id: str = "DynamicVideo",
        timeout_ms: int = 240_000,
        tmp_dir: Optional[Path] = None,
        poll_interval: float = 0.5,
    ):
        super().__init__(poll_interval=poll_interval, max_polls=1_000_000)
        self.command = list(command)
        self.entry_point = entry_point
        self.composition_id = composition_id
        self.timeout_ms = timeout_ms
        self.tmp_dir = tmp_dir
        # render_id -> (task, last reported fraction)
        self._jobs: dict[str, tuple[asyncio.Task, list[float]]] = {}

    def build_command(self, spec: RenderSpec, props_path: Path, output_path: Path) -> list[str]:
        return [
            *self.command,
            self.entry_point,
            self.composition_id,
            str(output_path),
            f"--props={props_path}",
            f"--codec={spec.codec}",
            f"--image-format={spec.image_format}",
            f"--frames=0-{spec.total_frames - 1}",
            f"--width={spec.width}",
            f"--height={spec.height}",
            f"--timeout={self.timeout_ms}",
        ]

    async def _run(
        self,
        spec: RenderSpec,
        on_progress: Optional[ProgressCallback] = None,
        should_cancel: Optional[CancelCheck] = None,
    ) -> bytes:
        with scratch_dir(self.tmp_dir) as workdir:
            props_path = workdir / "props.json"
            output_path = workdir / "out.mp4"
            props_path.write_text(json.dumps(spec.input_props()))

            args = self.build_command(spec, props_path, output_path)
            logger.info(f"[local] {' '.join(args[:3])} ... ({spec.total_frames} frames)")
            try:
                proc = await asyncio.create_subprocess_exec(
                    *args,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                )
            except OSError as e:
                raise RenderError(f"could not start local renderer: {e}") from e

            tail: list[str] = []
            last_step = -1
            try:
                async for raw in proc.stdout:
                    line = raw.decode(errors="ignore").rstrip()
                    if not line:
                        continue
                    tail = (tail + [line])[-_OUTPUT_TAIL_LINES:]
                    fraction = parse_frame_progress(line)
                    if fraction is None:
                        continue
                    if on_progress is not None:
                        await on_progress(fraction)
                    step = render_progress_step(fraction)
                    if step != last_step:
                        last_step = step
                        if should_cancel is not None and await should_cancel():
                            raise PipelineCancelled("local render cancelled")
                returncode = await proc.wait()
            finally:
                if proc.returncode is None:
                    proc.kill()
                    await proc.wait()

            if returncode != 0:
                detail = "\n".join(tail[-5:]) or f"exit code {returncode}"
                raise RenderError(f"local renderer failed: {detail}", errors=tail)
            if not output_path.is_file():
                raise RenderError("local renderer exited without writing an output file")

            data = await asyncio.to_thread(output_path.read_bytes)
            logger.info(f"[local] rendered {len(data)} bytes")
            return data

    async def render(
        self,
        spec: RenderSpec,
        on_progress: Optional[ProgressCallback] = None,
        should_cancel: Optional[CancelCheck] = None,
    ) -> bytes:
        """Render synchronously; progress comes from the renderer's own output."""
        return await self._run(spec, on_progress, should_cancel)

    # -- poll-style access, for callers that drive renders by handle ----------

    async def submit(self, spec: RenderSpec) -> RenderHandle:
        render_id = uuid.uuid4().hex
        fraction = [0.0]

        async def _track(value: float) -> None:
            fraction[0] = value

        task = asyncio.create_task(self._run(spec, _track))
        self._jobs[render_id] = (task, fraction)
        return RenderHandle(render_id=render_id)

    async def poll(self, handle: RenderHandle) -> RenderStatus:
        if handle.render_id not in self._jobs:
            raise RenderError(f"unknown local render {handle.render_id}")
        task, fraction = self._jobs[handle.render_id]
        if not task.done():
            return RenderStatus(done=False, fraction=fraction[0])
        error = task.exception()
        if error is not None:
            self._jobs.pop(handle.render_id, None)
            errors = getattr(error, "errors", None) or [str(error)]
            return RenderStatus(done=True, fraction=fraction[0], fatal_error=True, errors=errors)
        return RenderStatus(
            done=True, fraction=1.0, output_location=f"{_LOCAL_SCHEME}{handle.render_id}"
        )

    async def fetch_output(self, location: str) -> bytes:
        render_id = location.removeprefix(_LOCAL_SCHEME)
        entry = self._jobs.pop(render_id, None)
        if entry is None or not entry[0].done():
            raise RenderError(f"no finished local render at {location}")
        return entry[0].result()

    async def close(self) -> None:
        for task, _ in self._jobs.values():
            task.cancel()
        self._jobs.clear()
