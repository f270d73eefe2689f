"""Reelgen - prompt-to-video generation pipeline.

Call validate_dependencies() at startup to report missing external tools
(ffmpeg for thumbnails, the renderer CLI in local render mode).
"""

import logging
import shutil
import subprocess
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from reelgen.config import Settings

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

_INSTALL_HINTS = {
    "ffmpeg": "Ubuntu/Debian: sudo apt-get install ffmpeg | macOS: brew install ffmpeg",
    "npx": "Install Node.js 18+ and run `npm install` in the Remotion project",
}


def _probe_ffmpeg() -> Optional[str]:
    """Return ffmpeg's version line, or None when it is unusable."""
    try:
        result = subprocess.run(
            ["ffmpeg", "-version"], capture_output=True, check=True, text=True
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None
    return result.stdout.splitlines()[0] if result.stdout else "ffmpeg"


def validate_dependencies(app_settings: Optional["Settings"] = None) -> None:
    """Check the external tools this process will call.

    Raises:
        RuntimeError: listing every missing tool with an install hint.
    """
    if app_settings is None:
        from reelgen.config import settings as app_settings
    from reelgen.services.render.registry import is_distributed

    missing: list[str] = []

    version_line = _probe_ffmpeg()
    if version_line is None:
        missing.append("ffmpeg")
    else:
        logger.info(f"ffmpeg validated: {version_line}")

    if not is_distributed(app_settings):
        renderer = app_settings.render.local_command[0]
        if shutil.which(renderer) is None:
            missing.append(renderer)
        else:
            logger.info(f"Local renderer found: {shutil.which(renderer)}")

    if missing:
        hints = "\n".join(f"  {tool}: {_INSTALL_HINTS.get(tool, 'not found on PATH')}" for tool in missing)
        raise RuntimeError(f"Missing external tools:\n{hints}")
