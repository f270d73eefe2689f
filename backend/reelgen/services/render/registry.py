"""Render backend selection.

Decided once per process from configuration: a render-farm service URL plus
a function name selects the distributed backend, anything else the local one.
"""

import logging

from reelgen.config import Settings
from reelgen.services.render.base import RenderBackend

logger = logging.getLogger(__name__)


def is_distributed(app_settings: Settings) -> bool:
    render = app_settings.render
    return bool(render.service_url and render.function_name)


def select_render_backend(app_settings: Settings) -> RenderBackend:
    """Build the render backend for this process."""
    render = app_settings.render
    if is_distributed(app_settings):
        from reelgen.services.render.distributed import DistributedRenderBackend

        logger.info(
            f"Render mode: distributed ({render.service_url}, function {render.function_name})"
        )
        return DistributedRenderBackend(
            render.service_url,
            render.function_name,
            api_key=render.service_key,
            serve_url=render.serve_url,
            composition_id=render.composition_id,
            poll_interval=render.poll_interval_seconds,
            max_polls=render.max_polls,
        )

    from reelgen.services.render.local import LocalRenderBackend

    logger.info(f"Render mode: local ({' '.join(render.local_command)})")
    return LocalRenderBackend(
        render.local_command,
        render.local_entry_point,
        composition_id=render.composition_id,
        timeout_ms=render.local_timeout_ms,
        tmp_dir=render.tmp_dir,
    )
