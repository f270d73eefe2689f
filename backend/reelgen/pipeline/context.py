"""Collaborators a pipeline run needs, built once per process.

The render backend and artifact store are chosen here from configuration,
so stages and the orchestrator only ever see the abstract interfaces.
"""

import logging
from typing import Awaitable, Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reelgen.config import Settings
from reelgen.errors import StageError
from reelgen.services.artifact_store import ArtifactStore, build_artifact_store
from reelgen.services.code_writer import CodeWriter, LLMCodeWriter
from reelgen.services.image_generator import HttpImageGenerator, ImageGenerator
from reelgen.services.job_store import JobStore
from reelgen.services.llm import get_adapter
from reelgen.services.render import RenderBackend, select_render_backend
from reelgen.services.script_writer import LLMScriptWriter, ScriptWriter
from reelgen.services.voice_synthesizer import HttpVoiceSynthesizer, VoiceSynthesizer

logger = logging.getLogger(__name__)

# Stage-local completion fraction in [0, 1]
StageProgress = Callable[[float], Awaitable[None]]


async def no_progress(fraction: float) -> None:
    return None


def stage_error_from(stage: str, exc: BaseException) -> StageError:
    """Wrap a provider exception as a StageError, keeping transient ones retriable."""
    if isinstance(exc, StageError):
        return exc
    retriable = isinstance(exc, httpx.TransportError) or (
        isinstance(exc, httpx.HTTPStatusError)
        and (exc.response.status_code == 429 or exc.response.status_code >= 500)
    )
    return StageError(stage, f"{type(exc).__name__}: {exc}", retriable=retriable)


class PipelineContext:
    """Job store, artifact store, render backend and stage providers."""

    def __init__(
        self,
        *,
        app_settings: Settings,
        job_store: JobStore,
        artifacts: ArtifactStore,
        renderer: RenderBackend,
        script_writer: ScriptWriter,
        image_generator: ImageGenerator,
        voice: VoiceSynthesizer,
        code_writer: CodeWriter,
    ):
        self.settings = app_settings
        self.job_store = job_store
        self.artifacts = artifacts
        self.renderer = renderer
        self.script_writer = script_writer
        self.image_generator = image_generator
        self.voice = voice
        self.code_writer = code_writer

    async def resolve_url(self, stage: str, storage_id: str) -> str:
        """Resolve an artifact id, failing the stage if it no longer resolves."""
        url = await self.artifacts.get_url(storage_id)
        if not url:
            raise StageError(stage, f"artifact {storage_id} could not be resolved to a URL")
        return url

    async def resolve_urls(self, stage: str, storage_ids: Optional[list[str]]) -> list[str]:
        return [await self.resolve_url(stage, storage_id) for storage_id in storage_ids or []]

    async def close(self) -> None:
        for resource in (
            self.renderer,
            self.artifacts,
            self.image_generator,
            self.voice,
            self.script_writer,
            self.code_writer,
        ):
            await resource.close()


def build_context(
    app_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> PipelineContext:
    """Wire the production collaborators from configuration."""
    providers = app_settings.providers
    models = app_settings.models

    ctx = PipelineContext(
        app_settings=app_settings,
        job_store=JobStore(session_factory),
        artifacts=build_artifact_store(app_settings),
        renderer=select_render_backend(app_settings),
        script_writer=LLMScriptWriter(get_adapter(models.script_llm, app_settings)),
        image_generator=HttpImageGenerator(
            providers.image_api_url, models.image_model, providers.image_api_key
        ),
        voice=HttpVoiceSynthesizer(
            providers.tts_api_url, providers.tts_model, providers.tts_api_key
        ),
        code_writer=LLMCodeWriter(get_adapter(models.code_llm, app_settings)),
    )
    logger.info(
        f"Pipeline context ready (script={models.script_llm}, code={models.code_llm}, "
        f"renderer={ctx.renderer.name})"
    )
    return ctx
