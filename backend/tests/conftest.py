"""Shared fixtures: a temporary database, a local artifact store and fake providers.

Nothing here reaches the network; the render backend is scripted so each
test controls exactly what the "farm" reports on every poll.
"""

import uuid
from typing import Optional

import pytest

from reelgen.config import Settings
from reelgen.db import build_engine, build_session_factory, init_database
from reelgen.db.models import DEFAULT_CREATOR_ID
from reelgen.pipeline.context import PipelineContext
from reelgen.schemas.script import ColorPalette, OnScreenText, ScriptScene, VideoScriptSchema
from reelgen.services.artifact_store import LocalArtifactStore
from reelgen.services.code_writer import CodeWriter
from reelgen.services.image_generator import GeneratedImage, ImageGenerator
from reelgen.services.job_store import JobStore
from reelgen.services.render.base import RenderBackend, RenderHandle, RenderSpec, RenderStatus
from reelgen.services.script_writer import ScriptWriter
from reelgen.services.voice_synthesizer import SpeechResult, VoiceSynthesizer, WordTiming

VALID_CODE = """const { AbsoluteFill, Sequence } = Remotion;
const MyVideo = () => React.createElement(AbsoluteFill, null,
  React.createElement(Sequence, { from: 0, durationInFrames: 30 }));
return MyVideo;"""

FAKE_MP4 = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 64


def make_script(total: float = 60.0) -> VideoScriptSchema:
    return VideoScriptSchema(
        total_duration=total,
        voiceover_script="Compression makes files smaller. Here is how.",
        scenes=[
            ScriptScene(
                id="hook",
                duration=total / 3,
                voiceover="Compression makes files smaller.",
                on_screen_text=OnScreenText(headline="Smaller Files"),
                visual_direction="Bold title over dark background",
                mood="intrigue",
            ),
            ScriptScene(
                id="solution",
                duration=total * 2 / 3,
                voiceover="Here is how.",
                on_screen_text=OnScreenText(headline="How It Works", subhead="Patterns repeat"),
                visual_direction="Diagram of repeated patterns",
                mood="educational",
            ),
        ],
        color_palette=ColorPalette(primary="#6366f1", secondary="#7c3aed", accent="#22d3ee"),
        image_prompts=["abstract data streams, cinematic", "zipped archive, cinematic"],
    )


# ---------------------------------------------------------------------------
# Fake providers
# ---------------------------------------------------------------------------

class FakeScriptWriter(ScriptWriter):
    def __init__(self, script: Optional[VideoScriptSchema] = None, error: Optional[Exception] = None):
        self.script = script or make_script()
        self.error = error
        self.prompts: list[str] = []

    async def write(self, prompt, *, system_prompt=None):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.script


class FakeImageGenerator(ImageGenerator):
    def __init__(self, errors: Optional[list[Exception]] = None):
        # Raised in order, one per generate() call, before succeeding
        self.errors = list(errors or [])
        self.calls = 0

    async def generate(self, prompt, aspect_ratio):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return GeneratedImage(data=f"img:{prompt}".encode(), content_type="image/png")


class FakeVoice(VoiceSynthesizer):
    def __init__(self):
        self.voice_ids: list[str] = []

    async def synthesize(self, text, voice_id):
        self.voice_ids.append(voice_id)
        return SpeechResult(
            audio=b"ID3fake-audio",
            duration=2.5,
            words=[WordTiming(word="Compression", start=0.0, end=0.8)],
        )


class FakeCodeWriter(CodeWriter):
    def __init__(self, replies: Optional[list[str]] = None):
        self.replies = list(replies or [])
        self.prompts: list[str] = []

    async def write(self, prompt, *, system_prompt):
        self.prompts.append(prompt)
        if self.replies:
            return self.replies.pop(0)
        return VALID_CODE


class ScriptedRenderBackend(RenderBackend):
    """Reports a fixed sequence of poll results, then repeats the last one."""

    name = "scripted"

    def __init__(self, statuses: Optional[list[RenderStatus]] = None, output: bytes = FAKE_MP4):
        super().__init__(poll_interval=0, max_polls=50)
        self.statuses = statuses or [
            RenderStatus(done=False, fraction=0.25),
            RenderStatus(done=False, fraction=0.55),
            RenderStatus(done=True, fraction=1.0, output_location="mem://out.mp4"),
        ]
        self.output = output
        self.specs: list[RenderSpec] = []
        self.polls = 0
        self.on_poll = None

    async def submit(self, spec):
        self.specs.append(spec)
        return RenderHandle(render_id=uuid.uuid4().hex)

    async def poll(self, handle):
        index = min(self.polls, len(self.statuses) - 1)
        self.polls += 1
        if self.on_poll is not None:
            await self.on_poll(self.polls)
        return self.statuses[index]

    async def fetch_output(self, location):
        return self.output


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def app_settings(tmp_path):
    return Settings(
        storage={
            "database_url": f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
            "artifact_dir": str(tmp_path / "artifacts"),
            "artifact_base_url": "http://test/api/artifacts",
        },
        pipeline={"stage_retry_base_delay": 0},
        render={"poll_interval_seconds": 0, "tmp_dir": str(tmp_path / "render")},
    )


@pytest.fixture
async def session_factory(app_settings):
    engine = build_engine(app_settings.storage.database_url)
    await init_database(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def job_store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def artifacts(app_settings):
    return LocalArtifactStore(app_settings.storage.artifact_dir, app_settings.storage.artifact_base_url)


@pytest.fixture
def providers():
    """Mutable bag of fakes; tests swap or reconfigure members before running."""
    return {
        "script_writer": FakeScriptWriter(),
        "image_generator": FakeImageGenerator(),
        "voice": FakeVoice(),
        "code_writer": FakeCodeWriter(),
        "renderer": ScriptedRenderBackend(),
    }


@pytest.fixture
def ctx(app_settings, job_store, artifacts, providers):
    return PipelineContext(
        app_settings=app_settings,
        job_store=job_store,
        artifacts=artifacts,
        **providers,
    )


@pytest.fixture(autouse=True)
def fake_thumbnail(monkeypatch):
    """Skip ffmpeg: every rendered video yields a tiny JPEG thumbnail."""
    async def extract(video, tmp_dir=None, offset_seconds=1.0):
        return b"\xff\xd8\xff\xe0thumb"

    monkeypatch.setattr("reelgen.pipeline.rendering.extract_thumbnail", extract)


@pytest.fixture
def new_job(job_store):
    """Factory for queued jobs owned by the default creator."""
    async def create(**overrides):
        fields = dict(
            creator_id=DEFAULT_CREATOR_ID,
            prompt="60-second explainer about compression",
            style="modern",
            target_duration_seconds=60,
            aspect_ratio="9:16",
            version=1,
        )
        fields.update(overrides)
        return await job_store.create_job(**fields)

    return create
