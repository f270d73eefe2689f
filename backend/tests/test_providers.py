"""Provider clients against mocked HTTP services: LLM chat, images and speech."""

import base64
import json

import httpx
import pytest

from reelgen.config import Settings
from reelgen.schemas.script import VideoScriptSchema
from reelgen.services.image_generator import HttpImageGenerator
from reelgen.services.llm import get_adapter, strip_code_fences
from reelgen.services.llm.ollama_adapter import OllamaAdapter
from reelgen.services.llm.openrouter_adapter import OpenRouterAdapter
from reelgen.services.voice_synthesizer import HttpVoiceSynthesizer, words_from_alignment

from conftest import make_script


def _mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# LLM
# ---------------------------------------------------------------------------

def test_get_adapter_routes_by_prefix():
    app_settings = Settings(providers={"openrouter_api_key": "k"})
    assert isinstance(get_adapter("ollama/llama3.1", app_settings), OllamaAdapter)
    assert isinstance(get_adapter("openrouter/anthropic/claude-opus-4.6", app_settings), OpenRouterAdapter)
    assert isinstance(get_adapter("anthropic/claude-opus-4.6", app_settings), OpenRouterAdapter)


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


@pytest.mark.asyncio
async def test_openrouter_structured_generation():
    requests = []
    script_json = make_script().model_dump_json()

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        return httpx.Response(
            200, json={"choices": [{"message": {"content": f"```json\n{script_json}\n```"}}]}
        )

    adapter = OpenRouterAdapter(
        "openrouter/anthropic/claude-opus-4.6", "https://llm.test/api/v1", client=_mock_client(handler)
    )
    script = await adapter.generate_text("Explain compression", VideoScriptSchema, system_prompt="Be brief.")

    assert isinstance(script, VideoScriptSchema)
    assert len(script.scenes) == 2
    body = requests[0]
    assert body["model"] == "anthropic/claude-opus-4.6"
    assert body["response_format"] == {"type": "json_object"}
    assert body["messages"][0]["content"].startswith("Be brief.")
    assert "conform to this schema" in body["messages"][0]["content"]
    await adapter.close()


@pytest.mark.asyncio
async def test_openrouter_client_error_is_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, json={"error": "bad key"})

    adapter = OpenRouterAdapter("openrouter/x/y", client=_mock_client(handler))
    with pytest.raises(httpx.HTTPStatusError):
        await adapter.complete("hello")
    assert len(calls) == 1


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_image_generator_downloads_first_image():
    submitted = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            submitted.append(json.loads(request.content))
            return httpx.Response(
                200, json={"images": [{"url": "https://cdn.test/i.png", "content_type": "image/png"}]}
            )
        return httpx.Response(200, content=b"png-bytes")

    generator = HttpImageGenerator("https://img.test", "fal-ai/flux/schnell", client=_mock_client(handler))
    image = await generator.generate("abstract data streams", "16:9")

    assert image.data == b"png-bytes"
    assert image.content_type == "image/png"
    assert submitted == [{"prompt": "abstract data streams", "image_size": "landscape_16_9", "num_images": 1}]


@pytest.mark.asyncio
async def test_image_generator_empty_reply():
    generator = HttpImageGenerator(
        "https://img.test", "m", client=_mock_client(lambda r: httpx.Response(200, json={"images": []}))
    )
    with pytest.raises(ValueError, match="no images"):
        await generator.generate("p", "9:16")


# ---------------------------------------------------------------------------
# Speech
# ---------------------------------------------------------------------------

def test_words_from_alignment():
    chars = list("Hi  there")
    starts = [0.0, 0.1, 0.2, 0.25, 0.3, 0.35, 0.4, 0.45, 0.5]
    ends = [0.1, 0.2, 0.25, 0.3, 0.35, 0.4, 0.45, 0.5, 0.6]

    words = words_from_alignment(chars, starts, ends)

    assert [(w.word, w.start, w.end) for w in words] == [("Hi", 0.0, 0.2), ("there", 0.3, 0.6)]


@pytest.mark.asyncio
async def test_voice_synthesizer_parses_audio_and_timings():
    paths = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(
            200,
            json={
                "audio_base64": base64.b64encode(b"mp3-bytes").decode(),
                "alignment": {
                    "characters": list("Go now"),
                    "character_start_times_seconds": [0.0, 0.1, 0.2, 0.3, 0.4, 0.5],
                    "character_end_times_seconds": [0.1, 0.2, 0.3, 0.4, 0.5, 1.25],
                },
            },
        )

    voice = HttpVoiceSynthesizer("https://tts.test", "eleven_multilingual_v2", client=_mock_client(handler))
    result = await voice.synthesize("Go now", "voice-1")

    assert paths == ["/v1/text-to-speech/voice-1/with-timestamps"]
    assert result.audio == b"mp3-bytes"
    assert result.duration == 1.25
    assert [w.word for w in result.words] == ["Go", "now"]
