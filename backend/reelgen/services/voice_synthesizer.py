"""Text-to-speech provider with word-level timestamps.

HttpVoiceSynthesizer talks to an ElevenLabs-style endpoint:
POST {api_url}/v1/text-to-speech/{voice_id}/with-timestamps returns base64
MP3 audio plus per-character alignment, which is folded into words.
"""

import base64
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import BaseModel, Field
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


def _is_retriable(exc: BaseException) -> bool:
    """Return True only for transient errors worth retrying (429, 5xx, network)."""
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    return isinstance(exc, httpx.TransportError)


class WordTiming(BaseModel):
    word: str
    start: float
    end: float


class SpeechResult(BaseModel):
    audio: bytes
    content_type: str = "audio/mpeg"
    duration: float
    words: list[WordTiming] = Field(default_factory=list)


def words_from_alignment(
    characters: list[str], starts: list[float], ends: list[float]
) -> list[WordTiming]:
    """Group character-level alignment into whitespace-separated words."""
    words: list[WordTiming] = []
    current = ""
    word_start = 0.0
    word_end = 0.0
    for char, start, end in zip(characters, starts, ends):
        if char.isspace():
            if current:
                words.append(WordTiming(word=current, start=word_start, end=word_end))
                current = ""
            continue
        if not current:
            word_start = start
        current += char
        word_end = end
    if current:
        words.append(WordTiming(word=current, start=word_start, end=word_end))
    return words


class VoiceSynthesizer(ABC):
    @abstractmethod
    async def synthesize(self, text: str, voice_id: str) -> SpeechResult:
        ...

    async def close(self) -> None:
        """Release any held resources."""


class HttpVoiceSynthesizer(VoiceSynthesizer):
    def __init__(
        self,
        api_url: str,
        model_id: str,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.model_id = model_id
        self._api_key = api_key
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"xi-api-key": self._api_key} if self._api_key else {}
            self._client = httpx.AsyncClient(
                headers=headers,
                timeout=httpx.Timeout(180.0, connect=30.0),
            )
        return self._client

    @retry(
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=2, min=2, max=30),
        retry=retry_if_exception(_is_retriable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def synthesize(self, text: str, voice_id: str) -> SpeechResult:
        url = f"{self.api_url}/v1/text-to-speech/{voice_id}/with-timestamps"
        logger.info(f"POST {url} ({len(text)} chars)")
        response = await self.client.post(
            url,
            json={"text": text, "model_id": self.model_id},
        )
        response.raise_for_status()
        data = response.json()

        audio_b64 = data.get("audio_base64")
        if not audio_b64:
            raise ValueError("speech service returned no audio")
        alignment = data.get("alignment") or {}
        ends = alignment.get("character_end_times_seconds") or []
        words = words_from_alignment(
            alignment.get("characters") or [],
            alignment.get("character_start_times_seconds") or [],
            ends,
        )
        duration = float(ends[-1]) if ends else 0.0
        return SpeechResult(audio=base64.b64decode(audio_b64), duration=duration, words=words)

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
