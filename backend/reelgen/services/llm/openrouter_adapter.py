"""OpenRouter adapter for the LLM abstraction layer.

Talks to the OpenAI-compatible chat completions endpoint over httpx.
Transient HTTP failures (429, 5xx, network) are retried with exponential
backoff; anything else propagates immediately.
"""

import logging
from typing import Optional, Type

import httpx
from pydantic import BaseModel
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from reelgen.services.llm.base import LLMAdapter, schema_instruction, strip_code_fences

logger = logging.getLogger(__name__)


def _is_retriable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    return isinstance(exc, httpx.TransportError)


class OpenRouterAdapter(LLMAdapter):
    """LLM adapter backed by OpenRouter chat completions.

    Strips the "openrouter/" prefix; the remainder is the OpenRouter model
    slug (e.g. "anthropic/claude-opus-4.6").
    """

    def __init__(
        self,
        model_id: str,
        base_url: str = "https://openrouter.ai/api/v1",
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._model = model_id.removeprefix("openrouter/")
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = httpx.AsyncClient(
                headers=headers,
                timeout=httpx.Timeout(300.0, connect=30.0),
            )
        return self._client

    async def _chat(
        self,
        messages: list[dict],
        *,
        temperature: float,
        max_tokens: int,
        max_retries: int = 3,
        json_mode: bool = False,
    ) -> str:
        payload: dict = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        @retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception(_is_retriable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async def _call() -> str:
            response = await self.client.post(f"{self._base_url}/chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()
            choices = data.get("choices") or []
            if not choices:
                raise ValueError(f"OpenRouter returned no choices for {self._model}")
            return choices[0]["message"].get("content") or ""

        return await _call()

    async def generate_text(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> BaseModel:
        schema_suffix = schema_instruction(schema)
        system = (system_prompt + schema_suffix) if system_prompt else schema_suffix.lstrip()
        raw = await self._chat(
            [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            max_tokens=8192,
            max_retries=max_retries,
            json_mode=True,
        )
        return schema.model_validate_json(strip_code_fences(raw))

    async def complete(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 8192,
    ) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return await self._chat(messages, temperature=temperature, max_tokens=max_tokens)

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
