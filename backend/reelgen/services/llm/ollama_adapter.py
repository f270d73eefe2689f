"""Ollama adapter for the LLM abstraction layer.

Structured output uses format='json' plus a schema instruction in the system
prompt; Ollama Cloud does not reliably enforce a full JSON schema passed as
the format parameter. Code completion sends no format so the model can reply
with plain JavaScript.
"""

import logging
from typing import Optional, Type

import httpx
from ollama import AsyncClient, ResponseError
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from reelgen.services.llm.base import LLMAdapter, schema_instruction, strip_code_fences

logger = logging.getLogger(__name__)

# Schema validation errors are ValueErrors; a fresh sample usually fixes them
_RETRIABLE = (ResponseError, ValueError, httpx.TransportError)


class OllamaAdapter(LLMAdapter):
    """LLM adapter backed by a local or cloud Ollama instance.

    The "ollama/" prefix is stripped from model ids before they reach the
    ollama library, and every call passes stream=False.
    """

    def __init__(
        self,
        model_id: str,
        base_url: str = "http://localhost:11434",
        api_key: Optional[str] = None,
    ) -> None:
        self.model = model_id.removeprefix("ollama/")
        self.base_url = base_url
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = AsyncClient(host=base_url, headers=headers)

    async def _chat(self, messages: list[dict], options: dict, json_mode: bool) -> str:
        kwargs = {"format": "json"} if json_mode else {}
        response = await self._client.chat(
            model=self.model,
            messages=messages,
            options=options,
            stream=False,
            **kwargs,
        )
        content = response.message.content or ""
        logger.debug(f"ollama {self.model}: {len(content)} chars (json={json_mode})")
        return content

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
        system = system_prompt + schema_suffix if system_prompt else schema_suffix.lstrip()
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ]

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception_type(_RETRIABLE),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                raw = await self._chat(messages, {"temperature": temperature}, json_mode=True)
                return schema.model_validate_json(strip_code_fences(raw))

    async def complete(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 8192,
    ) -> str:
        messages = [{"role": "system", "content": system_prompt}] if system_prompt else []
        messages.append({"role": "user", "content": prompt})
        return await self._chat(
            messages,
            {"temperature": temperature, "num_predict": max_tokens},
            json_mode=False,
        )

    async def close(self) -> None:
        # AsyncClient wraps an httpx.AsyncClient
        inner = getattr(self._client, "_client", None)
        if isinstance(inner, httpx.AsyncClient) and not inner.is_closed:
            await inner.aclose()
