"""Common interface for chat-model providers.

Two call shapes are needed by the pipeline: a JSON reply parsed into a
pydantic model (scripting) and a free-form text reply (composition code).
"""

import json
from abc import ABC, abstractmethod
from typing import Optional, Type

from pydantic import BaseModel

_FENCE = "```"


def strip_code_fences(raw: str) -> str:
    """Drop one surrounding markdown fence and its language tag, if any."""
    text = raw.strip()
    if not text.startswith(_FENCE):
        return text
    head, sep, body = text.partition("\n")
    if not sep:
        return head.strip("`")
    if body.endswith(_FENCE):
        body = body[: -len(_FENCE)].rstrip()
    return body


def schema_instruction(schema: Type[BaseModel]) -> str:
    """System-prompt suffix describing the JSON object the reply must be."""
    rendered = json.dumps(schema.model_json_schema(), indent=2)
    return (
        "\n\nReply with exactly one JSON object and nothing else: no prose, "
        "no markdown fences. The object must conform to this schema:\n"
        f"{rendered}\n"
        "String fields hold plain strings, never arrays."
    )


class LLMAdapter(ABC):
    """A chat model reachable through one provider API."""

    @abstractmethod
    async def generate_text(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> BaseModel:
        """Ask for a JSON reply and validate it into ``schema``.

        Transport errors and replies that fail validation are retried up to
        ``max_retries`` times in total before the last error propagates.
        """

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 8192,
    ) -> str:
        """Return the model's raw text reply."""

    async def close(self) -> None:
        pass
