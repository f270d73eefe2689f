"""Code writing provider: returns the raw LLM reply for a composition prompt."""

from abc import ABC, abstractmethod

from reelgen.services.llm.base import LLMAdapter


class CodeWriter(ABC):
    @abstractmethod
    async def write(self, prompt: str, *, system_prompt: str) -> str:
        """Return the model's raw reply (may still contain fences or prose)."""
        ...

    async def close(self) -> None:
        """Release any held client resources."""


class LLMCodeWriter(CodeWriter):
    def __init__(self, adapter: LLMAdapter, temperature: float = 0.3, max_tokens: int = 12_000):
        self.adapter = adapter
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def write(self, prompt: str, *, system_prompt: str) -> str:
        return await self.adapter.complete(
            prompt,
            system_prompt=system_prompt,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

    async def close(self) -> None:
        await self.adapter.close()
