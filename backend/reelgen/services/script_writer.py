"""Script writing provider: prompt text in, structured VideoScriptSchema out."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from reelgen.schemas.script import VideoScriptSchema
from reelgen.services.llm.base import LLMAdapter

logger = logging.getLogger(__name__)


class ScriptWriter(ABC):
    """Turns a scripting prompt into a validated script."""

    @abstractmethod
    async def write(self, prompt: str, *, system_prompt: Optional[str] = None) -> VideoScriptSchema:
        ...

    async def close(self) -> None:
        """Release any held client resources."""


class LLMScriptWriter(ScriptWriter):
    """Script writer backed by any LLMAdapter with structured output."""

    def __init__(self, adapter: LLMAdapter, temperature: float = 0.6):
        self.adapter = adapter
        self.temperature = temperature

    async def write(self, prompt: str, *, system_prompt: Optional[str] = None) -> VideoScriptSchema:
        script = await self.adapter.generate_text(
            prompt,
            VideoScriptSchema,
            temperature=self.temperature,
            system_prompt=system_prompt,
        )
        logger.debug(f"LLM script: {len(script.scenes)} scenes, {script.total_duration}s")
        return script

    async def close(self) -> None:
        await self.adapter.close()
