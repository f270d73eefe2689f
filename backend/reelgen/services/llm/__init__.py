"""LLM provider abstraction layer.

Provides a unified async interface for structured and free-form text
generation across LLM providers (OpenRouter, Ollama).

Usage:
    from reelgen.services.llm import get_adapter, LLMAdapter

    adapter = get_adapter("openrouter/anthropic/claude-opus-4.6")
    result = await adapter.generate_text(prompt, MySchema)

    adapter = get_adapter("ollama/llama3.1")
    code = await adapter.complete(prompt, system_prompt=SYSTEM)
"""

from reelgen.services.llm.base import LLMAdapter, strip_code_fences
from reelgen.services.llm.registry import get_adapter

__all__ = ["LLMAdapter", "get_adapter", "strip_code_fences"]
