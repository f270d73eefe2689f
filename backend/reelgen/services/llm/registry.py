"""Model id to adapter routing.

"ollama/<model>" goes to the configured Ollama endpoint. Everything else,
with or without an "openrouter/" prefix, is treated as an OpenRouter slug.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from reelgen.services.llm.base import LLMAdapter

if TYPE_CHECKING:
    from reelgen.config import Settings

logger = logging.getLogger(__name__)

OLLAMA_PREFIX = "ollama/"


def get_adapter(model_id: str, app_settings: Optional["Settings"] = None) -> LLMAdapter:
    """Build a fresh adapter for ``model_id``; the caller owns and closes it."""
    if app_settings is None:
        from reelgen.config import settings as app_settings
    providers = app_settings.providers

    if model_id.startswith(OLLAMA_PREFIX):
        from reelgen.services.llm.ollama_adapter import OllamaAdapter

        logger.debug(f"{model_id} -> ollama at {providers.ollama_endpoint}")
        return OllamaAdapter(
            model_id,
            base_url=providers.ollama_endpoint,
            api_key=providers.ollama_api_key,
        )

    from reelgen.services.llm.openrouter_adapter import OpenRouterAdapter

    logger.debug(f"{model_id} -> openrouter")
    return OpenRouterAdapter(
        model_id,
        base_url=providers.openrouter_base_url,
        api_key=providers.openrouter_api_key,
    )
