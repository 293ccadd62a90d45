"""Provider dispatch: one streaming entry point for every model family."""

from __future__ import annotations

from typing import Any, AsyncGenerator, Dict, List

from lovechat.config import settings
from lovechat.utils.models import ModelConfig
from lovechat.utils.ollama_helper import stream_ollama_completion
from lovechat.utils.openai_helper import stream_chat_completion


def base_url_for(config: ModelConfig) -> str:
    return {
        "openai": settings.OPENAI_BASE_URL,
        "google": settings.GOOGLE_BASE_URL,
        "openrouter": settings.OPENROUTER_BASE_URL,
    }[config.provider]


async def stream_completion(
    config: ModelConfig,
    credential: str,
    messages: List[Dict[str, Any]],
) -> AsyncGenerator[Dict[str, Any], None]:
    """Stream events from the provider behind ``config``.

    ``credential`` is the API key, or the base URL for Ollama. Events follow
    the ``{"type": "token" | "thinking" | "usage" | "error"}`` convention.
    """
    if config.provider == "ollama":
        stream = stream_ollama_completion(credential, config.model_id, messages)
    else:
        extra_body = None
        if config.provider == "openrouter" and config.supports_thinking:
            extra_body = {"include_reasoning": True}
        stream = stream_chat_completion(
            base_url_for(config),
            credential,
            config.model_id,
            messages,
            extra_body=extra_body,
        )
    async for event in stream:
        yield event
