"""OpenAI 兼容接口辅助函数（OpenAI / Gemini / OpenRouter 共用）"""
from openai import AsyncOpenAI
from typing import AsyncGenerator, Dict, Any, Optional
from httpx import Timeout

from lovechat.config import settings


def _reasoning_of(delta) -> Optional[str]:
    # 各家兼容层字段名不一致
    for field in ("reasoning_content", "reasoning", "thinking"):
        value = getattr(delta, field, None)
        if value is None:
            extra = getattr(delta, "model_extra", None) or {}
            value = extra.get(field)
        if value:
            return value
    return None


async def stream_chat_completion(
    base_url: str,
    api_key: str,
    model: str,
    messages: list[dict],
    extra_body: Optional[Dict[str, Any]] = None,
) -> AsyncGenerator[Dict[str, Any], None]:
    """
    流式调用 Chat Completion API

    Yields:
        {"type": "token" | "thinking" | "usage" | "error", ...}
    """
    if not api_key:
        yield {"type": "error", "error": "未配置API Key"}
        return

    client_kwargs = {
        "api_key": api_key,
        "timeout": Timeout(settings.PROVIDER_TIMEOUT_SEC, connect=15.0),
    }
    if base_url:
        client_kwargs["base_url"] = base_url

    async with AsyncOpenAI(**client_kwargs) as client:
        try:
            stream = await client.chat.completions.create(
                model=model,
                messages=messages,
                stream=True,
                stream_options={"include_usage": True},
                extra_body=extra_body or None,
            )

            async for chunk in stream:
                if chunk.choices:
                    delta = chunk.choices[0].delta
                    if delta is not None:
                        reasoning = _reasoning_of(delta)
                        if reasoning:
                            yield {"type": "thinking", "content": reasoning}
                        if delta.content:
                            yield {"type": "token", "content": delta.content}
                usage = getattr(chunk, "usage", None)
                if usage and getattr(usage, "total_tokens", None):
                    yield {"type": "usage", "usage": usage.model_dump()}

        except Exception as e:
            yield {"type": "error", "error": f"Provider error: {str(e)}"}
