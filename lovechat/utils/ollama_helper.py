"""Ollama 本地模型辅助函数"""
from typing import AsyncGenerator, Dict, Any
import json
import httpx

from lovechat.config import settings


async def stream_ollama_completion(
    base_url: str,
    model: str,
    messages: list[dict],
    temperature: float = 0.7,
) -> AsyncGenerator[Dict[str, Any], None]:
    """调用 Ollama `/api/chat` 流式接口（NDJSON，每行一个 JSON）"""
    if not base_url:
        yield {"type": "error", "error": "未配置 OLLAMA_BASE_URL"}
        return

    url = base_url.rstrip("/") + "/api/chat"
    payload: Dict[str, Any] = {
        "model": model,
        "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
        "stream": True,
        "options": {"temperature": temperature},
    }

    timeout = httpx.Timeout(settings.PROVIDER_TIMEOUT_SEC, read=None)
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            async with client.stream("POST", url, json=payload) as resp:
                if resp.status_code != 200:
                    text = await resp.aread()
                    yield {"type": "error", "error": f"Ollama 错误: {resp.status_code} {text.decode(errors='ignore')}"}
                    return

                async for line in resp.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        continue

                    if data.get("error"):
                        yield {"type": "error", "error": f"Ollama 错误: {data['error']}"}
                        return

                    message = data.get("message") or {}
                    if message.get("thinking"):
                        yield {"type": "thinking", "content": message["thinking"]}
                    if message.get("content"):
                        yield {"type": "token", "content": message["content"]}

                    if data.get("done"):
                        prompt_tokens = int(data.get("prompt_eval_count") or 0)
                        completion_tokens = int(data.get("eval_count") or 0)
                        if prompt_tokens or completion_tokens:
                            yield {
                                "type": "usage",
                                "usage": {
                                    "prompt_tokens": prompt_tokens,
                                    "completion_tokens": completion_tokens,
                                    "total_tokens": prompt_tokens + completion_tokens,
                                },
                            }
                        break
    except httpx.HTTPError as exc:
        yield {"type": "error", "error": f"Ollama 请求失败: {exc}"}
