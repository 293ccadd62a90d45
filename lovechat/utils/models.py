"""模型路由表：模型名 -> 供应商、模型ID、API Key 请求头"""
from dataclasses import dataclass
from typing import Mapping, Optional

from lovechat.config import settings

OLLAMA_PREFIX = "ollama:"


class ProviderConfigError(ValueError):
    """Raised when a model or its credentials cannot be resolved."""


@dataclass(frozen=True)
class ModelConfig:
    name: str
    provider: str  # openai, google, openrouter, ollama
    model_id: str
    header_key: str
    supports_thinking: bool = False


OPENAI_MODELS = {
    "gpt-4o-mini": "gpt-4o-mini",
    "gpt-4o": "gpt-4o",
    "gpt-4.1": "gpt-4.1",
    "gpt-4.1-nano": "gpt-4.1-nano",
    "gpt-4.5": "gpt-4.5-preview",
    "o3-mini": "o3-mini",
    "o4-mini": "o4-mini",
    "o3": "o3",
    "o3-pro": "o3-pro",
}
OPENAI_REASONING_MODELS = {"o3-mini", "o4-mini", "o3", "o3-pro"}

GOOGLE_MODELS = {
    "gemini-2.0-flash": "gemini-2.0-flash",
    "gemini-2.0-flash-lite": "gemini-2.0-flash-lite",
    "gemini-2.5-flash": "gemini-2.5-flash",
    "gemini-2.5-flash-thinking": "gemini-2.5-flash",
    "gemini-2.5-pro": "gemini-2.5-pro",
}
GOOGLE_THINKING_MODELS = {"gemini-2.5-flash-thinking", "gemini-2.5-pro"}

# Ollama 中已知会输出思考内容的模型前缀
OLLAMA_THINKING_MODELS = (
    "deepseek-r1",
    "qwen3",
    "qwen2",
    "llama3",
    "mistral",
    "phi3",
)

HEADER_KEYS = {
    "openai": "X-OpenAI-API-Key",
    "google": "X-Google-API-Key",
    "openrouter": "X-OpenRouter-API-Key",
    "ollama": "X-Ollama-Base-URL",
}


def resolve_model(name: str) -> ModelConfig:
    """把前端模型名解析成供应商配置"""
    name = (name or "").strip()
    if not name:
        raise ProviderConfigError("model is required")

    if name.startswith(OLLAMA_PREFIX):
        model_id = name[len(OLLAMA_PREFIX):]
        if not model_id:
            raise ProviderConfigError("ollama model name is empty")
        return ModelConfig(
            name=name,
            provider="ollama",
            model_id=model_id,
            header_key=HEADER_KEYS["ollama"],
            supports_thinking=model_id.startswith(OLLAMA_THINKING_MODELS),
        )
    if name in OPENAI_MODELS:
        return ModelConfig(
            name=name,
            provider="openai",
            model_id=OPENAI_MODELS[name],
            header_key=HEADER_KEYS["openai"],
            supports_thinking=name in OPENAI_REASONING_MODELS,
        )
    if name in GOOGLE_MODELS:
        return ModelConfig(
            name=name,
            provider="google",
            model_id=GOOGLE_MODELS[name],
            header_key=HEADER_KEYS["google"],
            supports_thinking=name in GOOGLE_THINKING_MODELS,
        )
    if "/" in name:
        # OpenRouter 统一使用 vendor/model 命名
        return ModelConfig(
            name=name,
            provider="openrouter",
            model_id=name,
            header_key=HEADER_KEYS["openrouter"],
            supports_thinking="reasoning" in name or "deepseek-r1" in name,
        )
    raise ProviderConfigError(f"unsupported model: {name}")


def resolve_credential(
    config: ModelConfig,
    headers: Mapping[str, str],
    body_key: Optional[str] = None,
) -> str:
    """取 API Key（Ollama 为 base URL）：请求头 > 请求体 > .env 默认值"""
    value = (headers.get(config.header_key) or headers.get(config.header_key.lower()) or "").strip()
    if not value and config.provider != "ollama":
        value = (body_key or "").strip()
    if not value:
        value = {
            "openai": settings.OPENAI_API_KEY,
            "google": settings.GOOGLE_API_KEY,
            "openrouter": settings.OPENROUTER_API_KEY,
            "ollama": settings.OLLAMA_BASE_URL,
        }[config.provider]
    if not value:
        raise ProviderConfigError(f"{config.provider} API key is required")
    return value
