"""系统提示词工具"""
from typing import Optional

from lovechat.utils.models import ModelConfig


BASE_SYSTEM_PROMPT = """You are LoveChat, an AI assistant that can answer questions and help with tasks.
Be helpful and provide relevant information.
Be respectful and polite in all interactions.
Be engaging and maintain a conversational tone."""

MATH_PROMPT = """Always use LaTeX for mathematical expressions.
Inline math must be wrapped in single dollar signs: $content$
Display math must be wrapped in double dollar signs: $$content$$ on its own line."""

SEARCH_AVAILABLE_PROMPT = """You have access to real-time web search results.
When you use them, start your response with "📊 Web Search Results:" and present the information naturally.
The sources are displayed below your response automatically."""

SEARCH_UNAVAILABLE_PROMPT = """Web search is enabled but no live results are available for this model.
Say so when users ask for current information, and answer from your training data."""

CONTINUATION_SYSTEM_PROMPT = """Your previous response was interrupted before it finished.
Continue naturally from exactly where the partial response stops.
Do not repeat any text that is already written, do not restart, do not summarize it and do not add a preamble.
Output only the continuation."""


def get_system_prompt(
    config: ModelConfig,
    web_search_enabled: bool = False,
    has_search_results: bool = False,
    user_email: Optional[str] = None,
) -> str:
    parts = [BASE_SYSTEM_PROMPT]
    if web_search_enabled:
        parts.append(SEARCH_AVAILABLE_PROMPT if has_search_results else SEARCH_UNAVAILABLE_PROMPT)
    if config.supports_thinking:
        parts.append("For complex tasks, think through the problem step by step before giving your final answer.")
    parts.append(MATH_PROMPT)
    if user_email:
        parts.append(f"Current user: {user_email}")
    return "\n\n".join(parts)


def build_continuation_messages(
    history: list[dict],
    partial_content: str,
    continuation_prompt: Optional[str] = None,
) -> list[dict]:
    """
    构建“从断点继续”的消息列表

    history 是断点之前的对话（不含被中断的 assistant 消息）；
    continuation_prompt 缺省时，以最后一条用户消息作为需要继续回答的问题。
    """
    messages = [{"role": "system", "content": CONTINUATION_SYSTEM_PROMPT}]
    messages.extend(m for m in history if m.get("role") in ("user", "assistant"))

    prompt = (continuation_prompt or "").strip()
    if prompt and not (messages[-1]["role"] == "user" and messages[-1]["content"] == prompt):
        messages.append({"role": "user", "content": prompt})
    if messages[-1]["role"] != "user":
        messages.append({"role": "user", "content": "Continue from where you left off."})

    if partial_content:
        messages.append({"role": "assistant", "content": partial_content})
        messages.append({
            "role": "user",
            "content": (
                "Continue your previous response from exactly where it stops. "
                "The last characters written were:\n"
                f"{partial_content[-200:]}"
            ),
        })
    return messages
