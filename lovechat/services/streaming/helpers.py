"""chat-stream 与 resume-stream 共用的小工具"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional
import logging

from sqlalchemy.ext.asyncio import async_sessionmaker

from lovechat.crud.thread import message_crud, thread_crud

logger = logging.getLogger(__name__)


class ProviderStreamError(RuntimeError):
    """Raised when a provider reports an error event mid-stream."""


def usage_tokens(usage: Optional[Dict[str, Any]]) -> int:
    if not usage:
        return 0
    total = usage.get("total_tokens")
    if total:
        return int(total)
    return int(usage.get("prompt_tokens") or 0) + int(usage.get("completion_tokens") or 0)


def _format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def describe_attachments(parts: Optional[Iterable[Any]]) -> str:
    """把 file_attachments 分片描述成模型可读的文本"""
    lines = []
    for part in parts or []:
        if not isinstance(part, dict) or part.get("type") != "file_attachments":
            continue
        for item in part.get("attachments") or []:
            name = str(item.get("fileName") or "file")
            ext = name.rsplit(".", 1)[-1].upper() if "." in name else "FILE"
            size = int(item.get("fileSize") or 0)
            lines.append(f"[{ext} File: {name}, Size: {_format_size(size)}]")
    return "\n".join(lines)


def to_prompt_message(role: str, content: str, parts: Optional[Iterable[Any]] = None) -> Dict[str, str]:
    content = content or ""
    files = describe_attachments(parts)
    if files:
        content = f"{content}\n\nAttached files:\n{files}" if content else f"Attached files:\n{files}"
    return {"role": role, "content": content}


def assistant_parts(
    content: str,
    reasoning: str = "",
    sources: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    parts: List[Dict[str, Any]] = []
    if reasoning:
        parts.append({"type": "reasoning", "reasoning": reasoning})
    parts.append({"type": "text", "text": content})
    if sources:
        parts.append(sources)
    return parts


async def save_assistant_message(
    session_maker: async_sessionmaker,
    thread_id: str,
    user_id: str,
    message_id: str,
    content: str,
    parts: Optional[List[Dict[str, Any]]] = None,
) -> bool:
    """保存/覆盖 assistant 消息并刷新线程时间；失败只记日志（流记录里仍有内容）"""
    try:
        async with session_maker() as db:
            await message_crud.upsert(
                db,
                thread_id,
                user_id,
                "assistant",
                content,
                message_id=message_id,
                parts=parts or assistant_parts(content),
            )
            await thread_crud.touch(db, thread_id, user_id)
    except Exception:
        logger.exception("assistant-message-persist-failed thread=%s message=%s", thread_id, message_id)
        return False
    return True
