"""客户端恢复钩子

挂载时查询线程内可恢复的流，按 `f:` 行给出的 messageId 定位消息，
把 `0:` 快照直接写进内存消息表，结束后写回服务端。
内存里的 MessageStore 是唯一数据源，界面不需要重新加载。
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional
import logging
import uuid

import httpx

from lovechat.client.api import LoveChatAPIError, LoveChatClient
from lovechat.services.streaming.protocol import ERROR, FINISH, START, TEXT

logger = logging.getLogger(__name__)

INCOMPLETE_MIN_LENGTH = 50
TERMINAL_PUNCTUATION = (".", "!", "?", ":")


@dataclass
class ChatMessage:
    id: str
    role: str
    content: str = ""
    parts: Optional[List[Dict[str, Any]]] = None
    version: int = 0


class MessageStore:
    """按消息ID索引的有序消息表；每次改写内容 version + 1"""

    def __init__(self, messages: Optional[Iterable[ChatMessage]] = None) -> None:
        self._messages: Dict[str, ChatMessage] = {}
        self._listeners: List[Callable[[ChatMessage], None]] = []
        for msg in messages or []:
            self._messages[msg.id] = msg

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(list(self._messages.values()))

    def get(self, message_id: str) -> Optional[ChatMessage]:
        return self._messages.get(message_id)

    def subscribe(self, listener: Callable[[ChatMessage], None]) -> None:
        self._listeners.append(listener)

    def append(self, message: ChatMessage) -> ChatMessage:
        self._messages[message.id] = message
        self._notify(message)
        return message

    def set_content(self, message_id: str, content: str) -> ChatMessage:
        message = self._messages[message_id]
        message.content = content
        message.parts = [{"type": "text", "text": content}]
        message.version += 1
        self._notify(message)
        return message

    def _notify(self, message: ChatMessage) -> None:
        for listener in self._listeners:
            listener(message)


def looks_incomplete(content: str) -> bool:
    content = (content or "").strip()
    return len(content) < INCOMPLETE_MIN_LENGTH or not content.endswith(TERMINAL_PUNCTUATION)


def find_incomplete_message(messages: Iterable[ChatMessage]) -> Optional[ChatMessage]:
    """从后往前找第一条看起来没写完的 assistant 消息"""
    for message in reversed(list(messages)):
        if message.role == "assistant" and looks_incomplete(message.content):
            return message
    return None


@dataclass
class ResumeResult:
    stream_id: str
    message_id: Optional[str] = None
    content: str = ""
    finished: bool = False
    error: Optional[str] = None


class ResumeHook:
    def __init__(self, client: LoveChatClient, thread_id: str, store: MessageStore) -> None:
        self.client = client
        self.thread_id = thread_id
        self.store = store
        self.is_resuming = False

    def find_incomplete_message(self) -> Optional[ChatMessage]:
        return find_incomplete_message(self.store)

    async def mount(self) -> Optional[ResumeResult]:
        """没有可恢复的流时返回 None"""
        if self.is_resuming:
            return None
        self.is_resuming = True
        try:
            return await self._resume()
        finally:
            self.is_resuming = False

    def _resolve_target(self, message_id: Optional[str]) -> ChatMessage:
        """服务端给出 messageId 时以它为准；没有时才退回启发式"""
        if message_id:
            return self.store.get(message_id) or self.store.append(ChatMessage(id=message_id, role="assistant"))
        target = self.find_incomplete_message()
        if target is not None:
            return target
        return self.store.append(ChatMessage(id=str(uuid.uuid4()), role="assistant"))

    async def _resume(self) -> Optional[ResumeResult]:
        try:
            streams = await self.client.list_resumable_streams(self.thread_id)
        except LoveChatAPIError as exc:
            logger.warning("resumable-streams-failed thread=%s error=%s", self.thread_id, exc)
            return None
        if not streams:
            return None

        result = ResumeResult(stream_id=streams[0])
        target: Optional[ChatMessage] = None
        logger.info("resume-start thread=%s stream=%s", self.thread_id, result.stream_id)

        try:
            async for tag, payload in self.client.iter_resume_stream(result.stream_id):
                if tag == START:
                    if isinstance(payload, dict) and payload.get("messageId"):
                        result.message_id = str(payload["messageId"])
                elif tag == TEXT:
                    # 收到第一行快照才确定目标消息，避免留下空消息
                    if target is None:
                        target = self._resolve_target(result.message_id)
                        result.message_id = target.id
                    # 每行都是完整内容，直接覆盖
                    result.content = str(payload)
                    self.store.set_content(target.id, result.content)
                elif tag == ERROR:
                    result.error = str(payload)
                elif tag == FINISH:
                    result.finished = True
        except LoveChatAPIError as exc:
            logger.warning("resume-rejected stream=%s status=%s detail=%s", result.stream_id, exc.status_code, exc.detail)
            result.error = exc.detail
            return result
        except httpx.HTTPError as exc:
            logger.warning("resume-stream-broken stream=%s error=%s", result.stream_id, exc)
            result.error = str(exc)
            return result

        if target is not None and result.content.strip():
            try:
                await self.client.save_message(
                    self.thread_id,
                    target.id,
                    "assistant",
                    result.content,
                    parts=[{"type": "text", "text": result.content}],
                )
            except LoveChatAPIError as exc:
                logger.warning("resume-save-failed message=%s error=%s", target.id, exc)
        return result
