"""Schemas包初始化"""
from lovechat.schemas.thread import (
    ThreadCreate,
    ThreadResponse,
    ThreadListResponse,
    MessageUpsert,
    MessageResponse,
    MessageListResponse,
    ExportThreadResponse,
)
from lovechat.schemas.chat import (
    ChatMessageIn,
    ChatRequest,
)
from lovechat.schemas.stream import (
    ResumeStreamRequest,
    ResumableStreamsResponse,
    MarkInterruptedResponse,
)

__all__ = [
    # Thread schemas
    "ThreadCreate",
    "ThreadResponse",
    "ThreadListResponse",
    "MessageUpsert",
    "MessageResponse",
    "MessageListResponse",
    "ExportThreadResponse",
    # Chat schemas
    "ChatMessageIn",
    "ChatRequest",
    # Stream schemas
    "ResumeStreamRequest",
    "ResumableStreamsResponse",
    "MarkInterruptedResponse",
]
