"""Resume orchestrator: continue a paused stream from its saved partial content.

The claim is a compare-and-swap on ``paused -> streaming``; when two tabs race
for the same record exactly one of them gets to generate. The body opens
with an ``f:`` line naming the message being continued, then streams ``0:``
lines carrying the whole content so far, starting with the stored partial, so
a client can overwrite its copy on every line.
"""

from __future__ import annotations

from typing import Any, AsyncGenerator, Dict, List, Optional
import asyncio
import json
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lovechat.crud.stream_record import StreamStateError, stream_record_crud
from lovechat.crud.thread import message_crud
from lovechat.models.stream_record import StreamRecord, StreamStatus
from lovechat.services.providers import stream_completion
from lovechat.services.streaming.guard import StreamGuard
from lovechat.services.streaming.helpers import (
    ProviderStreamError,
    assistant_parts,
    save_assistant_message,
    to_prompt_message,
    usage_tokens,
)
from lovechat.services.streaming.protocol import error_line, finish_line, start_line, text_line
from lovechat.services.streaming.writer import StreamWriter, spawn
from lovechat.utils.models import ModelConfig
from lovechat.utils.system_prompt import build_continuation_messages

logger = logging.getLogger(__name__)


class ResumeConflictError(RuntimeError):
    """Raised when another caller claimed the paused stream first."""

    def __init__(self, stream_id: str):
        super().__init__(f"stream {stream_id} was resumed by another request")
        self.stream_id = stream_id


class ResumeTimeoutError(TimeoutError):
    """Raised when a resumed generation exceeds its time budget."""


async def claim_stream(db: AsyncSession, stream_id: str, user_id: str) -> StreamRecord:
    """校验归属与状态，然后原子地把 paused 改为 streaming

    Raises:
        StreamRecordNotFound / StreamOwnershipError / StreamStateError / ResumeConflictError
    """
    record = await stream_record_crud.get_owned(db, stream_id, user_id)
    if record.status != StreamStatus.PAUSED.value:
        raise StreamStateError(stream_id, record.status, StreamStatus.PAUSED.value)
    if not await stream_record_crud.claim_for_resume(db, stream_id, user_id):
        raise ResumeConflictError(stream_id)
    record.status = StreamStatus.STREAMING.value
    logger.info("resume-claimed stream=%s message=%s", stream_id, record.message_id)
    return record


async def load_history(db: AsyncSession, record: StreamRecord) -> List[Dict[str, str]]:
    """被中断消息之前的对话（不含该消息本身）"""
    history = []
    for msg in await message_crud.get_by_thread(db, record.thread_id):
        if msg.id == record.message_id:
            break
        if msg.role not in ("user", "assistant"):
            continue
        parts = None
        if msg.parts:
            try:
                parts = json.loads(msg.parts)
            except ValueError:
                parts = None
        history.append(to_prompt_message(msg.role, msg.content, parts))
    return history


async def _next_event(events: AsyncGenerator[Dict[str, Any], None]) -> Optional[Dict[str, Any]]:
    try:
        return await events.__anext__()
    except StopAsyncIteration:
        return None


async def resume_stream_lines(
    record: StreamRecord,
    config: ModelConfig,
    credential: str,
    session_maker: async_sessionmaker,
    history: List[Dict[str, str]],
    max_duration_sec: float,
    guard: Optional[StreamGuard] = None,
) -> AsyncGenerator[str, None]:
    """已 claim 的记录 -> 协议行；断开时记录回到 paused，出错时 failed"""
    partial = record.partial_content or ""
    writer = StreamWriter(record.id, session_maker, initial_content=partial, guard=guard)
    messages = build_continuation_messages(history, partial, record.continuation_prompt)
    usage: Optional[Dict[str, Any]] = None
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max_duration_sec

    try:
        yield start_line(record.message_id, record.id)
        yield text_line(writer.content)

        events = stream_completion(config, credential, messages)
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise ResumeTimeoutError(f"resume exceeded {max_duration_sec}s")
                try:
                    event = await asyncio.wait_for(_next_event(events), timeout=remaining)
                except asyncio.TimeoutError:
                    raise ResumeTimeoutError(f"resume exceeded {max_duration_sec}s")
                if event is None:
                    break

                event_type = event.get("type")
                if event_type == "error":
                    raise ProviderStreamError(event.get("error") or "provider error")
                if event_type == "usage":
                    usage = event.get("usage")
                    continue
                if event_type != "token":
                    continue
                yield text_line(writer.append(event.get("content") or ""))
        finally:
            await events.aclose()

        await save_assistant_message(
            session_maker,
            record.thread_id,
            record.user_id,
            record.message_id,
            writer.content,
            assistant_parts(writer.content),
        )
        await writer.complete(usage_tokens(usage))
        logger.info(
            "resume-completed stream=%s resumed_from=%d generated=%d",
            record.id,
            len(partial),
            len(writer.generated),
        )
        yield finish_line("stop", usage)

    except (asyncio.CancelledError, GeneratorExit):
        # 客户端断开：记录回到 paused，等下一次恢复
        logger.info("resume-disconnected stream=%s length=%d", record.id, len(writer.content))
        if not writer.finished:
            spawn(writer.pause())
        return
    except Exception as exc:
        logger.warning("resume-failed stream=%s error=%s", record.id, exc)
        if not writer.finished:
            await writer.fail(str(exc))
        yield error_line(str(exc))
