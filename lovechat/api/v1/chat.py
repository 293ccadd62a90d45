"""聊天API（流式输出，行协议）.

Review note:
- 带 threadId 且最后一条是用户消息时才建流记录；没有 threadId 的请求只流式返回，不落库。
- 流式生成器不复用请求级 session，进度/收尾写入走 `get_session_maker()`。
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from typing import AsyncGenerator, Optional, Dict, List
import asyncio
import logging
import uuid

from lovechat.config import settings
from lovechat.crud.stream_record import stream_record_crud
from lovechat.crud.thread import thread_crud, message_crud
from lovechat.database import get_chat_session, get_session_maker
from lovechat.schemas.chat import ChatRequest
from lovechat.services.providers import stream_completion
from lovechat.services.search import SerperSearchClient, WebSearchResult, run_web_search
from lovechat.services.streaming.guard import StreamGuard, StreamGuardTripped
from lovechat.services.streaming.helpers import (
    ProviderStreamError,
    assistant_parts,
    save_assistant_message,
    to_prompt_message,
    usage_tokens,
)
from lovechat.services.streaming.protocol import (
    error_line,
    finish_line,
    reasoning_line,
    sources_line,
    start_line,
    text_line,
)
from lovechat.services.streaming.writer import StreamWriter, spawn
from lovechat.utils.auth import AuthUser, get_current_user
from lovechat.utils.models import ModelConfig, ProviderConfigError, resolve_credential, resolve_model
from lovechat.utils.system_prompt import get_system_prompt

router = APIRouter()
logger = logging.getLogger("uvicorn.error")

MESSAGE_ID_HEADER = "X-AI-Message-Id"

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # 禁用nginx缓冲
}


def get_search_client() -> Optional[SerperSearchClient]:
    """未配置 SERPER_API_KEY 时返回 None（测试中可覆盖）"""
    if not settings.SERPER_API_KEY:
        return None
    return SerperSearchClient(
        settings.SERPER_API_KEY,
        settings.SERPER_URL,
        max_results=settings.SEARCH_MAX_RESULTS,
    )


def make_guard() -> StreamGuard:
    return StreamGuard(
        max_response_chars=settings.STREAM_MAX_RESPONSE_CHARS,
        timeout_sec=settings.STREAM_GUARD_TIMEOUT_SEC,
        max_repetitions=settings.STREAM_MAX_REPETITIONS,
    )


def build_provider_messages(
    config: ModelConfig,
    payload: ChatRequest,
    search: Optional[WebSearchResult],
    user: AuthUser,
) -> List[Dict[str, str]]:
    """system prompt + 搜索上下文 + 对话历史（附件转成文字描述）"""
    messages = [
        {
            "role": "system",
            "content": get_system_prompt(
                config,
                web_search_enabled=payload.web_search_enabled,
                has_search_results=bool(search),
                user_email=user.email or None,
            ),
        }
    ]
    if search:
        messages.append({"role": "system", "content": search.context_prompt()})
    for msg in payload.messages:
        if msg.role not in ("user", "assistant"):
            continue
        messages.append(to_prompt_message(msg.role, msg.content, msg.parts))
    return messages


async def generate_chat_stream(
    config: ModelConfig,
    credential: str,
    messages: List[Dict[str, str]],
    message_id: str,
    user: AuthUser,
    session_maker: async_sessionmaker,
    thread_id: Optional[str] = None,
    record_id: Optional[str] = None,
    search: Optional[WebSearchResult] = None,
) -> AsyncGenerator[str, None]:
    """生成聊天流式响应"""
    guard = make_guard()
    writer = StreamWriter(record_id, session_maker, guard=guard) if record_id else None
    full_response = ""
    thinking_response = ""
    usage_data: Optional[Dict] = None

    try:
        yield start_line(message_id, record_id)
        if search:
            yield sources_line(search.to_part()["sources"])

        stream_iter = stream_completion(config, credential, messages)
        try:
            async for event in stream_iter:
                event_type = event.get("type")
                if event_type == "error":
                    raise ProviderStreamError(event.get("error") or "provider error")

                if event_type == "usage":
                    usage_data = event.get("usage")
                    continue

                if event_type == "thinking":
                    chunk = event.get("content", "")
                    thinking_response += chunk
                    yield reasoning_line(chunk)
                    continue

                if event_type != "token":
                    continue
                chunk = event.get("content", "")
                if writer is not None:
                    full_response = writer.append(chunk)
                else:
                    verdict = guard.check(chunk, full_response + chunk)
                    if not verdict.allowed:
                        raise StreamGuardTripped(verdict.reason)
                    full_response += chunk
                yield text_line(chunk)
        finally:
            await stream_iter.aclose()

        if thread_id:
            await save_assistant_message(
                session_maker,
                thread_id,
                user.id,
                message_id,
                full_response,
                assistant_parts(full_response, thinking_response, search.to_part() if search else None),
            )
        if writer is not None:
            await writer.complete(usage_tokens(usage_data))
        logger.info(
            "chat-stream-done model=%s message=%s length=%d",
            config.name,
            message_id,
            len(full_response),
        )
        yield finish_line("stop", usage_data)

    except (asyncio.CancelledError, GeneratorExit):
        # 客户端断开：流记录转为 paused，后续可以从断点恢复
        logger.info("chat-stream-disconnected message=%s stream=%s length=%d", message_id, record_id, len(full_response))
        if writer is not None and not writer.finished:
            spawn(writer.pause())
        return
    except Exception as e:
        logger.warning("chat-stream-failed message=%s stream=%s error=%s", message_id, record_id, e)
        if writer is not None and not writer.finished:
            await writer.fail(str(e))
        yield error_line(str(e))


@router.post("/chat-stream")
async def chat_stream(
    payload: ChatRequest,
    request: Request,
    thread_id: Optional[str] = Query(None, alias="threadId"),
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_chat_session),
    session_maker: async_sessionmaker = Depends(get_session_maker),
    search_client: Optional[SerperSearchClient] = Depends(get_search_client),
):
    """流式聊天接口（行协议）"""
    try:
        config = resolve_model(payload.model)
        credential = resolve_credential(config, request.headers, payload.api_key)
    except ProviderConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    message_id = request.headers.get(MESSAGE_ID_HEADER) or str(uuid.uuid4())
    last = payload.messages[-1]
    record_id = None

    if thread_id:
        thread = await thread_crud.get(db, thread_id, user_id=user.id)
        if not thread:
            raise HTTPException(status_code=404, detail="Thread not found")

        if last.role == "user":
            try:
                await message_crud.upsert(
                    db,
                    thread_id,
                    user.id,
                    "user",
                    last.content,
                    message_id=last.id,
                    parts=last.parts,
                )
            except PermissionError as exc:
                raise HTTPException(status_code=403, detail=str(exc))
            record = await stream_record_crud.create(
                db,
                thread_id,
                message_id,
                user.id,
                payload.model,
                continuation_prompt=last.content,
            )
            record_id = record.id
            logger.info("chat-stream-start thread=%s message=%s stream=%s model=%s", thread_id, message_id, record_id, config.name)

    search = None
    if payload.web_search_enabled and last.role == "user":
        search = await run_web_search(search_client, last.content)

    messages = build_provider_messages(config, payload, search, user)
    # 流式阶段不占用请求级 session
    await db.close()

    return StreamingResponse(
        generate_chat_stream(
            config,
            credential,
            messages,
            message_id,
            user,
            session_maker,
            thread_id=thread_id if record_id else None,
            record_id=record_id,
            search=search,
        ),
        media_type="text/plain; charset=utf-8",
        headers=STREAM_HEADERS,
    )
