"""可恢复流API：列出、恢复、标记中断.

Review note:
- 恢复前先做 paused -> streaming 的条件更新，两个标签页同时恢复时后到的拿到 409。
- mark-interrupted 也接受浏览器 beacon（text/plain 裸ID + cookie 鉴权）。
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from typing import Optional
import json
import logging

from lovechat.api.v1.chat import STREAM_HEADERS, make_guard
from lovechat.config import settings
from lovechat.crud.stream_record import (
    StreamOwnershipError,
    StreamRecordNotFound,
    StreamStateError,
    stream_record_crud,
)
from lovechat.database import get_chat_session, get_session_maker
from lovechat.schemas.stream import (
    MarkInterruptedResponse,
    ResumableStreamsResponse,
    ResumeStreamRequest,
)
from lovechat.services.streaming.resume import (
    ResumeConflictError,
    claim_stream,
    load_history,
    resume_stream_lines,
)
from lovechat.utils.auth import AuthUser, get_current_user, get_optional_user
from lovechat.utils.models import ProviderConfigError, resolve_credential, resolve_model

router = APIRouter()
logger = logging.getLogger("uvicorn.error")


@router.get("/resumable-streams", response_model=ResumableStreamsResponse)
async def get_resumable_streams(
    thread_id: str = Query(..., alias="threadId", min_length=1),
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_chat_session),
):
    """线程内当前用户 streaming / paused 的流ID"""
    ids = await stream_record_crud.list_resumable_ids(db, thread_id, user.id)
    return {"streams": ids}


@router.post("/resume-stream")
async def resume_stream(
    payload: ResumeStreamRequest,
    request: Request,
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_chat_session),
    session_maker: async_sessionmaker = Depends(get_session_maker),
):
    """从断点继续生成，每行 `0:` 携带到目前为止的完整内容"""
    try:
        record = await stream_record_crud.get_owned(db, payload.stream_id, user.id)
    except StreamRecordNotFound:
        raise HTTPException(status_code=404, detail="Stream not found")
    except StreamOwnershipError:
        raise HTTPException(status_code=403, detail="Access denied")

    # claim 之前先解析模型，缺 key 时记录保持 paused
    try:
        config = resolve_model(record.model)
        credential = resolve_credential(config, request.headers, payload.api_key)
    except ProviderConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    try:
        record = await claim_stream(db, payload.stream_id, user.id)
    except StreamRecordNotFound:
        raise HTTPException(status_code=404, detail="Stream not found")
    except StreamOwnershipError:
        raise HTTPException(status_code=403, detail="Access denied")
    except StreamStateError as exc:
        raise HTTPException(status_code=400, detail=f"Stream is not paused (status: {exc.status})")
    except ResumeConflictError:
        raise HTTPException(status_code=409, detail="Stream is already being resumed")

    try:
        history = await load_history(db, record)
    except Exception:
        # 已经 claim 成 streaming，放回 paused，否则要等对账任务
        logger.exception("resume-history-failed stream=%s", record.id)
        async with session_maker() as session:
            await stream_record_crud.pause(session, record.id)
        raise HTTPException(status_code=500, detail="Failed to load conversation history")
    await db.close()

    return StreamingResponse(
        resume_stream_lines(
            record,
            config,
            credential,
            session_maker,
            history,
            settings.RESUME_MAX_DURATION_SEC,
            guard=make_guard(),
        ),
        media_type="text/plain; charset=utf-8",
        headers=STREAM_HEADERS,
    )


def parse_message_id(raw: bytes) -> str:
    """`{"messageId": ...}`、JSON 字符串或 text/plain 裸ID"""
    text = raw.decode("utf-8", errors="ignore").strip()
    if not text:
        return ""
    try:
        body = json.loads(text)
    except ValueError:
        return text
    if isinstance(body, dict):
        return str(body.get("messageId") or "").strip()
    if isinstance(body, str):
        return body.strip()
    if isinstance(body, (int, float)):
        return text
    return ""


@router.post("/mark-interrupted", response_model=MarkInterruptedResponse)
async def mark_interrupted(
    request: Request,
    user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_chat_session),
):
    """把消息下仍在 streaming 的记录标记为 paused（可重复调用）"""
    message_id = parse_message_id(await request.body())
    if not message_id:
        raise HTTPException(status_code=400, detail="messageId is required")

    if user is not None:
        records = await stream_record_crud.get_by_message(db, message_id)
        if records and not any(r.user_id == user.id for r in records):
            logger.info("mark-interrupted-denied message=%s user=%s", message_id, user.id)
            raise HTTPException(status_code=403, detail="Access denied")
        updated = await stream_record_crud.mark_interrupted(db, message_id, user_id=user.id)
    else:
        updated = await stream_record_crud.mark_interrupted(db, message_id)

    logger.info("mark-interrupted message=%s updated=%d authenticated=%s", message_id, updated, user is not None)
    return {"success": True, "updated": updated, "messageId": message_id}
