"""线程与消息API"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from lovechat.crud.thread import thread_crud, message_crud
from lovechat.database import get_chat_session
from lovechat.schemas.thread import (
    ThreadCreate,
    ThreadResponse,
    ThreadListResponse,
    MessageUpsert,
    MessageResponse,
    MessageListResponse,
    ExportThreadResponse,
)
from lovechat.utils.auth import AuthUser, get_current_user

router = APIRouter()


async def get_owned_thread(db: AsyncSession, thread_id: str, user: AuthUser, with_messages: bool = False):
    thread = await thread_crud.get(db, thread_id, user_id=user.id, with_messages=with_messages)
    if not thread:
        raise HTTPException(status_code=404, detail="Thread not found")
    return thread


@router.get("/threads", response_model=ThreadListResponse)
async def get_threads(
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_chat_session),
):
    """获取当前用户的线程列表（最近活跃的在前）"""
    threads = await thread_crud.get_by_user(db, user.id)

    result = []
    for thread in threads:
        message_count = await thread_crud.get_message_count(db, thread.id)
        result.append(
            ThreadResponse(
                id=thread.id,
                title=thread.title,
                created_at=thread.created_at,
                updated_at=thread.updated_at,
                last_message_at=thread.last_message_at,
                message_count=message_count,
            )
        )
    return {"threads": result}


@router.post("/threads", response_model=ThreadResponse, status_code=201)
async def create_thread(
    thread_in: ThreadCreate,
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_chat_session),
):
    """创建线程；客户端可以自带ID"""
    if thread_in.id and await thread_crud.get(db, thread_in.id):
        raise HTTPException(status_code=409, detail="Thread already exists")

    thread = await thread_crud.create(db, user.id, title=thread_in.title, thread_id=thread_in.id)
    return ThreadResponse(
        id=thread.id,
        title=thread.title,
        created_at=thread.created_at,
        updated_at=thread.updated_at,
        last_message_at=thread.last_message_at,
        message_count=0,
    )


@router.get("/threads/{thread_id}/messages", response_model=MessageListResponse)
async def get_thread_messages(
    thread_id: str,
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_chat_session),
):
    await get_owned_thread(db, thread_id, user)
    messages = await message_crud.get_by_thread(db, thread_id)
    return {"messages": [MessageResponse.model_validate(m) for m in messages]}


@router.post("/threads/{thread_id}/messages", response_model=MessageResponse)
async def upsert_thread_message(
    thread_id: str,
    message_in: MessageUpsert,
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_chat_session),
):
    """按ID创建或覆盖消息（恢复流结束后由客户端写回最终内容）"""
    await get_owned_thread(db, thread_id, user)
    try:
        message = await message_crud.upsert(
            db,
            thread_id,
            user.id,
            message_in.role,
            message_in.content,
            message_id=message_in.id,
            parts=message_in.parts,
        )
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    await thread_crud.touch(db, thread_id, user.id)
    return MessageResponse.model_validate(message)


@router.get("/threads/{thread_id}/export", response_model=ExportThreadResponse)
async def export_thread(
    thread_id: str,
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_chat_session),
):
    """导出线程为Markdown格式"""
    thread = await get_owned_thread(db, thread_id, user, with_messages=True)

    markdown_lines = [
        f"# {thread.title}",
        "",
        f"**Created**: {thread.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Last message**: {thread.last_message_at.strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "---",
        "",
    ]

    for msg in thread.messages:
        role_name = {
            "user": "👤 User",
            "assistant": "🤖 Assistant",
            "system": "⚙️ System",
        }.get(msg.role, msg.role)

        markdown_lines.extend([
            f"## {role_name}",
            "",
            msg.content,
            "",
            f"*{msg.created_at.strftime('%Y-%m-%d %H:%M:%S')}*",
            "",
            "---",
            "",
        ])

    return {"markdown": "\n".join(markdown_lines)}
