"""线程和消息的CRUD操作"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from sqlalchemy.orm import selectinload
from typing import Optional, List
from datetime import datetime
import json
import uuid

from lovechat.models.thread import Thread
from lovechat.models.message import Message


class CRUDThread:
    """线程CRUD操作"""

    async def get(
        self,
        db: AsyncSession,
        thread_id: str,
        user_id: Optional[str] = None,
        with_messages: bool = False,
    ) -> Optional[Thread]:
        """获取单个线程；传入 user_id 时只返回该用户的线程"""
        query = select(Thread).where(Thread.id == thread_id)
        if user_id is not None:
            query = query.where(Thread.user_id == user_id)
        if with_messages:
            query = query.options(selectinload(Thread.messages))

        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_user(self, db: AsyncSession, user_id: str) -> List[Thread]:
        """获取用户的所有线程"""
        result = await db.execute(
            select(Thread)
            .where(Thread.user_id == user_id)
            .order_by(Thread.last_message_at.desc())
        )
        return list(result.scalars().all())

    async def create(
        self,
        db: AsyncSession,
        user_id: str,
        title: Optional[str] = None,
        thread_id: Optional[str] = None,
    ) -> Thread:
        """创建线程"""
        db_obj = Thread(
            id=thread_id or str(uuid.uuid4()),
            user_id=user_id,
            title=title or f"New chat - {datetime.now().strftime('%Y-%m-%d %H:%M')}",
        )
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def touch(self, db: AsyncSession, thread_id: str, user_id: str) -> None:
        """更新线程的 last_message_at"""
        await db.execute(
            update(Thread)
            .where(Thread.id == thread_id, Thread.user_id == user_id)
            .values(last_message_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        await db.commit()

    async def get_message_count(self, db: AsyncSession, thread_id: str) -> int:
        """获取线程的消息数量"""
        result = await db.execute(
            select(func.count(Message.id))
            .where(Message.thread_id == thread_id)
        )
        return result.scalar() or 0


class CRUDMessage:
    """消息CRUD操作"""

    async def get(self, db: AsyncSession, message_id: str) -> Optional[Message]:
        """获取单个消息"""
        result = await db.execute(
            select(Message).where(Message.id == message_id)
        )
        return result.scalar_one_or_none()

    async def get_by_thread(self, db: AsyncSession, thread_id: str) -> List[Message]:
        """获取线程的所有消息"""
        result = await db.execute(
            select(Message)
            .where(Message.thread_id == thread_id)
            .order_by(Message.created_at)
        )
        return list(result.scalars().all())

    async def upsert(
        self,
        db: AsyncSession,
        thread_id: str,
        user_id: str,
        role: str,
        content: str,
        message_id: Optional[str] = None,
        parts: Optional[list] = None,
    ) -> Message:
        """按ID创建或覆盖消息；已存在时只更新内容与 parts"""
        message_id = message_id or str(uuid.uuid4())
        parts_json = json.dumps(parts, ensure_ascii=False) if parts else None

        db_obj = await self.get(db, message_id)
        if db_obj is not None:
            if db_obj.thread_id != thread_id or db_obj.user_id != user_id:
                raise PermissionError(f"message {message_id} belongs to another thread or user")
            db_obj.content = content
            if parts_json is not None:
                db_obj.parts = parts_json
        else:
            db_obj = Message(
                id=message_id,
                thread_id=thread_id,
                user_id=user_id,
                role=role,
                content=content,
                parts=parts_json,
            )
            db.add(db_obj)

        await db.commit()
        await db.refresh(db_obj)
        return db_obj


# 创建实例
thread_crud = CRUDThread()
message_crud = CRUDMessage()
