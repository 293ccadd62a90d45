"""可恢复流记录的CRUD操作

Review note:
- 所有状态迁移都是 `UPDATE ... WHERE status IN (:expected)` 的条件更新，
  以受影响行数判断是否成功；不做悲观锁，也不做版本号校验。
- 进度写入只在 `streaming` 状态下生效，迟到的写入不会覆盖已暂停/完成的记录。
- complete / fail / pause 接受 `from_statuses`；持有生成的 writer 传 streaming + paused，
  生成途中被 mark-interrupted 的记录仍由它收尾。
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, case
from typing import List, Optional, Sequence, Union
from datetime import datetime, timedelta
import uuid

from lovechat.models.stream_record import StreamRecord, StreamStatus

RESUMABLE_STATUSES = (StreamStatus.STREAMING.value, StreamStatus.PAUSED.value)
WRITER_OWNED_STATUSES = RESUMABLE_STATUSES


class StreamRecordNotFound(LookupError):
    """Raised when a stream record does not exist."""


class StreamOwnershipError(PermissionError):
    """Raised when a stream record belongs to another user."""


class StreamStateError(ValueError):
    """Raised when a stream record is not in the state an operation requires."""

    def __init__(self, stream_id: str, status: str, expected: str):
        super().__init__(f"stream {stream_id} is {status}, expected {expected}")
        self.stream_id = stream_id
        self.status = status
        self.expected = expected


def new_stream_id() -> str:
    return f"stream_{uuid.uuid4().hex}"


class CRUDStreamRecord:
    """流记录CRUD操作"""

    async def create(
        self,
        db: AsyncSession,
        thread_id: str,
        message_id: str,
        user_id: str,
        model: str,
        continuation_prompt: Optional[str] = None,
        initial_content: str = "",
    ) -> StreamRecord:
        """创建流记录（初始状态 streaming）"""
        now = datetime.utcnow()
        db_obj = StreamRecord(
            id=new_stream_id(),
            thread_id=thread_id,
            message_id=message_id,
            user_id=user_id,
            status=StreamStatus.STREAMING.value,
            partial_content=initial_content,
            continuation_prompt=continuation_prompt,
            model=model,
            estimated_completion=0.0,
            total_tokens=0,
            created_at=now,
            last_updated_at=now,
        )
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def get(
        self,
        db: AsyncSession,
        stream_id: str,
        user_id: Optional[str] = None,
    ) -> Optional[StreamRecord]:
        """获取单个流记录；传入 user_id 时只返回该用户的记录"""
        query = select(StreamRecord).where(StreamRecord.id == stream_id)
        if user_id is not None:
            query = query.where(StreamRecord.user_id == user_id)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_owned(self, db: AsyncSession, stream_id: str, user_id: str) -> StreamRecord:
        """获取流记录并校验归属"""
        record = await self.get(db, stream_id)
        if record is None:
            raise StreamRecordNotFound(stream_id)
        if record.user_id != user_id:
            raise StreamOwnershipError(stream_id)
        return record

    async def get_by_message(self, db: AsyncSession, message_id: str) -> List[StreamRecord]:
        """获取某条消息的全部流记录"""
        result = await db.execute(
            select(StreamRecord)
            .where(StreamRecord.message_id == message_id)
            .order_by(StreamRecord.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_resumable_ids(
        self,
        db: AsyncSession,
        thread_id: str,
        user_id: str,
    ) -> List[str]:
        """线程内可恢复（streaming / paused）的流记录ID，新的在前"""
        result = await db.execute(
            select(StreamRecord.id)
            .where(
                StreamRecord.thread_id == thread_id,
                StreamRecord.user_id == user_id,
                StreamRecord.status.in_(RESUMABLE_STATUSES),
            )
            .order_by(StreamRecord.created_at.desc())
        )
        return list(result.scalars().all())

    async def _transition(
        self,
        db: AsyncSession,
        stream_id: str,
        expected: Union[str, Sequence[str]],
        values: dict,
        user_id: Optional[str] = None,
    ) -> bool:
        statuses = (expected,) if isinstance(expected, str) else tuple(expected)
        query = (
            update(StreamRecord)
            .where(StreamRecord.id == stream_id, StreamRecord.status.in_(statuses))
            .values(last_updated_at=datetime.utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if user_id is not None:
            query = query.where(StreamRecord.user_id == user_id)
        result = await db.execute(query)
        await db.commit()
        return result.rowcount > 0

    async def update_progress(
        self,
        db: AsyncSession,
        stream_id: str,
        content: str,
        estimated_completion: float,
    ) -> bool:
        """写入进度；只在 streaming 状态下生效，完成度取 max(旧值, 新值)"""
        return await self._transition(
            db,
            stream_id,
            StreamStatus.STREAMING.value,
            {
                "partial_content": content,
                "estimated_completion": case(
                    (StreamRecord.estimated_completion > estimated_completion, StreamRecord.estimated_completion),
                    else_=estimated_completion,
                ),
            },
        )

    async def complete(
        self,
        db: AsyncSession,
        stream_id: str,
        content: str,
        tokens: int = 0,
        from_statuses: Sequence[str] = (StreamStatus.STREAMING.value,),
    ) -> bool:
        """streaming -> completed，累加 token 用量"""
        return await self._transition(
            db,
            stream_id,
            from_statuses,
            {
                "status": StreamStatus.COMPLETED.value,
                "partial_content": content,
                "estimated_completion": 1.0,
                "completed_at": datetime.utcnow(),
                "total_tokens": StreamRecord.total_tokens + max(int(tokens or 0), 0),
                "error_message": None,
            },
        )

    async def fail(
        self,
        db: AsyncSession,
        stream_id: str,
        error_message: str = "",
        from_statuses: Sequence[str] = (StreamStatus.STREAMING.value,),
    ) -> bool:
        """streaming -> failed，不改动已保存的内容"""
        return await self._transition(
            db,
            stream_id,
            from_statuses,
            {
                "status": StreamStatus.FAILED.value,
                "error_message": (error_message or "")[:2000] or None,
            },
        )

    async def pause(
        self,
        db: AsyncSession,
        stream_id: str,
        content: Optional[str] = None,
        from_statuses: Sequence[str] = (StreamStatus.STREAMING.value,),
    ) -> bool:
        """streaming -> paused（客户端断开）；传入 content 时一并写入最新内容"""
        values = {"status": StreamStatus.PAUSED.value}
        if content is not None:
            values["partial_content"] = content
        return await self._transition(db, stream_id, from_statuses, values)

    async def claim_for_resume(self, db: AsyncSession, stream_id: str, user_id: str) -> bool:
        """paused -> streaming 的原子比较交换；并发恢复时只有一个调用方成功"""
        return await self._transition(
            db,
            stream_id,
            StreamStatus.PAUSED.value,
            {"status": StreamStatus.STREAMING.value},
            user_id=user_id,
        )

    async def mark_interrupted(
        self,
        db: AsyncSession,
        message_id: str,
        user_id: Optional[str] = None,
    ) -> int:
        """把消息下所有 streaming 记录标记为 paused，返回更新行数（重复调用返回 0）"""
        query = (
            update(StreamRecord)
            .where(
                StreamRecord.message_id == message_id,
                StreamRecord.status == StreamStatus.STREAMING.value,
            )
            .values(status=StreamStatus.PAUSED.value, last_updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if user_id is not None:
            query = query.where(StreamRecord.user_id == user_id)
        result = await db.execute(query)
        await db.commit()
        return result.rowcount or 0

    async def sweep_stale(self, db: AsyncSession, older_than: timedelta) -> int:
        """把长时间无进度的 streaming 记录标记为 paused"""
        cutoff = datetime.utcnow() - older_than
        result = await db.execute(
            update(StreamRecord)
            .where(
                StreamRecord.status == StreamStatus.STREAMING.value,
                StreamRecord.last_updated_at < cutoff,
            )
            .values(status=StreamStatus.PAUSED.value, last_updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount or 0


# 创建实例
stream_record_crud = CRUDStreamRecord()
