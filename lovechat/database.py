"""数据库连接和会话管理

Review note:
- 流式写入使用独立 session（`chat_session_maker()`），不复用请求级 session，
  因为进度写入在后台任务中并发执行。
"""
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from typing import AsyncGenerator
import logging

from lovechat.config import settings

logger = logging.getLogger("uvicorn.error")


def _engine_kwargs(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    kwargs = {"connect_args": {"check_same_thread": False}}
    # 内存库只有一个连接可用；文件库让流式写入拿到各自的连接
    if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
        kwargs["poolclass"] = StaticPool
    return kwargs


chat_engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    **_engine_kwargs(settings.DATABASE_URL),
)

chat_session_maker = async_sessionmaker(
    chat_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_chat_session() -> AsyncGenerator[AsyncSession, None]:
    """获取对话数据库会话的依赖注入函数"""
    async with chat_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_maker() -> async_sessionmaker:
    """流式生成器使用的 session 工厂（测试中可覆盖）"""
    return chat_session_maker


async def init_db() -> None:
    """初始化数据库表"""
    from lovechat.models import Base

    async with chat_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("数据库表创建成功")
