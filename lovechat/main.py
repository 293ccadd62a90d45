"""FastAPI应用主文件.

Review note:
- lifespan 中启动流记录对账任务，关闭时取消。
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager, suppress
import asyncio
import logging
import os

from lovechat.config import settings
from lovechat.database import chat_session_maker, init_db
from lovechat.services.streaming.sweeper import run_sweeper

logger = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info("启动 %s 后端...", settings.APP_NAME)

    # 确保必要的目录存在
    if settings.DATABASE_URL.startswith("sqlite") and "./data/" in settings.DATABASE_URL:
        os.makedirs("data", exist_ok=True)

    # 初始化数据库
    await init_db()
    logger.info("数据库初始化完成")

    sweeper = asyncio.create_task(
        run_sweeper(
            chat_session_maker,
            settings.STREAM_SWEEP_INTERVAL_SEC,
            settings.STREAM_STALE_AFTER_SEC,
        )
    )

    yield

    # 关闭时执行
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    logger.info("关闭 %s 后端...", settings.APP_NAME)


# 创建FastAPI应用
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="LoveChat 可恢复流式对话API",
    lifespan=lifespan,
)

# 配置CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    """根路径"""
    return {
        "message": f"Welcome to {settings.APP_NAME} API",
        "version": settings.APP_VERSION,
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """健康检查"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION
    }


# 导入并注册路由
from lovechat.api.v1 import chat, streams, threads
app.include_router(chat.router, prefix="/api/v1", tags=["chat"])
app.include_router(streams.router, prefix="/api/v1", tags=["streams"])
app.include_router(threads.router, prefix="/api/v1", tags=["threads"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "lovechat.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
