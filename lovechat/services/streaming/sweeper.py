"""后台对账任务：长时间没有进度的 streaming 记录改为 paused

进程崩溃、连接静默断开时，记录会停在 streaming；定期扫描让它们重新变得可恢复。
"""

from __future__ import annotations

from datetime import timedelta
import asyncio
import logging

from sqlalchemy.ext.asyncio import async_sessionmaker

from lovechat.crud.stream_record import stream_record_crud

logger = logging.getLogger(__name__)


async def sweep_once(session_maker: async_sessionmaker, stale_after_sec: float) -> int:
    async with session_maker() as db:
        count = await stream_record_crud.sweep_stale(db, timedelta(seconds=stale_after_sec))
    if count:
        logger.info("stream-sweep paused=%d stale_after=%ss", count, stale_after_sec)
    return count


async def run_sweeper(
    session_maker: async_sessionmaker,
    interval_sec: float,
    stale_after_sec: float,
) -> None:
    """循环执行直到被取消；单次失败只记录日志"""
    logger.info("stream-sweeper-started interval=%ss stale_after=%ss", interval_sec, stale_after_sec)
    while True:
        try:
            await sweep_once(session_maker, stale_after_sec)
        except Exception:
            logger.exception("stream-sweep-failed")
        await asyncio.sleep(interval_sec)
