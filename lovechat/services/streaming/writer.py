"""Stream Writer: accumulate provider deltas and persist progress fire-and-forget.

Progress snapshots go through a single background task per writer that always
writes the newest pending snapshot. Writes therefore reach the database in
generation order, never block the outbound HTTP stream, and coalesce when the
database is slower than the provider. Persistence failures are logged and
swallowed; the terminal transitions (complete / fail / pause) first drain the
pending snapshot. They also apply to a record the client already marked
``paused`` while this writer was still generating.
"""

from __future__ import annotations

from typing import Awaitable, Optional, Set, Tuple
import asyncio
import logging

from sqlalchemy.ext.asyncio import async_sessionmaker

from lovechat.crud.stream_record import WRITER_OWNED_STATUSES, stream_record_crud
from lovechat.services.streaming.guard import StreamGuard, StreamGuardTripped

logger = logging.getLogger(__name__)

AVERAGE_RESPONSE_CHARS = 500
MAX_ESTIMATE_WHILE_ACTIVE = 0.95

_background_tasks: Set[asyncio.Task] = set()


def estimate_completion(content: str, expected_length: Optional[int] = None) -> float:
    """Heuristic progress in [0, 1]; stays below 1.0 until the record completes."""
    if expected_length:
        return min(len(content) / expected_length, 1.0)
    return min(len(content) / AVERAGE_RESPONSE_CHARS, MAX_ESTIMATE_WHILE_ACTIVE)


def spawn(coro: Awaitable) -> asyncio.Task:
    """Run ``coro`` detached from the caller's cancellation (client disconnects)."""
    task = asyncio.ensure_future(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


class StreamWriter:
    def __init__(
        self,
        record_id: str,
        session_maker: async_sessionmaker,
        initial_content: str = "",
        guard: Optional[StreamGuard] = None,
    ) -> None:
        self.record_id = record_id
        self.initial_content = initial_content
        self.content = initial_content
        self.estimated_completion = estimate_completion(initial_content) if initial_content else 0.0
        self._session_maker = session_maker
        self._guard = guard
        self._pending: Optional[Tuple[str, float]] = None
        self._wakeup = asyncio.Event()
        self._persister: Optional[asyncio.Task] = None
        self._closing = False
        self._finished = False

    @property
    def generated(self) -> str:
        """Text produced during this writer's lifetime (excludes the initial content)."""
        return self.content[len(self.initial_content):]

    @property
    def finished(self) -> bool:
        return self._finished

    def append(self, delta: str) -> str:
        """Accumulate ``delta`` and queue a progress write; returns the full content."""
        if self._finished:
            raise RuntimeError(f"writer for {self.record_id} is already finished")
        if not delta:
            return self.content

        content = self.content + delta
        if self._guard is not None:
            verdict = self._guard.check(delta, content)
            if not verdict.allowed:
                raise StreamGuardTripped(verdict.reason)

        self.content = content
        self.estimated_completion = max(self.estimated_completion, estimate_completion(content))
        self._pending = (content, self.estimated_completion)
        if self._persister is None or self._persister.done():
            self._closing = False
            self._persister = asyncio.ensure_future(self._persist_loop())
        self._wakeup.set()
        return content

    async def _persist_loop(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            snapshot, self._pending = self._pending, None
            if snapshot is not None:
                await self._write_progress(*snapshot)
            if self._closing and self._pending is None:
                return

    async def _write_progress(self, content: str, estimated: float) -> None:
        try:
            async with self._session_maker() as db:
                await stream_record_crud.update_progress(db, self.record_id, content, estimated)
        except Exception:
            logger.exception("stream-progress-persist-failed stream=%s length=%d", self.record_id, len(content))

    async def drain(self) -> None:
        """Wait until every queued snapshot has been written."""
        self._closing = True
        if self._persister is None:
            return
        self._wakeup.set()
        await self._persister

    async def complete(self, tokens: int = 0) -> bool:
        await self._finish()
        try:
            async with self._session_maker() as db:
                done = await stream_record_crud.complete(
                    db, self.record_id, self.content, tokens, from_statuses=WRITER_OWNED_STATUSES
                )
        except Exception:
            logger.exception("stream-complete-persist-failed stream=%s", self.record_id)
            return False
        if not done:
            logger.warning("stream-complete-skipped stream=%s reason=status-changed", self.record_id)
            return False
        logger.info("stream-completed stream=%s length=%d tokens=%d", self.record_id, len(self.content), tokens)
        return True

    async def fail(self, error_message: str) -> bool:
        await self._finish()
        try:
            async with self._session_maker() as db:
                done = await stream_record_crud.fail(
                    db, self.record_id, error_message, from_statuses=WRITER_OWNED_STATUSES
                )
        except Exception:
            logger.exception("stream-fail-persist-failed stream=%s", self.record_id)
            return False
        if not done:
            logger.warning("stream-fail-skipped stream=%s reason=status-changed", self.record_id)
            return False
        logger.info("stream-failed stream=%s reason=%s", self.record_id, error_message[:200])
        return True

    async def pause(self) -> bool:
        await self._finish()
        try:
            async with self._session_maker() as db:
                # 已被 mark-interrupted 时进度写入会被跳过，这里补上最新内容
                done = await stream_record_crud.pause(
                    db, self.record_id, content=self.content, from_statuses=WRITER_OWNED_STATUSES
                )
        except Exception:
            logger.exception("stream-pause-persist-failed stream=%s", self.record_id)
            return False
        if not done:
            logger.warning("stream-pause-skipped stream=%s reason=status-changed", self.record_id)
            return False
        logger.info("stream-paused stream=%s length=%d", self.record_id, len(self.content))
        return True

    async def _finish(self) -> None:
        if self._finished:
            raise RuntimeError(f"writer for {self.record_id} is already finished")
        self._finished = True
        await self.drain()
