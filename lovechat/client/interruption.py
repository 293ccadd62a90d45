"""Interruption detector: notice when an in-flight generation loses its viewer.

Hidden for longer than the grace period, page hide, or a reload that finds
streams left over in the session slot all end with the server marking the
stream ``paused`` so it can be resumed later.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Protocol
import asyncio
import json
import logging

from lovechat.client.api import LoveChatClient
from lovechat.config import settings

logger = logging.getLogger(__name__)


class SessionSlot(Protocol):
    """Per-tab storage that survives a reload (sessionStorage in a browser)."""

    def load(self) -> List[str]: ...

    def save(self, message_ids: List[str]) -> None: ...

    def clear(self) -> None: ...


class MemorySessionSlot:
    def __init__(self, message_ids: Optional[List[str]] = None) -> None:
        self._ids: Optional[List[str]] = list(message_ids) if message_ids else None

    def load(self) -> List[str]:
        return list(self._ids or [])

    def save(self, message_ids: List[str]) -> None:
        self._ids = list(message_ids)

    def clear(self) -> None:
        self._ids = None


class FileSessionSlot:
    """JSON file slot; unreadable content counts as empty."""

    def __init__(self, path) -> None:
        self.path = Path(path)

    def load(self) -> List[str]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, ValueError):
            logger.warning("session-slot-unreadable path=%s", self.path)
            return []
        if not isinstance(data, list):
            return []
        return [str(item) for item in data if item]

    def save(self, message_ids: List[str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(list(message_ids)), encoding="utf-8")

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


class InterruptionDetector:
    def __init__(
        self,
        client: LoveChatClient,
        storage: Optional[SessionSlot] = None,
        grace_period: Optional[float] = None,
    ) -> None:
        self.client = client
        self.storage = storage if storage is not None else MemorySessionSlot()
        self.grace_period = settings.INTERRUPTION_GRACE_SEC if grace_period is None else grace_period
        # dict 保留注册顺序
        self._active: Dict[str, None] = {}
        self._hide_timer: Optional[asyncio.Task] = None
        self._unloading = False

    @property
    def active_streams(self) -> List[str]:
        return list(self._active)

    def register_stream(self, message_id: str) -> None:
        self._active[message_id] = None
        self.storage.save(self.active_streams)
        logger.debug("stream-registered message=%s active=%d", message_id, len(self._active))

    def unregister_stream(self, message_id: str) -> None:
        self._active.pop(message_id, None)
        if self._active:
            self.storage.save(self.active_streams)
        else:
            self.storage.clear()

    def on_visibility_change(self, hidden: bool) -> None:
        if hidden and not self._unloading:
            self._cancel_timer()
            self._hide_timer = asyncio.get_running_loop().create_task(self._mark_after_grace())
        elif not hidden:
            self._cancel_timer()

    async def _mark_after_grace(self) -> None:
        await asyncio.sleep(self.grace_period)
        logger.info("page-hidden-too-long grace=%ss active=%d", self.grace_period, len(self._active))
        await self.mark_all_active()

    async def mark_all_active(self) -> int:
        marked = 0
        for message_id in self.active_streams:
            if await self.client.mark_interrupted(message_id):
                marked += 1
        return marked

    def on_page_hide(self) -> None:
        """页面卸载：每个活跃流发一次通知，beacon 优先，失败再用 keep-alive POST"""
        self._unloading = True
        self._cancel_timer()
        for message_id in self.active_streams:
            try:
                if self.client.send_beacon(message_id):
                    continue
                asyncio.get_running_loop().create_task(self.client.mark_interrupted(message_id))
            except Exception:
                logger.warning("page-hide-notify-failed message=%s", message_id, exc_info=True)

    async def mount(self) -> List[str]:
        """重新加载后：上次会话遗留的流各标记一次，然后清空存储"""
        leftover = list(dict.fromkeys(self.storage.load()))
        if not leftover:
            return []
        logger.info("previous-session-streams count=%d", len(leftover))
        for message_id in leftover:
            await self.client.mark_interrupted(message_id)
        self.storage.clear()
        return leftover

    def close(self) -> None:
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._hide_timer is not None:
            self._hide_timer.cancel()
            self._hide_timer = None
