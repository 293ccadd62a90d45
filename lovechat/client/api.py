"""LoveChat HTTP 客户端（httpx）

给恢复钩子和中断检测器用；所有路径都在 `/api/v1` 下。
"""
from typing import Any, AsyncIterator, Dict, List, Optional, Set, Tuple
import asyncio
import logging

import httpx

from lovechat.services.streaming.protocol import ProtocolError, parse_line
from lovechat.utils.auth import ACCESS_TOKEN_COOKIE

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class LoveChatAPIError(RuntimeError):
    """Raised when the server answers with a non-success status."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(f"LoveChat API error {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


def _detail_of(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:300]
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return str(body)[:300]


class LoveChatClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        api_keys: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ) -> None:
        """
        Args:
            base_url: 服务地址，如 http://localhost:8000
            token: Supabase access token
            api_keys: 供应商请求头 -> key，如 {"X-OpenAI-API-Key": "sk-..."}
            transport: 测试时注入 httpx.MockTransport
        """
        self.token = token
        self.api_keys = dict(api_keys or {})
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            transport=transport,
            timeout=httpx.Timeout(timeout, read=None),
        )
        self._beacons: Set[asyncio.Task] = set()

    async def __aenter__(self) -> "LoveChatClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _headers(self, with_keys: bool = False) -> Dict[str, str]:
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if with_keys:
            headers.update(self.api_keys)
        return headers

    async def list_resumable_streams(self, thread_id: str) -> List[str]:
        resp = await self._client.get(
            f"{API_PREFIX}/resumable-streams",
            params={"threadId": thread_id},
            headers=self._headers(),
        )
        if resp.status_code != 200:
            raise LoveChatAPIError(resp.status_code, _detail_of(resp))
        return list(resp.json().get("streams") or [])

    async def iter_resume_stream(self, stream_id: str) -> AsyncIterator[Tuple[str, Any]]:
        """逐行产出 (tag, payload)；`0` 的 payload 是到目前为止的完整内容"""
        async with self._client.stream(
            "POST",
            f"{API_PREFIX}/resume-stream",
            json={"streamId": stream_id},
            headers=self._headers(with_keys=True),
        ) as resp:
            if resp.status_code != 200:
                await resp.aread()
                raise LoveChatAPIError(resp.status_code, _detail_of(resp))

            async for line in resp.aiter_lines():
                if not line.strip():
                    continue
                try:
                    yield parse_line(line)
                except ProtocolError:
                    logger.warning("resume-stream-bad-line stream=%s line=%s", stream_id, line[:80])

    async def mark_interrupted(self, message_id: str) -> bool:
        """尽力而为；失败只记日志"""
        try:
            resp = await self._client.post(
                f"{API_PREFIX}/mark-interrupted",
                json={"messageId": message_id},
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            logger.warning("mark-interrupted-request-failed message=%s error=%s", message_id, exc)
            return False
        if resp.status_code != 200:
            logger.warning("mark-interrupted-rejected message=%s status=%s", message_id, resp.status_code)
            return False
        return True

    def send_beacon(self, message_id: str) -> bool:
        """类似 navigator.sendBeacon：排队一个不等待结果的 text/plain POST，返回是否已排队"""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        task = loop.create_task(self._post_beacon(message_id))
        self._beacons.add(task)
        task.add_done_callback(self._beacons.discard)
        return True

    async def _post_beacon(self, message_id: str) -> None:
        # beacon 不能带 Authorization，只能带 cookie
        headers = {"Content-Type": "text/plain;charset=UTF-8"}
        if self.token:
            headers["Cookie"] = f"{ACCESS_TOKEN_COOKIE}={self.token}"
        try:
            await self._client.post(
                f"{API_PREFIX}/mark-interrupted",
                content=message_id.encode("utf-8"),
                headers=headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("beacon-failed message=%s error=%s", message_id, exc)

    async def save_message(
        self,
        thread_id: str,
        message_id: str,
        role: str,
        content: str,
        parts: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        resp = await self._client.post(
            f"{API_PREFIX}/threads/{thread_id}/messages",
            json={"id": message_id, "role": role, "content": content, "parts": parts},
            headers=self._headers(),
        )
        if resp.status_code != 200:
            raise LoveChatAPIError(resp.status_code, _detail_of(resp))
        return resp.json()

    async def aclose(self) -> None:
        if self._beacons:
            await asyncio.gather(*list(self._beacons), return_exceptions=True)
        await self._client.aclose()
