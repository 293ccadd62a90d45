"""Supabase token 校验

只负责校验前端传来的 access token 并取出用户；登录/签发由 Supabase 完成。
"""
from dataclasses import dataclass
from typing import Optional
import logging

import httpx
from fastapi import HTTPException, Request

from lovechat.config import settings

logger = logging.getLogger("uvicorn.error")

# 浏览器 beacon 无法带 Authorization 头，只能靠 cookie
ACCESS_TOKEN_COOKIE = "sb-access-token"


class AuthError(Exception):
    """Raised when an access token cannot be verified."""


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str = ""


async def verify_access_token(token: str) -> AuthUser:
    """通过 Supabase `/auth/v1/user` 校验 token"""
    if not token:
        raise AuthError("missing token")
    if not settings.auth_enabled:
        raise AuthError("SUPABASE_URL / SUPABASE_ANON_KEY 未配置")

    url = settings.SUPABASE_URL.rstrip("/") + "/auth/v1/user"
    headers = {
        "apikey": settings.SUPABASE_ANON_KEY,
        "Authorization": f"Bearer {token}",
    }
    try:
        async with httpx.AsyncClient(timeout=settings.AUTH_TIMEOUT_SEC) as client:
            resp = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:
        raise AuthError(f"Supabase 请求失败: {exc}") from exc

    if resp.status_code != 200:
        raise AuthError(f"Supabase 拒绝 token: status={resp.status_code}")

    try:
        body = resp.json()
    except ValueError as exc:
        raise AuthError("Supabase 返回不是合法 JSON") from exc

    user_id = str(body.get("id") or "").strip()
    if not user_id:
        raise AuthError("Supabase 返回缺少用户ID")
    return AuthUser(id=user_id, email=str(body.get("email") or ""))


def extract_bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    if header.lower().startswith("bearer "):
        token = header[7:].strip()
        return token or None
    return None


async def get_current_user(request: Request) -> AuthUser:
    """必须登录的接口使用"""
    token = extract_bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        return await verify_access_token(token)
    except AuthError as exc:
        logger.info("auth-rejected reason=%s", exc)
        raise HTTPException(status_code=401, detail="Invalid authentication token")


async def get_optional_user(request: Request) -> Optional[AuthUser]:
    """可选登录：请求头或 cookie 中带 token 时校验，否则返回 None

    无效的 Authorization 头返回 401；无效（如已过期）的 cookie 按匿名处理，
    beacon 只能带 cookie。
    """
    bearer = extract_bearer_token(request)
    token = bearer or request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        return None
    try:
        return await verify_access_token(token)
    except AuthError as exc:
        logger.info("auth-rejected source=%s reason=%s", "header" if bearer else "cookie", exc)
        if bearer:
            raise HTTPException(status_code=401, detail="Invalid authentication token")
        return None
