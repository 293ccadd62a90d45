"""Serper web search.

Results travel as a ``WebSearchResult`` value from the chat handler into
prompt assembly and into the persisted message parts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse
import logging

import httpx

logger = logging.getLogger(__name__)

GOOGLE_REDIRECT_HOSTS = ("vertexaisearch.cloud.google.com", "google.com")


class SearchServiceError(RuntimeError):
    """Raised when the search provider request fails."""


@dataclass(frozen=True)
class SearchSource:
    url: str
    title: str
    content: str
    domain: str

    def as_dict(self) -> Dict[str, str]:
        return {"url": self.url, "title": self.title, "content": self.content, "domain": self.domain}


@dataclass
class WebSearchResult:
    query: str
    sources: List[SearchSource] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.sources)

    def to_part(self) -> Dict[str, Any]:
        return {"type": "sources", "sources": [s.as_dict() for s in self.sources]}

    def context_prompt(self) -> str:
        lines = [
            "Web search results for the latest user question. Cite sources by their domain when you use them.",
            "",
        ]
        for idx, src in enumerate(self.sources, start=1):
            lines.append(f"[{idx}] {src.title} ({src.domain})")
            lines.append(src.content)
            lines.append("")
        return "\n".join(lines).strip()


def extract_actual_url(url: str) -> str:
    """Unwrap Google redirect links to the target URL."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    if parsed.hostname and parsed.hostname.endswith(GOOGLE_REDIRECT_HOSTS):
        params = parse_qs(parsed.query)
        for key in ("url", "q", "u"):
            if params.get(key):
                return params[key][0]
    return url


def extract_domain(url: str) -> str:
    actual = extract_actual_url(url)
    try:
        hostname = urlparse(actual).hostname or ""
    except ValueError:
        return "unknown"
    if not hostname:
        return "unknown"
    if hostname.endswith(GOOGLE_REDIRECT_HOSTS):
        return "Search Result"
    return hostname[4:] if hostname.startswith("www.") else hostname


def dedupe_sources(sources: List[SearchSource]) -> List[SearchSource]:
    """Keep the first hit per URL and per domain."""
    seen_urls: set[str] = set()
    seen_domains: set[str] = set()
    out: List[SearchSource] = []
    for src in sources:
        if src.url in seen_urls or src.domain in seen_domains:
            continue
        seen_urls.add(src.url)
        seen_domains.add(src.domain)
        out.append(src)
    return out


class SerperSearchClient:
    def __init__(self, api_key: str, url: str, max_results: int = 5, timeout_sec: float = 15.0) -> None:
        self.api_key = api_key or ""
        self.url = url
        self.max_results = max(1, int(max_results))
        self.timeout_sec = timeout_sec

    async def search(self, query: str) -> WebSearchResult:
        query = (query or "").strip()
        if not query:
            return WebSearchResult(query="")
        if not self.api_key:
            raise SearchServiceError("SERPER_API_KEY 未配置。")

        headers = {"X-API-KEY": self.api_key, "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_sec) as client:
                resp = await client.post(self.url, json={"q": query}, headers=headers)
        except httpx.HTTPError as exc:
            raise SearchServiceError(f"Serper 请求失败: {exc}") from exc

        if resp.status_code >= 400:
            raise SearchServiceError(f"Serper 返回错误: status={resp.status_code}, body={resp.text[:300]}")

        try:
            body = resp.json()
        except ValueError as exc:
            raise SearchServiceError("Serper 返回不是合法 JSON。") from exc

        sources = []
        for item in body.get("organic") or []:
            if not isinstance(item, dict) or not item.get("link"):
                continue
            url = extract_actual_url(str(item["link"]))
            sources.append(
                SearchSource(
                    url=url,
                    title=str(item.get("title") or ""),
                    content=str(item.get("snippet") or ""),
                    domain=extract_domain(url),
                )
            )
        return WebSearchResult(query=query, sources=dedupe_sources(sources)[: self.max_results])


async def run_web_search(client: Optional[SerperSearchClient], query: str) -> Optional[WebSearchResult]:
    """Search failures never abort a chat; they are logged and yield None."""
    if client is None:
        return None
    try:
        return await client.search(query)
    except SearchServiceError:
        logger.exception("web-search-failed query=%s", query[:120])
        return None
