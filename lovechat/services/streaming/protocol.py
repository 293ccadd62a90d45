"""Line protocol shared by ``/chat-stream`` and ``/resume-stream``.

Each line is ``<tag>:<json>\\n``. On ``/chat-stream`` the ``0`` payload is a
text delta; on ``/resume-stream`` it is the whole content so far.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Tuple

TEXT = "0"
ERROR = "3"
FINISH = "d"
START = "f"
REASONING = "g"
SOURCES = "h"

KNOWN_TAGS = {TEXT, ERROR, FINISH, START, REASONING, SOURCES}


class ProtocolError(ValueError):
    """Raised when a stream line cannot be parsed."""


def encode_line(tag: str, payload: Any) -> str:
    if tag not in KNOWN_TAGS:
        raise ProtocolError(f"unknown tag: {tag!r}")
    return f"{tag}:{json.dumps(payload, ensure_ascii=False)}\n"


def text_line(text: str) -> str:
    return encode_line(TEXT, text)


def reasoning_line(text: str) -> str:
    return encode_line(REASONING, text)


def error_line(message: str) -> str:
    return encode_line(ERROR, message)


def start_line(message_id: str, stream_id: Optional[str]) -> str:
    return encode_line(START, {"messageId": message_id, "streamId": stream_id})


def sources_line(sources: list) -> str:
    return encode_line(SOURCES, {"sources": sources})


def finish_line(finish_reason: str, usage: Optional[Dict[str, Any]] = None) -> str:
    usage = usage or {}
    return encode_line(
        FINISH,
        {
            "finishReason": finish_reason,
            "usage": {
                "promptTokens": int(usage.get("prompt_tokens") or 0),
                "completionTokens": int(usage.get("completion_tokens") or 0),
            },
        },
    )


def parse_line(line: str) -> Tuple[str, Any]:
    line = line.rstrip("\r\n")
    tag, sep, raw = line.partition(":")
    if not sep or tag not in KNOWN_TAGS:
        raise ProtocolError(f"malformed line: {line[:80]!r}")
    try:
        return tag, json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"bad payload for tag {tag}: {raw[:80]!r}") from exc
