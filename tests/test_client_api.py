"""Tests for LoveChatClient against an httpx.MockTransport."""

import asyncio
import json

import httpx
import pytest

from lovechat.client.api import LoveChatAPIError, LoveChatClient


class Recorder:
    """Collects requests and answers from a route table."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"detail": "Not Found"})
        return handler(request)


def make_client(routes, token="tok-1", api_keys=None):
    recorder = Recorder(routes)
    client = LoveChatClient(
        "http://test/",
        token=token,
        api_keys=api_keys,
        transport=httpx.MockTransport(recorder),
    )
    return client, recorder


@pytest.mark.asyncio
async def test_list_resumable_streams():
    client, recorder = make_client({
        ("GET", "/api/v1/resumable-streams"): lambda r: httpx.Response(200, json={"streams": ["s1", "s2"]}),
    })
    async with client:
        assert await client.list_resumable_streams("thread-1") == ["s1", "s2"]

    request = recorder.requests[0]
    assert request.url.params["threadId"] == "thread-1"
    assert request.headers["Authorization"] == "Bearer tok-1"


@pytest.mark.asyncio
async def test_list_resumable_streams_error():
    client, _ = make_client({
        ("GET", "/api/v1/resumable-streams"): lambda r: httpx.Response(401, json={"detail": "Authentication required"}),
    })
    async with client:
        with pytest.raises(LoveChatAPIError) as exc:
            await client.list_resumable_streams("thread-1")
    assert exc.value.status_code == 401
    assert exc.value.detail == "Authentication required"


@pytest.mark.asyncio
async def test_iter_resume_stream_parses_lines():
    body = '0:"The sky is"\n\n0:"The sky is blue."\nnot a line\nd:{"finishReason":"stop"}\n'
    client, recorder = make_client(
        {("POST", "/api/v1/resume-stream"): lambda r: httpx.Response(200, text=body)},
        api_keys={"X-OpenAI-API-Key": "sk-test"},
    )
    async with client:
        lines = [item async for item in client.iter_resume_stream("s1")]

    assert lines == [
        ("0", "The sky is"),
        ("0", "The sky is blue."),
        ("d", {"finishReason": "stop"}),
    ]
    request = recorder.requests[0]
    assert json.loads(request.content) == {"streamId": "s1"}
    assert request.headers["X-OpenAI-API-Key"] == "sk-test"


@pytest.mark.asyncio
async def test_iter_resume_stream_conflict():
    client, _ = make_client({
        ("POST", "/api/v1/resume-stream"): lambda r: httpx.Response(409, json={"detail": "Stream is already being resumed"}),
    })
    async with client:
        with pytest.raises(LoveChatAPIError) as exc:
            async for _ in client.iter_resume_stream("s1"):
                pass
    assert exc.value.status_code == 409


@pytest.mark.asyncio
async def test_mark_interrupted():
    client, recorder = make_client({
        ("POST", "/api/v1/mark-interrupted"): lambda r: httpx.Response(200, json={"success": True, "updated": 1}),
    })
    async with client:
        assert await client.mark_interrupted("m1") is True
    assert json.loads(recorder.requests[0].content) == {"messageId": "m1"}


@pytest.mark.asyncio
async def test_mark_interrupted_never_raises():
    def boom(request):
        raise httpx.ConnectError("connection refused", request=request)

    client, _ = make_client({("POST", "/api/v1/mark-interrupted"): boom})
    async with client:
        assert await client.mark_interrupted("m1") is False

    client, _ = make_client({
        ("POST", "/api/v1/mark-interrupted"): lambda r: httpx.Response(403, json={"detail": "Access denied"}),
    })
    async with client:
        assert await client.mark_interrupted("m1") is False


@pytest.mark.asyncio
async def test_send_beacon_posts_plain_text_with_cookie():
    client, recorder = make_client({
        ("POST", "/api/v1/mark-interrupted"): lambda r: httpx.Response(200, json={"success": True}),
    })
    async with client:
        assert client.send_beacon("m1") is True
    # aclose waits for queued beacons
    request = recorder.requests[0]
    assert request.content == b"m1"
    assert request.headers["Content-Type"].startswith("text/plain")
    assert request.headers["Cookie"] == "sb-access-token=tok-1"
    assert "Authorization" not in request.headers


def test_send_beacon_without_loop():
    client, recorder = make_client({})
    assert client.send_beacon("m1") is False
    assert recorder.requests == []
    asyncio.run(client.aclose())


@pytest.mark.asyncio
async def test_save_message():
    def echo(request):
        body = json.loads(request.content)
        return httpx.Response(200, json={**body, "thread_id": "thread-1"})

    client, recorder = make_client({("POST", "/api/v1/threads/thread-1/messages"): echo})
    async with client:
        saved = await client.save_message("thread-1", "a1", "assistant", "The sky is blue.")

    assert saved["id"] == "a1"
    assert saved["content"] == "The sky is blue."
    assert recorder.requests[0].url.path == "/api/v1/threads/thread-1/messages"


@pytest.mark.asyncio
async def test_save_message_error():
    client, _ = make_client({
        ("POST", "/api/v1/threads/thread-1/messages"): lambda r: httpx.Response(403, text="forbidden"),
    })
    async with client:
        with pytest.raises(LoveChatAPIError) as exc:
            await client.save_message("thread-1", "a1", "assistant", "x")
    assert exc.value.detail == "forbidden"
