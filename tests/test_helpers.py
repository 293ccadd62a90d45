"""Tests for prompt assembly helpers."""

from lovechat.services.streaming.helpers import (
    assistant_parts,
    describe_attachments,
    to_prompt_message,
    usage_tokens,
)
from lovechat.utils.models import resolve_model
from lovechat.utils.system_prompt import (
    CONTINUATION_SYSTEM_PROMPT,
    SEARCH_AVAILABLE_PROMPT,
    SEARCH_UNAVAILABLE_PROMPT,
    build_continuation_messages,
    get_system_prompt,
)

ATTACHMENTS = [
    {"type": "text", "text": "see attached"},
    {
        "type": "file_attachments",
        "attachments": [
            {"fileName": "report.pdf", "fileSize": 2048},
            {"fileName": "notes", "fileSize": 12},
        ],
    },
]


def test_usage_tokens():
    assert usage_tokens(None) == 0
    assert usage_tokens({"total_tokens": 30}) == 30
    assert usage_tokens({"prompt_tokens": 10, "completion_tokens": 5}) == 15


def test_describe_attachments():
    assert describe_attachments(ATTACHMENTS).splitlines() == [
        "[PDF File: report.pdf, Size: 2.0 KB]",
        "[FILE File: notes, Size: 12 B]",
    ]
    assert describe_attachments(None) == ""


def test_to_prompt_message_appends_files():
    message = to_prompt_message("user", "summarize", ATTACHMENTS)
    assert message["role"] == "user"
    assert message["content"].startswith("summarize\n\nAttached files:\n[PDF File: report.pdf")
    assert to_prompt_message("user", "hi") == {"role": "user", "content": "hi"}


def test_assistant_parts():
    assert assistant_parts("answer") == [{"type": "text", "text": "answer"}]
    parts = assistant_parts("answer", "thinking", {"type": "sources", "sources": []})
    assert [p["type"] for p in parts] == ["reasoning", "text", "sources"]


class TestSystemPrompt:
    def test_search_prompt_follows_results(self):
        config = resolve_model("gpt-4o-mini")
        assert SEARCH_AVAILABLE_PROMPT in get_system_prompt(config, web_search_enabled=True, has_search_results=True)
        assert SEARCH_UNAVAILABLE_PROMPT in get_system_prompt(config, web_search_enabled=True)
        plain = get_system_prompt(config)
        assert SEARCH_AVAILABLE_PROMPT not in plain
        assert SEARCH_UNAVAILABLE_PROMPT not in plain

    def test_user_email(self):
        config = resolve_model("gpt-4o-mini")
        assert "Current user: alice@example.com" in get_system_prompt(config, user_email="alice@example.com")


class TestContinuationMessages:
    def test_with_partial_content(self):
        history = [{"role": "user", "content": "Why is the sky blue?"}]
        messages = build_continuation_messages(history, "The sky is", "Why is the sky blue?")

        assert messages[0] == {"role": "system", "content": CONTINUATION_SYSTEM_PROMPT}
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[2]["content"] == "The sky is"
        assert messages[3]["content"].endswith("The sky is")

    def test_prompt_added_when_missing_from_history(self):
        messages = build_continuation_messages([], "", "Why is the sky blue?")
        assert messages[-1] == {"role": "user", "content": "Why is the sky blue?"}

    def test_ends_with_user_turn(self):
        history = [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "system", "content": "ignored"},
        ]
        messages = build_continuation_messages(history, "")
        assert messages[-1]["role"] == "user"
        assert all(m["content"] != "ignored" for m in messages)

    def test_only_tail_of_long_partial_is_quoted(self):
        partial = "x" * 500 + "TAIL"
        messages = build_continuation_messages([{"role": "user", "content": "q"}], partial, "q")
        assert messages[-2]["content"] == partial
        assert len(messages[-1]["content"].split("\n", 1)[1]) == 200
