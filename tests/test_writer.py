"""Tests for StreamWriter progress persistence."""

import asyncio

import pytest

from conftest import fetch_record, make_record, make_thread
from lovechat.crud.stream_record import stream_record_crud
from lovechat.models import StreamStatus
from lovechat.services.streaming.guard import StreamGuard, StreamGuardTripped
from lovechat.services.streaming.writer import StreamWriter, estimate_completion


@pytest.fixture
async def stream_id(db):
    await make_thread(db)
    return await make_record(db, status=StreamStatus.STREAMING.value)


class TestEstimateCompletion:
    def test_capped_below_one_while_active(self):
        assert estimate_completion("x" * 250) == pytest.approx(0.5)
        assert estimate_completion("x" * 5000) == 0.95

    def test_expected_length(self):
        assert estimate_completion("x" * 50, expected_length=100) == pytest.approx(0.5)


class TestStreamWriter:
    @pytest.mark.asyncio
    async def test_append_returns_accumulated_content(self, session_maker, stream_id):
        writer = StreamWriter(stream_id, session_maker, initial_content="The sky")
        assert writer.append(" is") == "The sky is"
        assert writer.append(" blue.") == "The sky is blue."
        assert writer.generated == " is blue."
        await writer.drain()

    @pytest.mark.asyncio
    async def test_progress_reaches_database_in_order(self, session_maker, stream_id):
        writer = StreamWriter(stream_id, session_maker)
        content = ""
        for chunk in ["a", "b", "c", "d", "e"]:
            content = writer.append(chunk)
            await asyncio.sleep(0)
        await writer.drain()

        record = await fetch_record(session_maker, stream_id)
        assert record.partial_content == content == "abcde"
        assert record.status == StreamStatus.STREAMING.value

    @pytest.mark.asyncio
    async def test_persisted_prefixes_are_monotonic(self, session_maker, stream_id, monkeypatch):
        seen = []
        real_update = stream_record_crud.update_progress

        async def recording_update(db, sid, content, estimated):
            seen.append(content)
            return await real_update(db, sid, content, estimated)

        monkeypatch.setattr(stream_record_crud, "update_progress", recording_update)
        writer = StreamWriter(stream_id, session_maker)
        for chunk in "The sky is blue.".split(" "):
            writer.append(chunk + " ")
        await writer.drain()

        assert seen
        for earlier, later in zip(seen, seen[1:]):
            assert later.startswith(earlier)

    @pytest.mark.asyncio
    async def test_complete(self, session_maker, stream_id):
        writer = StreamWriter(stream_id, session_maker)
        writer.append("Done.")
        assert await writer.complete(tokens=9)

        record = await fetch_record(session_maker, stream_id)
        assert record.status == StreamStatus.COMPLETED.value
        assert record.partial_content == "Done."
        assert record.estimated_completion == 1.0
        assert record.total_tokens == 9
        assert writer.finished

    @pytest.mark.asyncio
    async def test_pause_drains_pending_progress(self, session_maker, stream_id):
        writer = StreamWriter(stream_id, session_maker)
        writer.append("partial answer")
        assert await writer.pause()

        record = await fetch_record(session_maker, stream_id)
        assert record.status == StreamStatus.PAUSED.value
        assert record.partial_content == "partial answer"

    @pytest.mark.asyncio
    async def test_fail_without_output_keeps_content(self, session_maker, db):
        await make_thread(db)
        stream_id = await make_record(db, status=StreamStatus.STREAMING.value, partial="The sky is")
        writer = StreamWriter(stream_id, session_maker, initial_content="The sky is")
        assert await writer.fail("provider error")

        record = await fetch_record(session_maker, stream_id)
        assert record.status == StreamStatus.FAILED.value
        assert record.partial_content == "The sky is"

    @pytest.mark.asyncio
    async def test_finished_writer_rejects_more_work(self, session_maker, stream_id):
        writer = StreamWriter(stream_id, session_maker)
        await writer.complete()
        with pytest.raises(RuntimeError):
            writer.append("late")
        with pytest.raises(RuntimeError):
            await writer.pause()

    @pytest.mark.asyncio
    async def test_guard_trips(self, session_maker, stream_id):
        writer = StreamWriter(stream_id, session_maker, guard=StreamGuard(max_response_chars=5))
        writer.append("1234")
        with pytest.raises(StreamGuardTripped):
            writer.append("5678")
        assert writer.content == "1234"
        await writer.drain()

    @pytest.mark.asyncio
    async def test_persist_failure_is_swallowed(self, session_maker, stream_id, monkeypatch):
        async def broken_update(*args, **kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(stream_record_crud, "update_progress", broken_update)
        writer = StreamWriter(stream_id, session_maker)
        writer.append("still streaming")
        await writer.drain()
        assert await writer.complete()
        assert (await fetch_record(session_maker, stream_id)).partial_content == "still streaming"


class TestInterruptedWhileGenerating:
    async def mark(self, session_maker, message_id="msg-1"):
        async with session_maker() as session:
            return await stream_record_crud.mark_interrupted(session, message_id)

    @pytest.mark.asyncio
    async def test_complete_after_client_marked_paused(self, session_maker, stream_id):
        writer = StreamWriter(stream_id, session_maker)
        writer.append("The sky ")
        await writer.drain()
        assert await self.mark(session_maker) == 1

        writer.append("is blue.")
        assert await writer.complete(3)

        record = await fetch_record(session_maker, stream_id)
        assert record.status == StreamStatus.COMPLETED.value
        assert record.partial_content == "The sky is blue."
        assert record.estimated_completion == 1.0

    @pytest.mark.asyncio
    async def test_fail_after_client_marked_paused(self, session_maker, stream_id):
        writer = StreamWriter(stream_id, session_maker)
        assert await self.mark(session_maker) == 1
        assert await writer.fail("provider down")
        assert (await fetch_record(session_maker, stream_id)).status == StreamStatus.FAILED.value

    @pytest.mark.asyncio
    async def test_pause_writes_content_skipped_by_progress(self, session_maker, stream_id):
        writer = StreamWriter(stream_id, session_maker)
        writer.append("The sky ")
        await writer.drain()
        await self.mark(session_maker)

        writer.append("is")
        assert await writer.pause()

        record = await fetch_record(session_maker, stream_id)
        assert record.status == StreamStatus.PAUSED.value
        assert record.partial_content == "The sky is"

    @pytest.mark.asyncio
    async def test_terminal_record_is_left_alone(self, session_maker, db):
        await make_thread(db)
        stream_id = await make_record(db, status=StreamStatus.COMPLETED.value, partial="final")
        writer = StreamWriter(stream_id, session_maker)
        assert not await writer.complete()

        record = await fetch_record(session_maker, stream_id)
        assert record.status == StreamStatus.COMPLETED.value
        assert record.partial_content == "final"
