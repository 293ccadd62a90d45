"""Tests for the interruption detector and its session slots."""

import asyncio

import pytest

from lovechat.client.interruption import FileSessionSlot, InterruptionDetector, MemorySessionSlot


class FakeClient:
    def __init__(self, beacon_ok=True):
        self.beacon_ok = beacon_ok
        self.beacons = []
        self.marked = []

    def send_beacon(self, message_id):
        if not self.beacon_ok:
            return False
        self.beacons.append(message_id)
        return True

    async def mark_interrupted(self, message_id):
        self.marked.append(message_id)
        return True


@pytest.fixture
def fake_client():
    return FakeClient()


class TestRegistration:
    def test_slot_mirrors_active_set(self, fake_client):
        slot = MemorySessionSlot()
        detector = InterruptionDetector(fake_client, storage=slot, grace_period=1)

        detector.register_stream("m1")
        detector.register_stream("m2")
        assert slot.load() == ["m1", "m2"]

        detector.unregister_stream("m1")
        assert slot.load() == ["m2"]
        assert detector.active_streams == ["m2"]

        detector.unregister_stream("m2")
        assert slot.load() == []

    def test_unregister_unknown_is_noop(self, fake_client):
        detector = InterruptionDetector(fake_client, grace_period=1)
        detector.unregister_stream("missing")
        assert detector.active_streams == []


class TestVisibility:
    @pytest.mark.asyncio
    async def test_hidden_past_grace_marks_streams(self, fake_client):
        detector = InterruptionDetector(fake_client, grace_period=0.05)
        detector.register_stream("m1")
        detector.on_visibility_change(hidden=True)
        await asyncio.sleep(0.15)
        assert fake_client.marked == ["m1"]

    @pytest.mark.asyncio
    async def test_visible_again_cancels_timer(self, fake_client):
        detector = InterruptionDetector(fake_client, grace_period=0.05)
        detector.register_stream("m1")
        detector.on_visibility_change(hidden=True)
        await asyncio.sleep(0.01)
        detector.on_visibility_change(hidden=False)
        await asyncio.sleep(0.1)
        assert fake_client.marked == []

    @pytest.mark.asyncio
    async def test_close_cancels_timer(self, fake_client):
        detector = InterruptionDetector(fake_client, grace_period=0.05)
        detector.register_stream("m1")
        detector.on_visibility_change(hidden=True)
        detector.close()
        await asyncio.sleep(0.1)
        assert fake_client.marked == []


class TestPageHide:
    @pytest.mark.asyncio
    async def test_prefers_beacon(self, fake_client):
        detector = InterruptionDetector(fake_client, grace_period=1)
        detector.register_stream("m1")
        detector.register_stream("m2")
        detector.on_page_hide()
        await asyncio.sleep(0)
        assert fake_client.beacons == ["m1", "m2"]
        assert fake_client.marked == []

    @pytest.mark.asyncio
    async def test_falls_back_to_request(self):
        client = FakeClient(beacon_ok=False)
        detector = InterruptionDetector(client, grace_period=1)
        detector.register_stream("m1")
        detector.on_page_hide()
        await asyncio.sleep(0.01)
        assert client.marked == ["m1"]

    @pytest.mark.asyncio
    async def test_hidden_after_unload_does_not_arm_timer(self, fake_client):
        detector = InterruptionDetector(fake_client, grace_period=0.01)
        detector.register_stream("m1")
        detector.on_page_hide()
        detector.on_visibility_change(hidden=True)
        await asyncio.sleep(0.05)
        assert fake_client.beacons == ["m1"]
        assert fake_client.marked == []


class TestMount:
    @pytest.mark.asyncio
    async def test_marks_leftovers_once_and_clears(self, fake_client):
        slot = MemorySessionSlot(["m1", "m2", "m1"])
        detector = InterruptionDetector(fake_client, storage=slot, grace_period=1)

        assert await detector.mount() == ["m1", "m2"]
        assert fake_client.marked == ["m1", "m2"]
        assert slot.load() == []

        assert await detector.mount() == []
        assert fake_client.marked == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_nothing_left_over(self, fake_client):
        detector = InterruptionDetector(fake_client, grace_period=1)
        assert await detector.mount() == []
        assert fake_client.marked == []


class TestFileSessionSlot:
    def test_round_trip_and_clear(self, tmp_path):
        slot = FileSessionSlot(tmp_path / "tab" / "active.json")
        assert slot.load() == []
        slot.save(["m1", "m2"])
        assert slot.load() == ["m1", "m2"]
        slot.clear()
        assert slot.load() == []
        slot.clear()

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "active.json"
        path.write_text("{not json", encoding="utf-8")
        assert FileSessionSlot(path).load() == []
        path.write_text('{"m1": true}', encoding="utf-8")
        assert FileSessionSlot(path).load() == []

    @pytest.mark.asyncio
    async def test_survives_reload(self, tmp_path, fake_client):
        path = tmp_path / "active.json"
        first = InterruptionDetector(fake_client, storage=FileSessionSlot(path), grace_period=1)
        first.register_stream("m1")

        reloaded = InterruptionDetector(fake_client, storage=FileSessionSlot(path), grace_period=1)
        assert await reloaded.mount() == ["m1"]
        assert fake_client.marked == ["m1"]
        assert not path.exists()
