"""Tests for the threadline.testing fakes."""

from datetime import datetime, timedelta, timezone

from threadline.messages import IdentityProvider
from threadline.testing import FakeIdentity, event_stream


class TestFakeIdentityProtocol:
    """Verify FakeIdentity implements IdentityProvider."""

    def test_implements_protocol(self):
        """FakeIdentity should be a valid IdentityProvider."""
        assert isinstance(FakeIdentity(), IdentityProvider)


class TestNewId:
    """Tests for deterministic id generation."""

    def test_ids_are_sequential(self):
        identity = FakeIdentity()

        assert [identity.new_id() for _ in range(3)] == ["id-1", "id-2", "id-3"]

    def test_tracks_issued_ids(self):
        identity = FakeIdentity(prefix="rev")

        identity.new_id()
        identity.new_id()

        assert identity.issued_ids == ["rev-1", "rev-2"]


class TestNow:
    """Tests for the ticking clock."""

    def test_clock_advances_one_second_per_call(self):
        start = datetime(2025, 8, 5, tzinfo=timezone.utc)
        identity = FakeIdentity(start=start)

        first = identity.now()
        second = identity.now()

        assert first == start + timedelta(seconds=1)
        assert second - first == timedelta(seconds=1)
        assert identity.ticks == 2

    def test_history_uses_fake_clock(self, history, identity):
        history.add("hi")

        [message] = history.all.canonical()
        assert message.id == "id-1"
        assert message.created_at == identity.start + timedelta(seconds=1)


class TestEventStream:
    """Tests for scripted event streams."""

    async def test_yields_events_in_order(self):
        events = [event async for event in event_stream({"type": "a"}, {"type": "b"})]

        assert events == [{"type": "a"}, {"type": "b"}]

    async def test_empty_stream(self):
        assert [event async for event in event_stream()] == []
