"""Unit tests for nomad/database.py session stores."""
import pytest

from nomad.agents.ConversationAgent import ConversationState, Phase
from nomad.database import InMemorySessionStore, SqlSessionStore, build_session_store
from nomad.TripInfo import ParsedTrip


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _state(session_id="s1", now=1000.0):
    state = ConversationState.new(session_id, now=now)
    state.add_turn("user", "5 days in Paris", intent="structured", now=now)
    state.trip = ParsedTrip.build([("Paris", 5)], origin="London")
    state.phase = Phase.GENERATED
    return state


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(params=["memory", "sql"])
def store(request, clock, tmp_path):
    if request.param == "memory":
        return InMemorySessionStore(ttl_seconds=60, clock=clock)
    return SqlSessionStore(f"sqlite:///{tmp_path / 'sessions.db'}", ttl_seconds=60, clock=clock)


class TestSessionStores:
    def test_put_then_get(self, store):
        store.put(_state())
        loaded = store.get("s1")
        assert loaded.session_id == "s1"
        assert loaded.phase == Phase.GENERATED
        assert loaded.trip.pairs() == [("Paris", 5)]
        assert loaded.metadata.message_count == 1

    def test_missing(self, store):
        assert store.get("nope") is None
        assert store.delete("nope") is False

    def test_delete(self, store):
        store.put(_state())
        assert store.delete("s1") is True
        assert store.get("s1") is None

    def test_idle_sessions_expire(self, store, clock):
        store.put(_state())
        clock.now += 61
        assert store.get("s1") is None

    def test_activity_within_ttl_keeps_session(self, store, clock):
        store.put(_state())
        clock.now += 59
        assert store.get("s1") is not None

    def test_put_overwrites(self, store):
        state = _state()
        store.put(state)
        state.add_turn("user", "from Berlin", now=1001.0)
        store.put(state)
        assert store.get("s1").metadata.message_count == 2


def test_build_session_store_defaults_to_memory():
    assert isinstance(build_session_store("memory"), InMemorySessionStore)
