"""
Unit tests for nomad/agents/ConversationAgent.py

Tests cover:
- merge_into_context (latest value wins, stated days fill gaps)
- Multi-turn gathering: clarification, origin question, generation
- Modification flow with confirmation
- Failure handling and planning limits
- Session bookkeeping (history, locks, reset, serialisation)
"""
import pytest

from nomad.agents.ConversationAgent import (
    MAX_ITINERARY_HISTORY,
    ORIGIN_QUESTION,
    ConversationState,
    Phase,
    TripChatService,
    TripContext,
    merge_into_context,
)
from nomad.database import InMemorySessionStore
from nomad.TripInfo import Itinerary, ParsedTrip

SID = "session-1"
PARIS_ROME = "3 days in Paris and 2 days in Rome from London"


@pytest.fixture
def service(fake_llm):
    return TripChatService(InMemorySessionStore(), llm=fake_llm)


def _generated(service):
    response = service.classify_and_respond(PARIS_ROME, SID)
    assert response.response_type == "itinerary"
    return response


# ---------------------------------------------------------------------------
# merge_into_context
# ---------------------------------------------------------------------------

class TestMergeIntoContext:
    def test_new_destinations_appended(self):
        ctx = TripContext()
        assert merge_into_context(ctx, ParsedTrip.build([("Paris", 3)]))
        assert ctx.pairs() == [("Paris", 3)]

    def test_latest_duration_wins(self):
        ctx = TripContext()
        ctx.set_pairs([("Paris", 3)])
        merge_into_context(ctx, ParsedTrip.build([("paris", 5)]))
        assert ctx.pairs() == [("Paris", 5)]

    def test_zero_duration_does_not_erase(self):
        ctx = TripContext()
        ctx.set_pairs([("Paris", 3)])
        assert not merge_into_context(ctx, ParsedTrip.build([("Paris", 0)]))
        assert ctx.pairs() == [("Paris", 3)]

    def test_stated_days_fill_unresolved(self):
        ctx = TripContext()
        ctx.set_pairs([("Paris", 0), ("Rome", 0)])
        merge_into_context(ctx, ParsedTrip(stated_days=5))
        assert ctx.pairs() == [("Paris", 3), ("Rome", 2)]
        assert ctx.stated_days is None

    def test_origin_and_preferences(self):
        ctx = TripContext()
        merge_into_context(ctx, ParsedTrip(origin="London"), {"pace": "slow"})
        assert ctx.origin == "London"
        assert ctx.preferences == {"pace": "slow"}


# ---------------------------------------------------------------------------
# Gathering and generation
# ---------------------------------------------------------------------------

class TestGathering:
    def test_complete_request_generates_immediately(self, service):
        response = _generated(service)
        assert response.message == "Here's your 5-Day Adventure to Paris, Rome!"
        assert response.itinerary.total_days() == 5
        state = response.conversation_state
        assert state.phase == Phase.GENERATED
        assert state.trip.origin == "London"

    def test_origin_question_then_answer(self, service):
        first = service.classify_and_respond("5 days in Paris", SID)
        assert first.response_type == "clarification"
        assert first.question == ORIGIN_QUESTION
        assert first.conversation_state.phase == Phase.READY

        second = service.classify_and_respond("from Berlin", SID)
        assert second.response_type == "itinerary"
        assert second.conversation_state.trip.origin == "Berlin"

    def test_bare_city_answers_origin(self, service):
        service.classify_and_respond("5 days in Paris", SID)
        response = service.classify_and_respond("London", SID)
        assert response.response_type == "itinerary"
        assert response.conversation_state.context.origin == "London"

    def test_origin_can_be_skipped(self, service):
        service.classify_and_respond("5 days in Paris", SID)
        response = service.classify_and_respond("skip", SID)
        assert response.response_type == "itinerary"
        state = response.conversation_state
        assert state.context.origin is None
        assert state.context.origin_declined

    def test_missing_duration_is_asked_for(self, service):
        first = service.classify_and_respond("I want to go to Paris", SID)
        assert first.response_type == "clarification"
        assert first.question == "How many days would you like to spend in Paris?"
        assert first.conversation_state.phase == Phase.CLARIFYING

        second = service.classify_and_respond("4 days", SID)
        assert second.question == ORIGIN_QUESTION
        assert second.conversation_state.context.pairs() == [("Paris", 4)]

        third = service.classify_and_respond("from Berlin", SID)
        assert third.response_type == "itinerary"
        assert third.itinerary.total_days() == 4

    def test_mixed_durations_reach_the_itinerary(self, service):
        response = service.classify_and_respond("one week in Paris and 3 days in Rome from London", SID)
        assert response.response_type == "itinerary"
        assert response.conversation_state.trip.pairs() == [("Paris", 7), ("Rome", 3)]
        assert response.itinerary.total_days() == 10

    def test_small_talk_gets_information(self, service):
        response = service.classify_and_respond("hello there", SID)
        assert response.response_type == "information"
        assert response.message == "Happy to help!"

    def test_new_structured_request_replaces_trip(self, service):
        _generated(service)
        response = service.classify_and_respond("4 days in Lisbon", SID)
        assert response.response_type == "itinerary"
        assert response.itinerary.destination == "Lisbon"
        assert response.conversation_state.trip.origin == "London"


class TestLimitsAndFailures:
    def test_too_many_cities(self, fake_llm):
        service = TripChatService(InMemorySessionStore(), llm=fake_llm, max_destinations=2)
        response = service.classify_and_respond(
            "3 days in Paris, 2 days in Rome and 2 days in Berlin from London", SID,
        )
        assert response.response_type == "clarification"
        assert response.question.startswith("I can plan up to 2 cities per trip.")
        assert response.conversation_state.context.destinations == []
        assert fake_llm.chunk_calls() == []

    def test_too_many_days_per_city(self, service):
        response = service.classify_and_respond("40 days in Paris from London", SID)
        assert response.response_type == "clarification"
        assert response.question == (
            "I can plan at most 30 days per city. How many days would you like to spend in Paris?"
        )

    def test_generation_failure_is_reported(self, make_llm):
        service = TripChatService(InMemorySessionStore(), llm=make_llm(fail_for=["Rome"]))
        response = service.classify_and_respond(PARIS_ROME, SID)
        assert response.response_type == "error"
        assert response.message == "Sorry, I couldn't generate your itinerary for Rome. Please try again."
        state = response.conversation_state
        assert state.phase == Phase.GATHERING
        assert state.itinerary is None
        assert "Rome" in state.last_error


# ---------------------------------------------------------------------------
# Modifications
# ---------------------------------------------------------------------------

class TestModifications:
    def test_add_regenerates(self, service):
        _generated(service)
        response = service.classify_and_respond("Add Berlin for 2 days", SID)
        assert response.response_type == "itinerary"
        assert response.message.startswith("Added Berlin (2 days)")
        assert response.itinerary.total_days() == 7
        state = response.conversation_state
        assert state.trip.pairs() == [("Paris", 3), ("Rome", 2), ("Berlin", 2)]
        assert len(state.itinerary_history) == 2

    def test_remove_asks_then_applies(self, service):
        _generated(service)
        ask = service.classify_and_respond("Remove Rome", SID)
        assert ask.response_type == "confirmation"
        assert "Removed Rome" in ask.question
        assert ask.conversation_state.pending_modification is not None

        done = service.classify_and_respond("yes please", SID)
        assert done.response_type == "itinerary"
        assert done.conversation_state.trip.pairs() == [("Paris", 3)]
        assert done.conversation_state.pending_modification is None

    def test_remove_declined(self, service):
        _generated(service)
        service.classify_and_respond("Remove Rome", SID)
        response = service.classify_and_respond("no", SID)
        assert response.response_type == "information"
        assert response.message == "Okay, I'll keep your itinerary as it is."
        assert response.conversation_state.trip.pairs() == [("Paris", 3), ("Rome", 2)]

    def test_unrelated_reply_drops_pending(self, service):
        _generated(service)
        service.classify_and_respond("Remove Rome", SID)
        response = service.classify_and_respond("hello there", SID)
        assert response.response_type == "information"
        assert response.conversation_state.pending_modification is None
        assert response.conversation_state.trip.pairs() == [("Paris", 3), ("Rome", 2)]

    def test_failed_regeneration_keeps_previous_trip(self, make_llm):
        service = TripChatService(InMemorySessionStore(), llm=make_llm(fail_for=["Berlin"]))
        _generated(service)

        failed = service.classify_and_respond("Add Berlin for 2 days", SID)
        assert failed.response_type == "error"
        assert failed.message == "Sorry, I couldn't generate your itinerary for Berlin. Please try again."
        state = failed.conversation_state
        assert state.context.pairs() == [("Paris", 3), ("Rome", 2)]
        assert state.trip.pairs() == [("Paris", 3), ("Rome", 2)]
        assert state.itinerary.total_days() == 5
        assert state.phase == Phase.GENERATED

        nxt = service.classify_and_respond("4 days in Tokyo", SID)
        assert nxt.response_type == "itinerary"
        assert nxt.conversation_state.trip.pairs() == [("Tokyo", 4)]

    def test_invalid_change_is_explained(self, service):
        _generated(service)
        response = service.classify_and_respond("Change Paris to 20 days", SID)
        assert response.response_type == "clarification"
        assert response.question == (
            "Duration must be between 1 and 15 days per city. What would you like to change?"
        )
        assert response.conversation_state.itinerary.total_days() == 5


# ---------------------------------------------------------------------------
# Session bookkeeping
# ---------------------------------------------------------------------------

class TestSessionState:
    def test_history_and_message_count(self, service):
        service.classify_and_respond("5 days in Paris", SID)
        response = service.classify_and_respond("from Berlin", SID)
        state = response.conversation_state
        assert state.metadata.message_count == 2
        assert [t.role for t in state.history] == ["user", "assistant", "user", "assistant"]
        assert state.history[0].intent == "structured"
        assert state.history[2].intent == "origin"

    def test_itinerary_history_is_bounded(self):
        state = ConversationState.new(SID, now=0.0)
        for i in range(MAX_ITINERARY_HISTORY + 2):
            state.push_itinerary(Itinerary(title=f"v{i}", destination="Paris"))
        assert len(state.itinerary_history) == MAX_ITINERARY_HISTORY
        assert state.itinerary_history[-1].title == f"v{MAX_ITINERARY_HISTORY + 1}"
        assert state.itinerary is state.itinerary_history[-1]

    def test_state_json_round_trip(self, service):
        state = _generated(service).conversation_state
        restored = ConversationState.from_json(state.to_json())
        assert restored.phase == Phase.GENERATED
        assert restored.trip == state.trip
        assert restored.itinerary == state.itinerary

    def test_reset(self, service):
        _generated(service)
        assert service.reset(SID) is True
        assert service.get_state(SID) is None
        assert service.reset(SID) is False

    def test_one_lock_per_session(self, service):
        assert service._lock_for("a") is service._lock_for("a")
        assert service._lock_for("a") is not service._lock_for("b")
