"""
Conversation Agent: multi-turn state for one chat session.

Phases:

    GATHERING → CLARIFYING → READY → GENERATING → GENERATED
                                          ↓
                                        FAILED → GATHERING

Every user message goes through ``TripChatService.classify_and_respond``:

  1. a parked modification is confirmed / cancelled / dropped
  2. an outstanding "Where are you traveling from?" is answered
  3. otherwise the IntentAgent classifies the text and the result is
     merged into the session context (latest value wins)
  4. when every destination has a duration the trip is generated

Requests for the same session are serialised with a per-session lock.
"""

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Optional

from dataclasses_json import dataclass_json

from nomad import config
from nomad.agents.destination_parser import clean_name, extract, extract_origin
from nomad.agents.IntentAgent import FALLBACK_QUESTION, Classification, IntentAgent, SessionContext
from nomad.agents.itinerary_agent import ItineraryAgent
from nomad.agents.ModificationAgent import ModificationAgent
from nomad.errors import GenerationError, ValidationError
from nomad.TripInfo import (
    Itinerary,
    ModificationResult,
    ParsedDestination,
    ParsedTrip,
    names_match,
)

logger = logging.getLogger(__name__)

ORIGIN_QUESTION = "Where are you traveling from?"
MAX_ITINERARY_HISTORY = 10

_AFFIRM_RE = re.compile(
    r"^\s*(yes|yeah|yep|yup|sure|ok|okay|go\s+ahead|do\s+it|proceed|confirm|sounds\s+good)\b", re.I,
)
_NEGATE_RE = re.compile(r"^\s*(no|nope|nah|cancel|never\s*mind|don'?t|stop)\b", re.I)
_SKIP_ORIGIN_RE = re.compile(
    r"\b(skip|doesn'?t\s+matter|does\s+not\s+matter|no\s+preference|not\s+sure|"
    r"don'?t\s+know|nowhere|anywhere|none|n/?a)\b|^\s*no\s*$",
    re.I,
)


class Phase(str, Enum):
    GATHERING = "gathering"
    CLARIFYING = "clarifying"
    READY = "ready"
    GENERATING = "generating"
    GENERATED = "generated"
    FAILED = "failed"


@dataclass_json
@dataclass
class Turn:
    role: str                     # user | assistant
    content: str
    intent: Optional[str] = None
    timestamp: float = 0.0


@dataclass_json
@dataclass
class TripContext:
    destinations: list[ParsedDestination] = field(default_factory=list)
    origin: Optional[str] = None
    preferences: dict[str, Any] = field(default_factory=dict)
    constraints: list[str] = field(default_factory=list)
    stated_days: Optional[int] = None
    start_date: Optional[str] = None
    awaiting_origin: bool = False
    origin_declined: bool = False

    def pairs(self) -> list[tuple[str, int]]:
        return [(d.name, d.duration) for d in self.destinations]

    def set_pairs(self, pairs) -> None:
        self.destinations = ParsedTrip.build(pairs).destinations

    def to_trip(self) -> ParsedTrip:
        return ParsedTrip.build(
            self.pairs(),
            origin=self.origin,
            stated_days=self.stated_days,
            start_date=self.start_date,
        )


@dataclass_json
@dataclass
class SessionMetadata:
    message_count: int = 0
    start_time: float = 0.0
    last_activity: float = 0.0


@dataclass_json
@dataclass
class ConversationState:
    session_id: str
    phase: Phase = Phase.GATHERING
    context: TripContext = field(default_factory=TripContext)
    history: list[Turn] = field(default_factory=list)
    metadata: SessionMetadata = field(default_factory=SessionMetadata)
    trip: Optional[ParsedTrip] = None
    itinerary: Optional[Itinerary] = None
    itinerary_history: list[Itinerary] = field(default_factory=list)
    pending_modification: Optional[ModificationResult] = None
    last_error: Optional[str] = None

    @classmethod
    def new(cls, session_id: str, now: Optional[float] = None) -> "ConversationState":
        now = time.time() if now is None else now
        return cls(session_id=session_id, metadata=SessionMetadata(0, now, now))

    def add_turn(self, role: str, content: str, intent: Optional[str] = None,
                 now: Optional[float] = None) -> Turn:
        now = time.time() if now is None else now
        turn = Turn(role=role, content=content, intent=intent, timestamp=now)
        self.history.append(turn)
        if role == "user":
            self.metadata.message_count += 1
        self.metadata.last_activity = now
        return turn

    def push_itinerary(self, itinerary: Itinerary) -> None:
        self.itinerary = itinerary
        self.itinerary_history.append(itinerary)
        del self.itinerary_history[:-MAX_ITINERARY_HISTORY]


@dataclass_json
@dataclass
class ChatResponse:
    response_type: str            # itinerary | clarification | confirmation | information | error
    message: str = ""
    itinerary: Optional[Itinerary] = None
    question: Optional[str] = None
    conversation_state: Optional[ConversationState] = None


def _join_names(names: list[str]) -> str:
    if len(names) <= 1:
        return "".join(names)
    return ", ".join(names[:-1]) + " and " + names[-1]


def _split_evenly(total: int, count: int) -> list[int]:
    base, remainder = divmod(total, count)
    return [base + (1 if i < remainder else 0) for i in range(count)]


# ---------------------------------------------------------------------------
# Merge rule
# ---------------------------------------------------------------------------

def merge_into_context(context: TripContext, trip: ParsedTrip,
                       preferences: Optional[dict] = None) -> bool:
    """Fold newly extracted facts into *context* in place; returns True if anything changed."""
    before = context.to_json()
    pairs = context.pairs()

    for dest in trip.destinations:
        for i, (name, days) in enumerate(pairs):
            if names_match(name, dest.name):
                if dest.duration > 0:
                    pairs[i] = (name, dest.duration)
                break
        else:
            pairs.append((dest.name, dest.duration))

    if trip.stated_days and not trip.destinations:
        context.stated_days = trip.stated_days

    unresolved = [i for i, (_, days) in enumerate(pairs) if days == 0]
    if context.stated_days and unresolved and context.stated_days >= len(unresolved):
        for i, days in zip(unresolved, _split_evenly(context.stated_days, len(unresolved))):
            pairs[i] = (pairs[i][0], days)
        context.stated_days = None

    context.set_pairs(pairs)
    if trip.origin:
        context.origin = trip.origin
    if trip.start_date:
        context.start_date = trip.start_date
    if preferences:
        context.preferences.update(preferences)
    return context.to_json() != before


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class TripChatService:
    """Glue between the store, the classifier, the generator and the modifier."""

    def __init__(
        self,
        store,
        llm=None,
        classifier: Optional[IntentAgent] = None,
        generator: Optional[ItineraryAgent] = None,
        modifier: Optional[ModificationAgent] = None,
        max_destinations: int = config.PLANNING_MAX_DESTINATIONS,
        max_days_per_city: int = config.PLANNING_MAX_DAYS_PER_CITY,
        clock=time.time,
    ):
        self.store = store
        self.classifier = classifier or IntentAgent(llm)
        self.generator = generator or ItineraryAgent(llm)
        self.modifier = modifier or ModificationAgent()
        self.max_destinations = max_destinations
        self.max_days_per_city = max_days_per_city
        self._clock = clock
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, session_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(session_id, threading.Lock())

    # -- session access ------------------------------------------------------

    def get_state(self, session_id: str) -> Optional[ConversationState]:
        return self.store.get(session_id)

    def reset(self, session_id: str) -> bool:
        with self._lock_for(session_id):
            return self.store.delete(session_id)

    # -- main entry ----------------------------------------------------------

    def classify_and_respond(self, text: str, session_id: str) -> ChatResponse:
        with self._lock_for(session_id):
            now = self._clock()
            state = self.store.get(session_id) or ConversationState.new(session_id, now)
            user_turn = state.add_turn("user", text, now=now)

            response = self._handle(state, text, user_turn)

            state.add_turn(
                "assistant",
                response.question or response.message,
                intent=response.response_type,
                now=self._clock(),
            )
            self.store.put(state)
            response.conversation_state = state
            logger.info(
                "Session %s: %s → %s (phase=%s)",
                session_id, text[:60], response.response_type, state.phase.value,
            )
            return response

    def _handle(self, state: ConversationState, text: str, user_turn: Turn) -> ChatResponse:
        if state.pending_modification is not None:
            pending = state.pending_modification
            state.pending_modification = None
            if _AFFIRM_RE.search(text):
                user_turn.intent = "confirmation"
                return self._apply_modification(state, pending)
            if _NEGATE_RE.search(text):
                user_turn.intent = "confirmation"
                return ChatResponse("information", message="Okay, I'll keep your itinerary as it is.")
            logger.info("Dropping pending %s for new message", pending.modification_type)

        if state.context.awaiting_origin:
            answered = self._answer_origin(state, text)
            if answered is not None:
                user_turn.intent = "origin"
                return answered

        classification = self.classifier.classify(text, SessionContext(
            has_itinerary=state.itinerary is not None,
            trip=state.trip,
            collected=state.context.to_dict(),
        ))
        user_turn.intent = classification.type

        if classification.type == "modification":
            return self._modify(state, text)
        return self._gather(state, text, classification)

    # -- gathering -----------------------------------------------------------

    def _check_limits(self, context: TripContext) -> None:
        if len(context.destinations) > self.max_destinations:
            raise ValidationError(
                f"I can plan up to {self.max_destinations} cities per trip. "
                f"Which {self.max_destinations} of {_join_names([d.name for d in context.destinations])} "
                f"would you like to keep?",
                field="destinations",
            )
        for dest in context.destinations:
            if dest.duration > self.max_days_per_city:
                raise ValidationError(
                    f"I can plan at most {self.max_days_per_city} days per city. "
                    f"How many days would you like to spend in {dest.name}?",
                    field="duration",
                )

    def _gather(self, state: ConversationState, text: str,
                classification: Classification) -> ChatResponse:
        extracted = classification.extracted
        has_facts = bool(
            extracted.destinations or extracted.origin or extracted.stated_days
            or classification.preferences
        )

        if classification.type == "conversational" and not has_facts:
            if classification.reply:
                return ChatResponse("information", message=classification.reply)
            return self._ask(state, Phase.GATHERING, classification.question or FALLBACK_QUESTION)

        candidate = TripContext.from_dict(state.context.to_dict())
        if state.phase == Phase.GENERATED and classification.type == "structured":
            candidate.destinations = []
            candidate.stated_days = None
        changed = merge_into_context(candidate, extracted, classification.preferences)

        try:
            self._check_limits(candidate)
        except ValidationError as exc:
            logger.info("Planning limit hit for %s: %s", state.session_id, exc)
            return self._ask(state, Phase.CLARIFYING, str(exc))

        state.context = candidate
        if changed:
            state.context.constraints.append(text)

        if state.phase == Phase.GENERATED and not changed:
            if classification.reply:
                return ChatResponse("information", message=classification.reply)
            return self._ask(state, Phase.GENERATED, classification.question or FALLBACK_QUESTION)

        return self._advance(state)

    def _advance(self, state: ConversationState) -> ChatResponse:
        ctx = state.context
        unresolved = [d.name for d in ctx.destinations if d.duration == 0]

        if not ctx.destinations and not ctx.stated_days:
            return self._ask(state, Phase.GATHERING, FALLBACK_QUESTION)
        if unresolved:
            return self._ask(
                state, Phase.CLARIFYING,
                f"How many days would you like to spend in {_join_names(unresolved)}?",
            )
        if not ctx.destinations:
            return self._ask(
                state, Phase.CLARIFYING,
                f"Which city would you like to visit for your {ctx.stated_days}-day trip?",
            )

        state.phase = Phase.READY
        if not ctx.origin and not ctx.origin_declined:
            ctx.awaiting_origin = True
            return ChatResponse("clarification", question=ORIGIN_QUESTION)
        return self._generate(state, ctx.to_trip())

    def _ask(self, state: ConversationState, phase: Phase, question: str) -> ChatResponse:
        state.phase = phase
        return ChatResponse("clarification", question=question)

    def _answer_origin(self, state: ConversationState, text: str) -> Optional[ChatResponse]:
        """Handle the reply to ORIGIN_QUESTION; None means "treat as a new message"."""
        ctx = state.context
        ctx.awaiting_origin = False

        if _SKIP_ORIGIN_RE.search(text):
            ctx.origin_declined = True
            return self._generate(state, ctx.to_trip())

        if extract(text).destinations:
            return None

        origin, _ = extract_origin(text)
        origin = origin or clean_name(text.strip(" .!?"))
        if origin:
            ctx.origin = origin
        else:
            ctx.origin_declined = True
        return self._generate(state, ctx.to_trip())

    # -- generation ----------------------------------------------------------

    def _generate(self, state: ConversationState, trip: ParsedTrip,
                  intro: Optional[str] = None) -> ChatResponse:
        state.phase = Phase.GENERATING
        start = date.fromisoformat(trip.start_date) if trip.start_date else None
        try:
            itinerary = self.generator.generate(
                trip,
                start_date=start,
                preferences=state.context.preferences,
                context_text="; ".join(state.context.constraints),
            )
        except GenerationError as exc:
            state.phase = Phase.FAILED
            state.last_error = str(exc)
            logger.warning("Generation failed for session %s: %s", state.session_id, exc)
            state.phase = Phase.GATHERING
            where = f" for {exc.destination}" if exc.destination else ""
            return ChatResponse(
                "error",
                message=f"Sorry, I couldn't generate your itinerary{where}. Please try again.",
            )
        except ValidationError as exc:
            return self._ask(state, Phase.CLARIFYING, str(exc))

        state.trip = trip
        state.last_error = None
        state.push_itinerary(itinerary)
        state.phase = Phase.GENERATED
        message = f"Here's your {itinerary.title}!"
        if intro:
            message = f"{intro}. {message}"
        return ChatResponse("itinerary", message=message, itinerary=itinerary)

    # -- modification --------------------------------------------------------

    def _modify(self, state: ConversationState, text: str) -> ChatResponse:
        result = self.modifier.modify(text, state.trip, state.context.preferences)
        if not result.success:
            return ChatResponse(
                "clarification",
                message=result.changes.summary,
                question=f"{result.reason}. What would you like to change?",
            )
        if result.requires_confirmation:
            state.pending_modification = result
            return ChatResponse("confirmation", question=result.confirmation_prompt)
        return self._apply_modification(state, result)

    def _apply_modification(self, state: ConversationState,
                            result: ModificationResult) -> ChatResponse:
        after = result.changes.after
        previous = state.context
        ctx = TripContext.from_dict(previous.to_dict())
        ctx.set_pairs(after.pairs())
        ctx.stated_days = None
        ctx.preferences = dict(result.preferences or ctx.preferences)
        ctx.start_date = result.start_date
        trip = ParsedTrip.build(
            after.pairs(), origin=ctx.origin, return_to=after.return_to, start_date=result.start_date,
        )

        state.context = ctx
        response = self._generate(state, trip, intro=result.changes.summary)
        if response.response_type != "itinerary":
            # The edit only sticks once its itinerary exists.
            state.context = previous
            if state.itinerary is not None:
                state.phase = Phase.GENERATED
        return response
