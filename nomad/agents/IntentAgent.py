"""
Intent Agent: decides what a chat message is.

Strategies are tried in order; the first candidate whose confidence clears
the threshold wins.  The conversational fallback always answers.

  ModificationMatch       session has an itinerary + text edits it
  StructuredMatch         every extracted destination has a duration
  AmbiguousMatch          city without duration, or duration without city
  ConversationalFallback  ask the LLM (JSON mode) for trip facts + a reply

Classification has no side effects; ConversationAgent applies the result.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from dataclasses_json import dataclass_json

from nomad import config
from nomad.agents.destination_parser import clean_name, extract
from nomad.agents.ModificationAgent import ModificationAgent, detect_modification
from nomad.errors import LLMError
from nomad.TripInfo import ModificationRequest, ParsedTrip

logger = logging.getLogger(__name__)

FALLBACK_QUESTION = "Where would you like to go, and for how many days?"


@dataclass_json
@dataclass
class Classification:
    type: str                     # modification | structured | ambiguous | conversational
    confidence: float
    extracted: ParsedTrip = field(default_factory=ParsedTrip)
    question: Optional[str] = None
    missing_field: Optional[str] = None
    reply: Optional[str] = None
    preferences: dict[str, Any] = field(default_factory=dict)
    modification: Optional[ModificationRequest] = None


@dataclass
class SessionContext:
    """What the classifier may know about the session (read-only)."""
    has_itinerary: bool = False
    trip: Optional[ParsedTrip] = None
    collected: dict[str, Any] = field(default_factory=dict)


def _join_names(names: list[str]) -> str:
    if len(names) <= 1:
        return "".join(names)
    return ", ".join(names[:-1]) + " and " + names[-1]


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class ModificationMatch:
    name = "modification"

    def evaluate(self, text: str, ctx: SessionContext, extracted: ParsedTrip) -> Optional[Classification]:
        if not ctx.has_itinerary or ctx.trip is None:
            return None
        request = detect_modification(text, ctx.trip)
        if request is None:
            return None
        return Classification(
            type="modification",
            confidence=ModificationAgent().confidence(request, text),
            extracted=extracted,
            modification=request,
        )


class StructuredMatch:
    name = "structured"

    def evaluate(self, text: str, ctx: SessionContext, extracted: ParsedTrip) -> Optional[Classification]:
        if not extracted.is_resolved():
            return None
        confidence = 0.95 if extracted.origin else 0.9
        return Classification(type="structured", confidence=confidence, extracted=extracted)


class AmbiguousMatch:
    name = "ambiguous"

    def evaluate(self, text: str, ctx: SessionContext, extracted: ParsedTrip) -> Optional[Classification]:
        unresolved = [d.name for d in extracted.destinations if d.duration == 0]
        if unresolved:
            return Classification(
                type="ambiguous",
                confidence=0.75,
                extracted=extracted,
                question=f"How many days would you like to spend in {_join_names(unresolved)}?",
                missing_field="duration",
            )
        if extracted.stated_days and not extracted.destinations:
            return Classification(
                type="ambiguous",
                confidence=0.7,
                extracted=extracted,
                question=f"Which city would you like to visit for your {extracted.stated_days}-day trip?",
                missing_field="destination",
            )
        return None


_CONVERSATIONAL_SYSTEM = """\
You are a friendly travel assistant that extracts trip-planning facts from \
chat messages. Only report facts the user actually stated. \
Respond with a single JSON object and nothing else:
{"destinations": [{"name": "<city>", "days": <int or 0 if not stated>}],
 "origin": "<city or null>",
 "preferences": {"<key>": "<value>"},
 "reply": "<one short, natural sentence answering or asking the user>"}"""


class ConversationalFallback:
    name = "conversational"

    def __init__(self, llm=None):
        self.llm = llm

    def evaluate(self, text: str, ctx: SessionContext, extracted: ParsedTrip) -> Classification:
        if self.llm is None:
            return self._degraded(extracted)

        prompt = (
            f"Collected so far: {json.dumps(ctx.collected, default=str)}\n"
            f'User message: "{text}"'
        )
        try:
            result = self.llm.complete_json(_CONVERSATIONAL_SYSTEM, prompt, temperature=0.3)
        except LLMError as exc:
            logger.warning("Conversational classification failed: %s", exc)
            return self._degraded(extracted)
        if not isinstance(result, dict):
            logger.warning("Conversational classification returned %s, expected object", type(result).__name__)
            return self._degraded(extracted)

        trip = self._trip_from_reply(result, extracted)
        preferences = result.get("preferences") or {}
        if not isinstance(preferences, dict):
            preferences = {}
        reply = result.get("reply") or None
        has_facts = bool(trip.destinations or trip.origin or preferences)
        return Classification(
            type="conversational",
            confidence=0.6 if has_facts else 0.5,
            extracted=trip,
            reply=reply,
            preferences={str(k): v for k, v in preferences.items()},
        )

    @staticmethod
    def _trip_from_reply(result: dict, extracted: ParsedTrip) -> ParsedTrip:
        pairs = []
        for item in result.get("destinations") or []:
            if not isinstance(item, dict):
                continue
            name = clean_name(str(item.get("name") or ""))
            try:
                days = max(int(item.get("days") or 0), 0)
            except (TypeError, ValueError):
                days = 0
            if name and name.lower() not in (p[0].lower() for p in pairs):
                pairs.append((name, days))
        origin = result.get("origin")
        origin = clean_name(str(origin)) if origin else None
        return ParsedTrip.build(
            pairs,
            origin=origin or extracted.origin,
            return_to=extracted.return_to,
            stated_days=None if pairs else extracted.stated_days,
        )

    @staticmethod
    def _degraded(extracted: ParsedTrip) -> Classification:
        return Classification(
            type="conversational",
            confidence=0.1,
            extracted=extracted,
            question=FALLBACK_QUESTION,
            missing_field="destination",
        )


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

class IntentAgent:
    def __init__(self, llm=None, threshold: float = config.CLASSIFIER_CONFIDENCE_THRESHOLD):
        self.threshold = threshold
        self.strategies = [
            ModificationMatch(),
            StructuredMatch(),
            AmbiguousMatch(),
        ]
        self.fallback = ConversationalFallback(llm)

    def classify(self, text: str, session_context: Optional[SessionContext] = None) -> Classification:
        ctx = session_context or SessionContext()
        extracted = extract(text)

        for strategy in self.strategies:
            candidate = strategy.evaluate(text, ctx, extracted)
            if candidate is not None and candidate.confidence >= self.threshold:
                logger.info(
                    "Classified %r as %s (confidence %.2f)",
                    text[:80], candidate.type, candidate.confidence,
                )
                return candidate

        result = self.fallback.evaluate(text, ctx, extracted)
        logger.info("Classified %r as conversational (confidence %.2f)", text[:80], result.confidence)
        return result
