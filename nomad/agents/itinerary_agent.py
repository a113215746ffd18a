"""
Chunked Itinerary Agent: one LLM call per destination.

    [Lisbon 3, Granada 2]
      → chunk Lisbon  days 1-3   (1 LLM call)
      → chunk Granada days 4-5   (1 LLM call)
      → "Travel from Lisbon to Granada" prepended to day 4
      → quick tips               (1 LLM call, generic fallback)

Chunks run sequentially and every chunk must come back with real content:
any failure aborts the whole generation with a GenerationError naming the
destination.  There is no placeholder itinerary.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Optional

from nomad.agents.destination_parser import build_structured_prompt
from nomad.errors import GenerationError, LLMError, ValidationError
from nomad.TripInfo import ACTIVITY_CATEGORIES, Activity, Day, Itinerary, ParsedTrip

logger = logging.getLogger(__name__)

GENERIC_DESTINATION = "Your Destination"

GENERIC_TIPS = [
    "Check the weather forecast before packing",
    "Book accommodations in advance for better rates",
    "Learn a few basic local phrases",
    "Keep digital and paper copies of important documents",
    "Check visa and entry requirements before you travel",
]

# LLM category → one of ACTIVITY_CATEGORIES
_CATEGORY_ALIASES = {
    "attraction": "Leisure",
    "sightseeing": "Leisure",
    "culture": "Leisure",
    "activity": "Leisure",
    "restaurant": "Food",
    "meal": "Food",
    "dining": "Food",
    "cafe": "Food",
    "hotel": "Accommodation",
    "lodging": "Accommodation",
    "transport": "Travel",
    "transportation": "Travel",
    "transit": "Travel",
    "coworking": "Work",
    "business": "Work",
}


@dataclass
class DestinationChunk:
    destination: str
    days: int
    start_day: int
    end_day: int


def plan_chunks(trip: ParsedTrip) -> list[DestinationChunk]:
    """Partition the trip into contiguous day ranges, one per destination."""
    if not trip.destinations:
        if trip.stated_days:
            return [DestinationChunk(GENERIC_DESTINATION, trip.stated_days, 1, trip.stated_days)]
        raise ValidationError("No destinations to plan", field="destinations")

    unresolved = [d.name for d in trip.destinations if d.duration <= 0]
    if unresolved:
        raise ValidationError(
            f"Missing duration for {', '.join(unresolved)}", field="duration",
        )

    chunks = []
    day = 1
    for dest in trip.destinations:
        chunks.append(DestinationChunk(dest.name, dest.duration, day, day + dest.duration - 1))
        day += dest.duration
    return chunks


def next_monday(today: Optional[date] = None) -> date:
    today = today or date.today()
    return today + timedelta(days=(7 - today.weekday()) % 7 or 7)


def normalise_category(raw: Any) -> str:
    value = str(raw or "").strip()
    if value in ACTIVITY_CATEGORIES:
        return value
    for category in ACTIVITY_CATEGORIES:
        if value.lower() == category.lower():
            return category
    return _CATEGORY_ALIASES.get(value.lower(), "Leisure")


_CHUNK_SYSTEM = """\
You are an expert itinerary designer. Plan realistic days with named places \
and local food. Use only generic area descriptions for addresses (e.g. \
"Downtown {destination}", "{destination} old town"), never street numbers. \
Respond with a JSON object only:
{{"days": [{{"day": <int>, "date": "YYYY-MM-DD", "title": "<string>",
  "activities": [{{"time": "<string>", "description": "<string>",
    "category": "Work|Leisure|Food|Travel|Accommodation",
    "address": "<area>, {destination}"}}]}}]}}"""


class ItineraryAgent:
    def __init__(self, llm):
        self.llm = llm

    # ------------------------------------------------------------------
    # chunk generation
    # ------------------------------------------------------------------

    def _chunk_prompt(self, chunk: DestinationChunk, chunk_start: date,
                      trip_context: str, preferences: dict) -> str:
        prefs = ", ".join(f"{k}: {v}" for k, v in preferences.items()) or "none stated"
        return (
            f"Create a {chunk.days}-day itinerary for {chunk.destination}.\n"
            f"Days are numbered {chunk.start_day} to {chunk.end_day}; "
            f"day {chunk.start_day} is {chunk_start.isoformat()}.\n"
            f"Include 4-5 activities per day.\n"
            f"Traveler preferences: {prefs}\n\n"
            f"Context for the whole trip:\n{trip_context}"
        )

    def _generate_chunk(self, chunk: DestinationChunk, start: date,
                        trip_context: str, preferences: dict) -> list[Day]:
        chunk_start = start + timedelta(days=chunk.start_day - 1)
        system = _CHUNK_SYSTEM.format(destination=chunk.destination)
        prompt = self._chunk_prompt(chunk, chunk_start, trip_context, preferences)

        try:
            result = self.llm.complete_json(system, prompt, temperature=0.7)
        except LLMError as exc:
            logger.warning("Chunk generation failed for %s: %s", chunk.destination, exc)
            raise GenerationError(
                f"Failed to generate itinerary for {chunk.destination}: {exc}",
                destination=chunk.destination,
            ) from exc

        raw_days = (result.get("days") or result.get("itinerary")) if isinstance(result, dict) else result
        if not isinstance(raw_days, list) or len(raw_days) < chunk.days:
            got = len(raw_days) if isinstance(raw_days, list) else 0
            raise GenerationError(
                f"Failed to generate itinerary for {chunk.destination}: "
                f"expected {chunk.days} days, got {got}",
                destination=chunk.destination,
            )
        if len(raw_days) > chunk.days:
            logger.info("Dropping %d extra day(s) returned for %s",
                        len(raw_days) - chunk.days, chunk.destination)

        days = []
        for offset, raw in enumerate(raw_days[:chunk.days]):
            if not isinstance(raw, dict):
                raise GenerationError(
                    f"Failed to generate itinerary for {chunk.destination}: malformed day entry",
                    destination=chunk.destination,
                )
            number = chunk.start_day + offset
            days.append(Day(
                day=number,
                date=(start + timedelta(days=number - 1)).isoformat(),
                title=str(raw.get("title") or f"Day {number} in {chunk.destination}"),
                activities=self._activities(raw.get("activities"), chunk.destination),
                destination=chunk.destination,
            ))
        return days

    @staticmethod
    def _activities(raw_activities: Any, destination: str) -> list[Activity]:
        activities = []
        for item in raw_activities or []:
            if not isinstance(item, dict) or not item.get("description"):
                continue
            activities.append(Activity(
                time=str(item.get("time") or ""),
                description=str(item["description"]),
                category=normalise_category(item.get("category")),
                address=str(item.get("address") or destination),
            ))
        return activities

    # ------------------------------------------------------------------
    # tips
    # ------------------------------------------------------------------

    def _quick_tips(self, names: str) -> list[str]:
        try:
            result = self.llm.complete_json(
                'Return a JSON object with a "tips" array containing exactly 5 short travel tips.',
                f"Generate 5 travel tips for a trip to: {names}.",
                temperature=0.5,
            )
        except LLMError as exc:
            logger.warning("Quick tips generation failed, using generic tips: %s", exc)
            return list(GENERIC_TIPS)

        tips = (result.get("tips") or result.get("quickTips")) if isinstance(result, dict) else result
        tips = [str(t) for t in tips if t] if isinstance(tips, list) else []
        if not tips:
            logger.warning("Quick tips response had no tips, using generic tips")
            return list(GENERIC_TIPS)
        return tips[:5]

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    def generate(
        self,
        trip: ParsedTrip,
        *,
        start_date: Optional[date] = None,
        preferences: Optional[dict] = None,
        context_text: str = "",
    ) -> Itinerary:
        """Generate the full itinerary; raises GenerationError on any chunk failure."""
        chunks = plan_chunks(trip)
        if start_date is None and trip.start_date:
            start_date = date.fromisoformat(trip.start_date)
        start = start_date or next_monday()
        preferences = preferences or {}
        trip_context = build_structured_prompt(trip, context_text) if trip.destinations else context_text

        logger.info(
            "Generating itinerary: %s starting %s",
            json.dumps([(c.destination, c.days) for c in chunks]), start.isoformat(),
        )

        days: list[Day] = []
        for chunk in chunks:
            days.extend(self._generate_chunk(chunk, start, trip_context, preferences))
            logger.info("Chunk done: %s (days %d-%d)", chunk.destination, chunk.start_day, chunk.end_day)
        days.sort(key=lambda d: d.day)

        for prev, nxt in zip(chunks, chunks[1:]):
            first_day = days[nxt.start_day - 1]
            first_day.activities.insert(0, Activity(
                time="Morning",
                description=f"Travel from {prev.destination} to {nxt.destination}",
                category="Travel",
                address=f"Flight/Travel to {nxt.destination}",
            ))

        names = ", ".join(c.destination for c in chunks)
        total = sum(c.days for c in chunks)
        return Itinerary(
            title=f"{total}-Day Adventure to {names}",
            destination=names,
            days=days,
            quick_tips=self._quick_tips(names),
        )
