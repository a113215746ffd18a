"""
Modification Agent: edits an existing trip from a chat message.

    DETECT → VALIDATE → APPLY → DIFF → DECIDE_CONFIRMATION

Detection is pattern based (no LLM).  Every failure comes back as a
ModificationResult with success=False and a human-readable reason; nothing
here raises for bad user input.  The input trip is never mutated.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import replace
from datetime import date
from typing import Optional, Union

from nomad import config
from nomad.agents.destination_parser import NOISE_WORDS, clean_name
from nomad.TripInfo import (
    Itinerary,
    ModificationChanges,
    ModificationDiff,
    ModificationMetadata,
    ModificationRequest,
    ModificationResult,
    ParsedTrip,
    trip_from_itinerary,
)

logger = logging.getLogger(__name__)

DEFAULT_ADDED_DAYS = 3
CONFIRM_TOTAL_CHANGE_OVER = 3

_CITY = r"(?P<{name}>[A-Za-z][A-Za-z'\-]*(?:\s+[A-Za-z][A-Za-z'\-]*){{0,3}}?)"
_END = (
    r"(?=\s*(?:[,.;:!?]|$)"
    r"|\s+(?:for|from|to|and|with|instead|please|too|as\s+well|by|on)\b)"
)


def _city(name: str = "city") -> str:
    return _CITY.format(name=name)


def _rx(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.I)


_STAY = r"(?:(?:my\s+|the\s+)?(?:stay|time|days)\s+in\s+|the\s+duration\s+(?:of|in)\s+)?"

_NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11,
    "twelve": 12, "thirteen": 13, "fourteen": 14, "fifteen": 15,
    "twenty": 20, "thirty": 30,
}

# A day count written as digits or as a word ("5", "five").
_N = r"(?:\d+|(?:" + "|".join(_NUMBER_WORDS) + r")\b)"


def _to_int(raw: str) -> int:
    raw = raw.lower()
    return int(raw) if raw.isdigit() else _NUMBER_WORDS[raw]


_REPLACE_PATTERNS = [
    _rx(rf"\breplace\s+{_city('old')}\s+with\s+{_city('new')}{_END}"),
    _rx(rf"\bswap\s+{_city('old')}\s+(?:for|with)\s+{_city('new')}{_END}"),
    _rx(rf"\binstead\s+of\s+{_city('old')}\s*,?\s+(?:let'?s\s+|i'?d\s+like\s+to\s+|can\s+we\s+|i\s+want\s+to\s+)?"
        rf"(?:visit|go\s+to|see|do)\s+{_city('new')}{_END}"),
    _rx(rf"\b(?:visit|go\s+to|see)\s+{_city('new')}\s+instead\s+of\s+{_city('old')}{_END}"),
    _rx(rf"\bchange\s+{_city('old')}\s+to\s+(?!{_N}){_city('new')}{_END}"),
]

# (pattern, sign, known_only): sign 0 = absolute value, +1/-1 = relative to
# the current duration; known_only patterns are skipped for cities not in the trip
_DURATION_PATTERNS = [
    (_rx(rf"\b(?:extend|lengthen)\s+{_STAY}{_city()}\s+by\s+(?P<n>{_N})\s*(?:more\s+)?days?"), 1, False),
    (_rx(rf"\b(?:shorten|cut|reduce|trim)\s+{_STAY}{_city()}\s+by\s+(?P<n>{_N})\s*days?"), -1, False),
    (_rx(rf"\badd\s+(?P<n>{_N})\s+(?:more\s+|extra\s+|additional\s+)?days?\s+(?:in|to|at)\s+{_city()}{_END}"), 1, True),
    (_rx(rf"\bchange\s+{_STAY}{_city()}\s+to\s+(?P<n>{_N})\s*days?"), 0, False),
    (_rx(rf"\b(?:spend|stay)\s+(?:only\s+|just\s+)?(?P<n>{_N})\s*days?\s+in\s+{_city()}\s+instead"), 0, False),
    (_rx(rf"\bmake\s+(?!(?:it|the\s+trip|my\s+trip)\b){_city()}\s+(?P<n>{_N})\s*days?"), 0, False),
    (_rx(rf"\b(?P<n>{_N})\s*days?\s+in\s+{_city()}\s+instead"), 0, False),
]

_REMOVE_PATTERNS = [
    _rx(rf"\b(?:remove|skip|drop|delete|exclude|cut)\s+{_city()}"
        rf"(?:\s+from\s+(?:the\s+|my\s+)?(?:trip|itinerary|plan))?{_END}"),
    _rx(rf"\b(?:don'?t|do\s+not|no\s+longer)\s+(?:want\s+to\s+)?(?:visit|go\s+to|see)\s+{_city()}{_END}"),
    _rx(rf"\b(?:get\s+rid\s+of|take\s+out)\s+{_city()}{_END}"),
]

_ADD_PATTERNS = [
    _rx(rf"\badd\s+(?P<n>{_N})\s+(?:more\s+|extra\s+)?days?\s+(?:in|to|at)\s+{_city()}{_END}"),
    _rx(rf"\b(?:also\s+(?:visit|go\s+to|see)|add|include|throw\s+in)\s+{_city()}{_END}"),
]

_ADD_DAYS_RE = _rx(rf"(?:for\s+)?(?P<n>{_N})\s*(?:more\s+)?(?:days?|nights?)")

_DATE_PATTERNS = [
    _rx(r"\b(?:start|begin|leave|depart)(?:ing)?\s+(?:the\s+trip\s+)?(?:on|from)\s+(?P<date>\S+)"),
    _rx(r"\b(?:move|shift|push|change)\s+(?:the\s+|my\s+)?(?:trip|dates?|start(?:\s+date)?)\s+to\s+(?P<date>\S+)"),
]

_PREF_END = r"(?=\s*(?:[,.;:!?]|$)|\s+(?:please|instead|for|in|and)\b)"
_PREFERENCE_PATTERNS = [
    _rx(rf"\bmake\s+(?:it|the\s+trip|the\s+itinerary|my\s+trip)\s+(?:more\s+)?(?P<pref>[a-z][a-z\-\s]*?){_PREF_END}"),
    _rx(rf"\b(?:focus|concentrate)\s+(?:more\s+)?on\s+(?P<pref>[a-z][a-z\-\s]*?){_PREF_END}"),
    _rx(r"\b(?:more|less)\s+(?P<pref>[a-z][a-z\-]+)\s+(?:activities|stuff|things|focused)\b"),
    _rx(rf"\b(?:add|include|throw\s+in)\s+(?:more|some|extra|a\s+few)\s+(?P<pref>[a-z][a-z\-\s]*?){_PREF_END}"),
]

_NOT_PREFERENCES = {"days", "day", "nights", "night", "time", "longer", "shorter"}

_CUE_RE = re.compile(r"\b(add|remove|change)\b", re.I)


# ---------------------------------------------------------------------------
# DETECT
# ---------------------------------------------------------------------------

def _clean_target(raw: Optional[str], trip: ParsedTrip) -> Optional[str]:
    """Strip filler words; prefer the spelling already used in the trip."""
    if not raw:
        return None
    words = re.sub(r"[^\w\s'\-]", " ", raw).split()
    while words and words[0].lower() in NOISE_WORDS:
        words.pop(0)
    while words and words[-1].lower() in NOISE_WORDS:
        words.pop()
    if not words:
        return None
    name = " ".join(words)
    idx = trip.find(name)
    if idx is not None:
        return trip.destinations[idx].name
    return name.title() if name.islower() else name


def _place_target(raw: Optional[str], trip: ParsedTrip) -> Optional[str]:
    """Like _clean_target, but None unless the words name a place."""
    target = _clean_target(raw, trip)
    if target and (trip.find(target) is not None or clean_name(raw)):
        return target
    return None


def detect_modification(text: str, trip: ParsedTrip) -> Optional[ModificationRequest]:
    """Return the first modification family that matches *text*, or None."""
    text = text or ""

    for pattern in _REPLACE_PATTERNS:
        m = pattern.search(text)
        if m:
            new = _place_target(m.group("new"), trip)
            if new is None:
                continue
            return ModificationRequest(
                type="replace_destination",
                target=_clean_target(m.group("old"), trip),
                value=new,
                context=text,
            )

    for pattern, sign, known_only in _DURATION_PATTERNS:
        m = pattern.search(text)
        if not m:
            continue
        target = _clean_target(m.group("city"), trip)
        n = _to_int(m.group("n"))
        if sign == 0:
            return ModificationRequest("change_duration", target, n, text)
        idx = trip.find(target) if target else None
        if idx is None:
            if known_only:
                continue
            return ModificationRequest("change_duration", target, None, text)
        return ModificationRequest(
            "change_duration", target, trip.destinations[idx].duration + sign * n, text,
        )

    for pattern in _REMOVE_PATTERNS:
        m = pattern.search(text)
        if m:
            return ModificationRequest("remove_destination", _clean_target(m.group("city"), trip), None, text)

    for pattern in _ADD_PATTERNS:
        m = pattern.search(text)
        if m:
            target = _place_target(m.group("city"), trip)
            if target is None:
                continue
            days = m.groupdict().get("n")
            if days is None:
                dm = _ADD_DAYS_RE.search(text, m.end())
                days = dm.group("n") if dm else None
            return ModificationRequest("add_destination", target, _to_int(days) if days else None, text)

    for pattern in _DATE_PATTERNS:
        m = pattern.search(text)
        if m:
            return ModificationRequest("adjust_dates", None, m.group("date").strip(".,;!?"), text)

    for pattern in _PREFERENCE_PATTERNS:
        m = pattern.search(text)
        if m:
            pref = m.group("pref").strip().lower()
            if pref and pref not in _NOT_PREFERENCES:
                return ModificationRequest("update_preferences", None, pref, text)

    return None


def detect_request(text: str, trip: ParsedTrip) -> ModificationRequest:
    """Like detect_modification, but never None: unmatched text falls back to
    an add with no target, which validation then rejects."""
    return detect_modification(text, trip) or ModificationRequest("add_destination", None, None, text)


def _iso_date(value) -> Optional[str]:
    try:
        return date.fromisoformat(str(value)).isoformat()
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# DIFF / SUMMARY
# ---------------------------------------------------------------------------

def compute_diff(before: ParsedTrip, after: ParsedTrip) -> list[ModificationDiff]:
    old = {d.name.lower(): d for d in before.destinations}
    new = {d.name.lower(): d for d in after.destinations}
    diffs: list[ModificationDiff] = []

    for key, dest in old.items():
        if key not in new:
            diffs.append(ModificationDiff(
                "removed", "destination", dest.name, None,
                f"Removed {dest.name} ({dest.duration} days)",
            ))
    for key, dest in new.items():
        if key not in old:
            diffs.append(ModificationDiff(
                "added", "destination", None, dest.name,
                f"Added {dest.name} ({dest.duration} days)",
            ))
        elif old[key].duration != dest.duration:
            diffs.append(ModificationDiff(
                "modified", "duration", old[key].duration, dest.duration,
                f"Changed {dest.name} from {old[key].duration} to {dest.duration} days",
            ))

    if before.total_days != after.total_days:
        diffs.append(ModificationDiff(
            "modified", "total_days", before.total_days, after.total_days,
            f"Total trip duration changed from {before.total_days} to {after.total_days} days",
        ))
    return diffs


def summarize(diffs: list[ModificationDiff]) -> str:
    if not diffs:
        return "No changes were made to your itinerary."
    descriptions = [d.description for d in diffs]
    if len(descriptions) == 1:
        return descriptions[0]
    if len(descriptions) == 2:
        return " and ".join(descriptions)
    return ", ".join(descriptions[:-1]) + ", and " + descriptions[-1]


def confirmation_prompt(summary: str) -> str:
    return f"I'll make this change to your itinerary: {summary}. Would you like me to proceed?"


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------

class ModificationAgent:
    def __init__(
        self,
        max_destinations: int = config.MODIFICATION_MAX_DESTINATIONS,
        min_days: int = config.MODIFICATION_MIN_DAYS,
        max_days: int = config.MODIFICATION_MAX_DAYS,
    ):
        self.max_destinations = max_destinations
        self.min_days = min_days
        self.max_days = max_days

    # -- VALIDATE ------------------------------------------------------------

    def validate(self, request: ModificationRequest, trip: ParsedTrip) -> Optional[str]:
        """Return a failure reason, or None when the request can be applied."""
        count = len(trip.destinations)
        target = request.target
        range_msg = f"Duration must be between {self.min_days} and {self.max_days} days per city"
        not_found = f'Destination "{target}" not found in current itinerary'

        if request.type == "add_destination":
            if count >= self.max_destinations:
                return (f"Cannot add more destinations - maximum of "
                        f"{self.max_destinations} cities allowed")
            if not target:
                return "No destination specified to add"
            if trip.find(target) is not None:
                return f'"{target}" is already in your itinerary'
            if request.value is not None and not self.min_days <= request.value <= self.max_days:
                return range_msg

        elif request.type == "remove_destination":
            if count <= 1:
                return "Cannot remove destination - at least one destination required"
            if not target:
                return "No destination specified to remove"
            if trip.find(target) is None:
                return not_found

        elif request.type == "change_duration":
            if target and trip.find(target) is None:
                return not_found
            if not target or request.value is None:
                return "Both destination and new duration must be specified"
            if not self.min_days <= request.value <= self.max_days:
                return range_msg

        elif request.type == "replace_destination":
            if not target or not request.value:
                return "Both old and new destinations must be specified"
            if trip.find(target) is None:
                return not_found
            if trip.find(request.value) is not None:
                return f'"{request.value}" is already in your itinerary'

        elif request.type == "update_preferences":
            if not request.value:
                return "No preference specified"

        elif request.type == "adjust_dates":
            if _iso_date(request.value) is None:
                return "A valid start date (YYYY-MM-DD) must be specified"

        return None

    # -- APPLY ---------------------------------------------------------------

    def apply(self, request: ModificationRequest, trip: ParsedTrip) -> ParsedTrip:
        """Return a new trip with *request* applied (request must be valid)."""
        pairs = trip.pairs()

        if request.type == "add_destination":
            pairs.append((request.target, request.value or DEFAULT_ADDED_DAYS))
        elif request.type == "remove_destination":
            pairs.pop(trip.find(request.target))
        elif request.type == "change_duration":
            idx = trip.find(request.target)
            pairs[idx] = (pairs[idx][0], request.value)
        elif request.type == "replace_destination":
            idx = trip.find(request.target)
            pairs[idx] = (request.value, pairs[idx][1])
        elif request.type == "adjust_dates":
            return replace(trip, start_date=_iso_date(request.value))
        else:
            return replace(trip)

        return trip.with_destinations(pairs)

    def confidence(self, request: ModificationRequest, text: str) -> float:
        score = 0.7
        if request.target:
            score += 0.1
        if request.value is not None:
            score += 0.1
        if _CUE_RE.search(text or ""):
            score += 0.1
        return round(min(score, 0.95), 2)

    # -- entry point ---------------------------------------------------------

    def modify(
        self,
        text: str,
        current: Union[ParsedTrip, Itinerary],
        preferences: Optional[dict] = None,
    ) -> ModificationResult:
        started = time.perf_counter()
        trip = trip_from_itinerary(current) if isinstance(current, Itinerary) else current
        request = detect_request(text, trip)

        reason = self.validate(request, trip)
        if reason:
            logger.info("Modification %s rejected: %s", request.type, reason)
            return self._failure(request, trip, reason, started)

        after = self.apply(request, trip)
        diffs = compute_diff(trip, after)
        prefs = dict(preferences or {})
        start_date = after.start_date

        if request.type == "update_preferences":
            prefs["style"] = request.value
            summary = f'Updated trip style to "{request.value}"'
        elif request.type == "adjust_dates":
            summary = f"Moved the trip start date to {start_date}"
        else:
            summary = summarize(diffs)

        delta = after.total_days - trip.total_days
        needs_confirmation = (
            request.type == "remove_destination" or abs(delta) > CONFIRM_TOTAL_CHANGE_OVER
        )
        affected = []
        for d in diffs:
            if d.field == "destination":
                affected.append(d.before or d.after)
        if request.type == "change_duration":
            affected.append(request.target)

        logger.info(
            "Modification %s applied: %s (confirmation=%s)",
            request.type, summary, needs_confirmation,
        )
        return ModificationResult(
            success=True,
            modification_type=request.type,
            changes=ModificationChanges(before=trip, after=after, summary=summary, diff=diffs),
            confidence=self.confidence(request, text),
            requires_confirmation=needs_confirmation,
            confirmation_prompt=confirmation_prompt(summary) if needs_confirmation else None,
            metadata=ModificationMetadata(
                processing_time=time.perf_counter() - started,
                affected_destinations=affected,
                total_days_change=delta,
            ),
            request=request,
            preferences=prefs,
            start_date=start_date,
        )

    @staticmethod
    def _failure(request, trip, reason, started) -> ModificationResult:
        return ModificationResult(
            success=False,
            modification_type=request.type,
            changes=ModificationChanges(
                before=trip,
                after=trip,
                summary=f"Failed to modify itinerary: {reason}",
                diff=[],
            ),
            confidence=0.1,
            metadata=ModificationMetadata(processing_time=time.perf_counter() - started),
            reason=reason,
            request=request,
            start_date=trip.start_date,
        )


def apply_modification(
    text: str,
    current: Union[ParsedTrip, Itinerary],
    preferences: Optional[dict] = None,
) -> ModificationResult:
    """Detect, validate and apply one modification using the default limits."""
    return ModificationAgent().modify(text, current, preferences)
