"""
Destination parser: pulls trip facts out of free text.

    extract("2 weeks in Lisbon and Granada, 10 days lisbon, 4 granada")
      → ParsedTrip(Lisbon 10, Granada 4, total_days=14)

Every pattern family runs in turn.  Text a family matched is blanked out
before the next family looks at it, and the results are merged in the
order they appear in the text:

  1. Compound lists       "Lisbon and Granada" (+ overall duration,
                          + per-city overrides after the list)
  2. Days in city         "5 days in Paris", "10 days Madrid", "3-day trip to Rome"
  3. City for days        "Paris for 3 days", "Paris 3 days", "Rome: 2 nights"
  4. Keyword durations    "a weekend in Paris", "two weeks in Japan", "Rome for a week"
  5. Bare mentions        "visit Paris"  (only when nothing above matched;
                          duration filled from a stand-alone duration in the
                          text, otherwise left at 0)

A country next to real cities ("3 weeks in Spain: 10 days Madrid, ...") is
read as the umbrella for the trip, not as a stop of its own.

Origin ("from X") and return city ("back to X") are extracted first and cut
out of the text so they never show up as destinations.  Nothing here
enforces limits; callers decide what is too long or too many.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from nomad.TripInfo import ParsedTrip

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

KNOWN_CITIES = {
    "london", "paris", "tokyo", "rome", "barcelona", "amsterdam", "berlin",
    "dubai", "singapore", "bangkok", "lisbon", "granada", "madrid", "milan",
    "vienna", "prague", "budapest", "istanbul", "cairo", "sydney", "melbourne",
    "san francisco", "los angeles", "new york", "chicago", "miami", "seattle",
    "boston", "toronto", "vancouver", "mexico city", "buenos aires",
    "rio de janeiro", "sao paulo", "lima", "bogota", "athens", "copenhagen",
    "stockholm", "oslo", "helsinki", "reykjavik", "dublin", "edinburgh",
    "munich", "frankfurt", "zurich", "geneva", "brussels", "venice", "florence",
    "naples", "porto", "seville", "valencia", "bilbao", "krakow", "warsaw",
    "beijing", "shanghai", "hong kong", "taipei", "seoul", "osaka", "kyoto",
    "delhi", "new delhi", "mumbai", "bangalore", "jakarta", "manila", "bali",
    "kuala lumpur", "hanoi", "marrakech", "cape town", "nairobi", "nice",
    "lyon", "split", "dubrovnik", "cusco", "santiago", "havana", "montreal",
}

# Multi-word cities that a "from X" pattern must keep whole.
_MULTIWORD_ORIGINS = (
    "Los Angeles", "New York", "San Francisco", "Las Vegas", "San Diego",
    "Buenos Aires", "Rio de Janeiro", "Mexico City", "Hong Kong", "New Delhi",
    "Kuala Lumpur", "Cape Town", "St Petersburg", "St Louis", "Salt Lake City",
    "Washington DC", "New Orleans", "El Paso", "Oklahoma City",
)

_ALIASES = {"nyc": "New York", "la": "Los Angeles", "sf": "San Francisco"}

COUNTRIES = {
    "Japan", "France", "Italy", "Spain", "Thailand", "Germany", "UK", "USA",
    "Australia", "Brazil", "India", "China", "Mexico", "Greece", "Turkey",
    "Vietnam", "Cambodia", "Malaysia", "Indonesia", "Philippines",
    "Netherlands", "Portugal", "Switzerland", "Austria", "Czech Republic",
    "South Korea", "Morocco", "Egypt", "Argentina", "Colombia", "Peru",
    "New Zealand", "Ireland", "Croatia", "Norway", "Sweden", "Denmark",
    "Finland", "Belgium", "Poland", "Hungary", "Romania",
    "United States", "United Kingdom",
}

NOISE_WORDS = {
    "a", "an", "the", "and", "or", "of", "to", "in", "at", "for", "from",
    "then", "after", "before", "with", "on", "next", "this", "via", "trip",
    "day", "days", "week", "weeks", "night", "nights", "weekend", "visit",
    "visiting", "explore", "exploring", "plan", "planning", "spend",
    "spending", "see", "i", "we", "want", "would", "like", "go", "going",
    "travel", "traveling", "travelling", "fly", "please", "starting",
    "around", "across", "through", "between", "somewhere", "also", "me",
    "my", "our", "us", "let's", "lets", "can", "you", "could", "some",
    "holiday", "vacation", "getaway", "stay", "and", "it", "is",
}

_NOT_PLACES = {
    "january", "february", "march", "april", "may", "june", "july", "august",
    "september", "october", "november", "december", "monday", "tuesday",
    "wednesday", "thursday", "friday", "saturday", "sunday", "hi", "hello",
    "hey", "thanks", "thank", "yes", "no", "ok", "okay", "sure",
}

_WORD_NUMBERS = {
    "a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4,
    "five": 5, "six": 6,
}

# ---------------------------------------------------------------------------
# Regex building blocks
# ---------------------------------------------------------------------------

# Capitalised place name, possibly multi-word ("New York", "Rio de Janeiro").
NAME_CAP = (
    r"[A-Z][A-Za-z'\-]+"
    r"(?:\s+(?:de|del|da|do|la|le|el)\s+[A-Z][A-Za-z'\-]+|\s+[A-Z][A-Za-z'\-]+)*"
)

# Any-case place name of up to four words; must be followed by _END.
NAME_ANY = r"[A-Za-z][A-Za-z'\-]*(?:\s+[A-Za-z][A-Za-z'\-]*){0,3}?"

_END = (
    r"(?=\s*(?:[,.;:!?()]|$)"
    r"|\s+(?:from|then|after|and|before|for|with|on|next|this|in|to|via"
    r"|starting|please|&)\b)"
)

_ORIGIN_END = (
    r"(?=\s*(?:[,.;:!?()]|$)"
    r"|\s+(?:to|on|in|for|next|this|and|then|visit|visiting|plan|with"
    r"|starting|please|i|we)\b)"
)

_DURATION = (
    r"(?:\d+[\s-]*(?:days?|nights?|weeks?|months?)"
    r"|(?:a|an|one|two|three|four|five|six)\s+(?:weeks?|months?)"
    r"|(?:a|the)\s+weekend|weekend|(?:a\s+)?fortnight)"
)

_DURATION_RE = re.compile(_DURATION, re.I)

_LIST = (
    rf"{NAME_CAP}(?:\s*,\s*{NAME_CAP})*\s*,?\s+(?i:and|&)\s+{NAME_CAP}"
)

_COMPOUND_RE = re.compile(
    rf"(?:(?P<lead>(?i:{_DURATION}))\s+"
    r"(?i:in|to|visiting|across|exploring|through|between|around)\s+)?"
    rf"(?P<cities>{_LIST})"
    rf"(?:\s+(?i:for)\s+(?P<trail>(?i:{_DURATION})))?"
)

_DAYS_IN_RE = re.compile(
    r"(?P<n>\d+)[\s-]*(?:days?|nights?)\s+"
    r"(?:(?:trip|holiday|vacation|getaway|stay|break)\s+)?"
    r"(?:(?:in|at|to|visiting|exploring)\s+)?"
    r"(?!(?:and|or|then|from|for|with|but|of)\b)"
    rf"(?P<city>{NAME_ANY}){_END}",
    re.I,
)

_CITY_FOR_RE = re.compile(
    rf"(?P<city>{NAME_CAP})(?:\s+(?i:for)\b|\s*[:\-])?\s*(?P<n>\d+)[\s-]*(?i:days?|nights?)\b"
)

_KEYWORD_IN_RE = re.compile(
    r"(?P<dur>(?i:(?:a|an|one|two|three|four|five|six|\d+)\s+weeks?"
    r"|(?:a|the)\s+weekend|weekend|(?:a\s+)?fortnight|(?:a|one|\d+)\s+months?))"
    r"\s+(?i:(?:long\s+)?(?:trip\s+|getaway\s+|break\s+)?(?:in|to|at|exploring|visiting))\s+"
    rf"(?P<city>{NAME_CAP})"
)

_CITY_FOR_KEYWORD_RE = re.compile(
    rf"(?P<city>{NAME_CAP})\s+(?i:for)\s+"
    r"(?P<dur>(?i:(?:a|an|one|two|three|four|five|six|\d+)\s+weeks?"
    r"|(?:a|the)\s+weekend|(?:a\s+)?fortnight|(?:a|one|\d+)\s+months?))"
)

_MENTION_RE = re.compile(
    r"(?i:\b(?:to|visit|visiting|see|explore|exploring|in|around|about))\s+"
    rf"(?P<city>{NAME_CAP})"
)

_ORIGIN_RE = re.compile(
    r"\b(?:from|departing(?:\s+from)?|leaving(?:\s+from)?|starting\s+(?:from|in)"
    r"|flying\s+(?:out\s+)?(?:of|from)|based\s+in)\s+"
    rf"(?P<city>{NAME_ANY}){_ORIGIN_END}",
    re.I,
)

_RETURN_RE = re.compile(
    r"\b(?:return(?:ing)?|go(?:ing)?\s+back|fly(?:ing)?\s+back|head(?:ing)?\s+back|back)"
    r"\s+(?:home\s+)?to\s+"
    rf"(?P<city>{NAME_ANY}){_ORIGIN_END}",
    re.I,
)

Span = tuple[int, int]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def parse_duration(text: str) -> Optional[int]:
    """Convert a duration phrase to days ("weekend" → 2, "two weeks" → 14)."""
    t = text.lower().strip()
    if "weekend" in t:
        return 2
    if "fortnight" in t:
        return 14
    m = re.search(r"(\d+|a|an|one|two|three|four|five|six)?\s*(week|month)s?", t)
    if m and ("week" in t or "month" in t):
        raw = m.group(1)
        n = int(raw) if raw and raw.isdigit() else _WORD_NUMBERS.get(raw or "a", 1)
        return n * (7 if m.group(2) == "week" else 30)
    m = re.search(r"(\d+)[\s-]*(?:days?|nights?)", t)
    if m:
        return int(m.group(1))
    return None


def _accept(name: str) -> bool:
    low = name.lower()
    if low in _NOT_PLACES or low in NOISE_WORDS:
        return False
    return name[0].isupper() or low in KNOWN_CITIES or low in _ALIASES


def clean_name(raw: str) -> Optional[str]:
    """Trim filler words around a captured name and normalise its case."""
    words = re.sub(r"[^\w\s'\-]", " ", raw or "").split()
    while words and words[0].lower() in NOISE_WORDS:
        words.pop(0)
    while words and words[-1].lower() in NOISE_WORDS:
        words.pop()
    if not words:
        return None
    name = " ".join(words)
    if not _accept(name):
        return None
    if name.lower() in _ALIASES:
        return _ALIASES[name.lower()]
    if name.islower():
        name = name.title()
    return name


def _blank(text: str, span: Span) -> str:
    """Replace a span with a comma so the surrounding patterns see a boundary."""
    start, end = span
    return text[:start] + "," + " " * (end - start - 1) + text[end:]


def _overlaps(span: Span, spans: list[Span]) -> bool:
    return any(span[0] < e and s < span[1] for s, e in spans)


def _split_evenly(names: list[str], total: int) -> list[tuple[str, int]]:
    base, remainder = divmod(total, len(names))
    return [(n, base + (1 if i < remainder else 0)) for i, n in enumerate(names)]


def _dedupe(pairs: list[tuple[str, int]], origin: Optional[str]) -> list[tuple[str, int]]:
    """Collapse repeated names (latest duration wins) and drop the origin city."""
    merged: dict[str, tuple[str, int]] = {}
    for name, days in pairs:
        key = name.lower()
        if origin and key == origin.lower():
            continue
        if key in merged:
            merged[key] = (merged[key][0], days or merged[key][1])
        else:
            merged[key] = (name, days)
    return list(merged.values())


# ---------------------------------------------------------------------------
# Origin / return
# ---------------------------------------------------------------------------

def extract_origin(text: str) -> tuple[Optional[str], Optional[Span]]:
    for city in _MULTIWORD_ORIGINS:
        m = re.search(r"\bfrom\s+" + r"\s+".join(city.split()) + r"\b", text, re.I)
        if m:
            return city, m.span()
    for m in _ORIGIN_RE.finditer(text):
        name = clean_name(m.group("city"))
        if name:
            return name, m.span()
    return None, None


def extract_return(text: str) -> tuple[Optional[str], Optional[Span]]:
    m = _RETURN_RE.search(text)
    if m:
        name = clean_name(m.group("city"))
        if name:
            return name, m.span()
    return None, None


# ---------------------------------------------------------------------------
# Pattern families: each returns (entries, consumed spans) or None, where an
# entry is (position in text, name, days)
# ---------------------------------------------------------------------------

def _split_list(cities_text: str) -> list[str]:
    parts = re.split(r"\s*,\s*(?:and\s+|&\s+)?|\s+(?:and|&)\s+", cities_text, flags=re.I)
    names = []
    for part in parts:
        name = clean_name(part)
        if name and name.lower() not in (n.lower() for n in names):
            names.append(name)
    return names


def _find_override(city: str, text: str, start: int) -> Optional[tuple[int, Span]]:
    escaped = re.escape(city).replace(r"\ ", r"\s+")
    patterns = (
        rf"(\d+)\s*(?:days?|nights?)?\s*(?:in\s+|at\s+)?{escaped}\b",
        rf"\b{escaped}\s*(?::|-|for)?\s*(\d+)\s*(?:days?|nights?)\b",
    )
    for pattern in patterns:
        m = re.compile(pattern, re.I).search(text, start)
        if m:
            return int(m.group(1)), m.span()
    return None


def _compound_family(text: str):
    for m in _COMPOUND_RE.finditer(text):
        names = _split_list(m.group("cities"))
        if len(names) < 2:
            continue

        spans: list[Span] = [m.span()]
        overrides: dict[str, int] = {}
        for name in names:
            found = _find_override(name, text, m.end())
            if found:
                overrides[name] = found[0]
                spans.append(found[1])

        stated_text = m.group("lead") or m.group("trail")
        if not stated_text:
            stray = _stray_duration(text, spans)
            stated = stray[0] if stray else None
            if stray:
                spans.append(stray[1])
        else:
            stated = parse_duration(stated_text)

        pos = m.start("cities")
        if len(overrides) == len(names):
            if stated is not None and stated != sum(overrides.values()):
                logger.info(
                    "Per-city days %s do not add up to stated %s days; using per-city values",
                    overrides, stated,
                )
            return [(pos + i, n, overrides[n]) for i, n in enumerate(names)], spans

        rest = [n for n in names if n not in overrides]
        if stated is None:
            shares = {n: 0 for n in rest}
        else:
            remaining = stated - sum(overrides.values())
            shares = dict(_split_evenly(rest, remaining)) if remaining >= len(rest) else {n: 0 for n in rest}
        entries = [(pos + i, n, overrides.get(n, shares.get(n, 0))) for i, n in enumerate(names)]
        return entries, spans
    return None


def _counted_family(regex: re.Pattern, text: str):
    entries, spans = [], []
    for m in regex.finditer(text):
        name = clean_name(m.group("city"))
        if name:
            entries.append((m.start(), name, int(m.group("n"))))
            spans.append(m.span())
    return (entries, spans) if entries else None


def _days_in_family(text: str):
    return _counted_family(_DAYS_IN_RE, text)


def _city_for_family(text: str):
    return _counted_family(_CITY_FOR_RE, text)


def _keyword_family(text: str):
    entries, spans = [], []
    for regex in (_KEYWORD_IN_RE, _CITY_FOR_KEYWORD_RE):
        for m in regex.finditer(text):
            name = clean_name(m.group("city"))
            days = parse_duration(m.group("dur"))
            if name and days and not _overlaps(m.span(), spans):
                entries.append((m.start(), name, days))
                spans.append(m.span())
    return (entries, spans) if entries else None


_FAMILIES = (
    ("compound", _compound_family),
    ("days_in", _days_in_family),
    ("city_for", _city_for_family),
    ("keyword", _keyword_family),
)


def _stray_duration(text: str, consumed: list[Span]) -> Optional[tuple[int, Span]]:
    """First duration phrase that is not part of an already-matched pattern."""
    for m in _DURATION_RE.finditer(text):
        if not _overlaps(m.span(), consumed):
            days = parse_duration(m.group(0))
            if days:
                return days, m.span()
    return None


def _mentions(text: str) -> list[str]:
    names: list[str] = []
    for m in _MENTION_RE.finditer(text):
        name = clean_name(m.group("city"))
        if name and name.lower() not in (n.lower() for n in names):
            names.append(name)
    return names


def _is_likely_country(destination: str) -> bool:
    return destination.strip() in COUNTRIES


def _drop_umbrella_countries(entries: list) -> list:
    """Countries only count as stops when no city was named alongside them."""
    if all(_is_likely_country(name) for _, name, _ in entries):
        return entries
    kept = [e for e in entries if not _is_likely_country(e[1])]
    if len(kept) < len(entries):
        logger.info(
            "Treating %s as the trip's region, not a stop",
            [name for _, name, _ in entries if _is_likely_country(name)],
        )
    return kept


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract(text: str) -> ParsedTrip:
    """Extract destinations, per-city durations and origin from *text*.

    Never raises; returns an empty trip when nothing is recognised.
    """
    try:
        return _extract(text or "")
    except (ValueError, re.error) as exc:
        logger.warning("Destination extraction failed for %r: %s", text, exc)
        return ParsedTrip()


def _extract(text: str) -> ParsedTrip:
    working = text.strip()

    origin, span = extract_origin(working)
    if span:
        working = _blank(working, span)
    return_to, span = extract_return(working)
    if span:
        working = _blank(working, span)

    entries: list[tuple[int, str, int]] = []
    families_used = []
    for family_name, family in _FAMILIES:
        result = family(working)
        if not result:
            continue
        found, spans = result
        entries.extend(found)
        families_used.append(family_name)
        for consumed in spans:
            working = _blank(working, consumed)

    entries.sort(key=lambda e: e[0])
    pairs = [(name, days) for _, name, days in _drop_umbrella_countries(entries)]

    stated_days = None
    if not pairs:
        stray = _stray_duration(working, [])
        mentioned = _mentions(working)
        if mentioned:
            families_used.append("mention")
            if stray:
                pairs = _split_evenly(mentioned, stray[0]) if stray[0] >= len(mentioned) else [(n, 0) for n in mentioned]
            else:
                pairs = [(n, 0) for n in mentioned]
        elif stray:
            stated_days = stray[0]

    pairs = _dedupe(pairs, origin)
    trip = ParsedTrip.build(pairs, origin=origin, return_to=return_to, stated_days=stated_days)

    logger.info(
        "Destination parsing complete: families=%s destinations=%s total_days=%s origin=%s",
        families_used,
        [f"{d.name} ({d.duration} days)" for d in trip.destinations],
        trip.total_days,
        trip.origin,
    )
    return trip


def describe_trip(trip: ParsedTrip) -> str:
    """Canonical one-line description that re-parses to the same destinations."""
    parts = [
        f"{d.duration} {'day' if d.duration == 1 else 'days'} in {d.name}"
        for d in trip.destinations
    ]
    text = ", ".join(parts)
    if trip.origin:
        text += f" from {trip.origin}"
    return text


def build_structured_prompt(trip: ParsedTrip, original_text: str = "") -> str:
    """Whole-trip context handed to the generation service with every chunk."""
    lines = [f"Generate a {trip.total_days}-day travel itinerary with the following structure:", ""]
    if trip.origin:
        lines.append(f"DEPARTURE: From {trip.origin}")
    lines.append("DESTINATIONS (in order):")
    for i, dest in enumerate(trip.destinations):
        lines.append(f"{dest.order}. {dest.name}: {dest.duration} days")
        if i < len(trip.destinations) - 1:
            lines.append("   [Travel day between cities]")
    if trip.return_to or trip.origin:
        lines.append(f"RETURN: To {trip.return_to or trip.origin}")
    lines.append(f"TOTAL TRIP LENGTH: {trip.total_days} days")
    if original_text:
        lines.append(f"ORIGINAL REQUEST: {original_text}")
    return "\n".join(lines)
