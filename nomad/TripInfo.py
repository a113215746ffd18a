from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Optional

from dataclasses_json import dataclass_json

ACTIVITY_CATEGORIES = ("Work", "Leisure", "Food", "Travel", "Accommodation")


def names_match(a: str, b: str) -> bool:
    """Case-insensitive partial match in either direction ("lisbon" ~ "Lisbon, Portugal")."""
    a, b = a.strip().lower(), b.strip().lower()
    return bool(a) and bool(b) and (a in b or b in a)


@dataclass_json
@dataclass
class ParsedDestination:
    name: str
    duration: int = 0   # days; 0 means not stated yet
    order: int = 1

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("destination name is required")
        if isinstance(self.duration, bool) or not isinstance(self.duration, int) or self.duration < 0:
            raise ValueError(f"invalid duration for {self.name}: {self.duration!r}")
        if self.order < 1:
            raise ValueError(f"invalid order for {self.name}: {self.order}")


@dataclass_json
@dataclass
class ParsedTrip:
    destinations: list[ParsedDestination] = field(default_factory=list)
    total_days: int = 0
    origin: Optional[str] = None
    return_to: Optional[str] = None
    stated_days: Optional[int] = None   # overall duration not attached to a city
    start_date: Optional[str] = None    # YYYY-MM-DD

    def __post_init__(self):
        orders = [d.order for d in self.destinations]
        if orders != list(range(1, len(self.destinations) + 1)):
            raise ValueError(f"destination order must be contiguous from 1, got {orders}")
        expected = sum(d.duration for d in self.destinations)
        if self.total_days != expected:
            raise ValueError(f"total_days {self.total_days} != sum of durations {expected}")

    @classmethod
    def build(cls, pairs, **kwargs) -> "ParsedTrip":
        """Create a trip from ``(name, duration)`` pairs, assigning order and totals."""
        destinations = [
            ParsedDestination(name=name, duration=duration, order=i + 1)
            for i, (name, duration) in enumerate(pairs)
        ]
        return cls(
            destinations=destinations,
            total_days=sum(d.duration for d in destinations),
            **kwargs,
        )

    def with_destinations(self, pairs) -> "ParsedTrip":
        """Copy of this trip with a new destination list (order/total recomputed)."""
        rebuilt = ParsedTrip.build(pairs)
        return replace(self, destinations=rebuilt.destinations, total_days=rebuilt.total_days)

    def pairs(self) -> list[tuple[str, int]]:
        return [(d.name, d.duration) for d in self.destinations]

    def destination_names(self) -> list[str]:
        return [d.name for d in self.destinations]

    def find(self, name: str) -> Optional[int]:
        """Index of the first destination whose name contains *name* (case-insensitive)."""
        needle = (name or "").strip().lower()
        if not needle:
            return None
        for i, dest in enumerate(self.destinations):
            if needle in dest.name.lower():
                return i
        return None

    def is_empty(self) -> bool:
        return not self.destinations and not self.stated_days

    def is_resolved(self) -> bool:
        """At least one destination and every destination has a positive duration."""
        return bool(self.destinations) and all(d.duration > 0 for d in self.destinations)


@dataclass_json
@dataclass
class Activity:
    time: str
    description: str
    category: str
    address: str = ""

    def __post_init__(self):
        if self.category not in ACTIVITY_CATEGORIES:
            raise ValueError(f"unknown activity category {self.category!r}")
        if not self.description:
            raise ValueError("activity description is required")


@dataclass_json
@dataclass
class Day:
    day: int
    date: str
    title: str
    activities: list[Activity] = field(default_factory=list)
    destination: Optional[str] = None

    def __post_init__(self):
        if self.day < 1:
            raise ValueError(f"day number must be >= 1, got {self.day}")
        date.fromisoformat(self.date)


@dataclass_json
@dataclass
class Itinerary:
    title: str
    destination: str
    days: list[Day] = field(default_factory=list)
    quick_tips: list[str] = field(default_factory=list)

    def __post_init__(self):
        numbers = [d.day for d in self.days]
        if numbers != list(range(1, len(self.days) + 1)):
            raise ValueError(f"itinerary days must be contiguous from 1, got {numbers}")

    def total_days(self) -> int:
        return len(self.days)


def trip_from_itinerary(itinerary: Itinerary, origin: Optional[str] = None) -> ParsedTrip:
    """Rebuild the destination/duration list from the destination tags on each day."""
    counts: dict[str, int] = {}
    for day in itinerary.days:
        name = day.destination or itinerary.destination
        counts[name] = counts.get(name, 0) + 1
    start = itinerary.days[0].date if itinerary.days else None
    return ParsedTrip.build(list(counts.items()), origin=origin, start_date=start)


# ---------------------------------------------------------------------------
# Modification records
# ---------------------------------------------------------------------------

MODIFICATION_TYPES = (
    "add_destination",
    "remove_destination",
    "change_duration",
    "replace_destination",
    "update_preferences",
    "adjust_dates",
)

DIFF_TYPES = ("added", "removed", "modified")
DIFF_FIELDS = ("destination", "duration", "order", "total_days")


@dataclass_json
@dataclass
class ModificationRequest:
    type: str
    target: Optional[str] = None
    value: Any = None
    context: str = ""

    def __post_init__(self):
        if self.type not in MODIFICATION_TYPES:
            raise ValueError(f"unknown modification type {self.type!r}")


@dataclass_json
@dataclass
class ModificationDiff:
    type: str
    field: str
    before: Any
    after: Any
    description: str

    def __post_init__(self):
        if self.type not in DIFF_TYPES:
            raise ValueError(f"unknown diff type {self.type!r}")
        if self.field not in DIFF_FIELDS:
            raise ValueError(f"unknown diff field {self.field!r}")


@dataclass_json
@dataclass
class ModificationChanges:
    before: ParsedTrip
    after: ParsedTrip
    summary: str
    diff: list[ModificationDiff] = field(default_factory=list)


@dataclass_json
@dataclass
class ModificationMetadata:
    processing_time: float = 0.0
    affected_destinations: list[str] = field(default_factory=list)
    total_days_change: int = 0


@dataclass_json
@dataclass
class ModificationResult:
    success: bool
    modification_type: str
    changes: ModificationChanges
    confidence: float
    requires_confirmation: bool = False
    confirmation_prompt: Optional[str] = None
    metadata: ModificationMetadata = field(default_factory=ModificationMetadata)
    reason: Optional[str] = None
    request: Optional[ModificationRequest] = None
    preferences: dict[str, str] = field(default_factory=dict)
    start_date: Optional[str] = None

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")
