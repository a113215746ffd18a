"""iCalendar (.ics) export of a generated itinerary."""
import re
from datetime import datetime, timedelta

from icalendar import Calendar, Event as ICalEvent

from nomad.TripInfo import Itinerary

# Free-text activity times the generator tends to use
_TIME_WORDS = {
    "early morning": (7, 0),
    "morning": (9, 0),
    "late morning": (11, 0),
    "noon": (12, 0),
    "lunch": (12, 30),
    "afternoon": (14, 0),
    "late afternoon": (16, 0),
    "evening": (19, 0),
    "dinner": (19, 30),
    "night": (21, 0),
}

_CLOCK_RE = re.compile(r"\b(\d{1,2})(?::(\d{2})\s*(am|pm)?|\s*(am|pm))\b", re.I)


def parse_time(raw: str) -> tuple[int, int]:
    """Map "14:30", "2pm" or "Afternoon" to (hour, minute); defaults to 09:00."""
    text = (raw or "").strip().lower()
    if text in _TIME_WORDS:
        return _TIME_WORDS[text]
    m = _CLOCK_RE.search(text)
    if m:
        hour, minute = int(m.group(1)), int(m.group(2) or 0)
        suffix = (m.group(3) or m.group(4) or "").lower()
        if suffix == "pm" and hour < 12:
            hour += 12
        elif suffix == "am" and hour == 12:
            hour = 0
        if 0 <= hour < 24 and 0 <= minute < 60:
            return hour, minute
    for word, value in _TIME_WORDS.items():
        if word in text:
            return value
    return 9, 0


def itinerary_to_ical(itinerary: Itinerary, session_id: str = "trip") -> bytes:
    cal = Calendar()
    cal.add("prodid", "-//Nomad Trip Planner//EN")
    cal.add("version", "2.0")
    cal.add("calscale", "GREGORIAN")
    cal.add("x-wr-calname", itinerary.title)

    for day in itinerary.days:
        day_start = datetime.strptime(day.date, "%Y-%m-%d")
        for i, activity in enumerate(day.activities):
            hour, minute = parse_time(activity.time)
            ev_start = day_start.replace(hour=hour, minute=minute)

            ev = ICalEvent()
            ev.add("summary", activity.description)
            ev.add("description", f"{activity.category} - {day.title}")
            ev.add("dtstart", ev_start)
            ev.add("dtend", ev_start + timedelta(minutes=60))
            if activity.address:
                ev.add("location", activity.address)
            ev.add("uid", f"{session_id}-day{day.day}-{i}@nomad-trip-planner")
            cal.add_component(ev)

    return cal.to_ical()
