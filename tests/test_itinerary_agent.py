"""
Unit tests for nomad/agents/itinerary_agent.py

Tests cover:
- plan_chunks partitioning and validation
- Chunked generation (day numbering, dates, travel days, title)
- Failure handling (failed chunk, short chunk, tips fallback)
"""
from datetime import date

import pytest

from nomad.agents.itinerary_agent import (
    GENERIC_DESTINATION,
    GENERIC_TIPS,
    ItineraryAgent,
    next_monday,
    normalise_category,
    plan_chunks,
)
from nomad.errors import GenerationError, LLMUnavailableError, ValidationError
from nomad.TripInfo import ParsedTrip

START = date(2026, 6, 1)


# ---------------------------------------------------------------------------
# plan_chunks
# ---------------------------------------------------------------------------

class TestPlanChunks:
    def test_contiguous_ranges(self, paris_rome):
        chunks = plan_chunks(paris_rome)
        assert [(c.destination, c.start_day, c.end_day) for c in chunks] == [
            ("Paris", 1, 3), ("Rome", 4, 5),
        ]

    def test_unresolved_duration_raises(self):
        with pytest.raises(ValidationError) as exc_info:
            plan_chunks(ParsedTrip.build([("Paris", 0)]))
        assert exc_info.value.field == "duration"

    def test_empty_trip_raises(self):
        with pytest.raises(ValidationError):
            plan_chunks(ParsedTrip())

    def test_stated_days_without_destination_uses_generic(self):
        chunks = plan_chunks(ParsedTrip(stated_days=4))
        assert len(chunks) == 1
        assert chunks[0].destination == GENERIC_DESTINATION
        assert chunks[0].days == 4


class TestHelpers:
    def test_next_monday_from_sunday(self):
        assert next_monday(date(2026, 10, 18)) == date(2026, 10, 19)

    def test_next_monday_is_strictly_after_today(self):
        assert next_monday(date(2026, 10, 19)) == date(2026, 10, 26)

    @pytest.mark.parametrize("raw,expected", [
        ("Food", "Food"),
        ("travel", "Travel"),
        ("Restaurant", "Food"),
        ("Attraction", "Leisure"),
        (None, "Leisure"),
    ])
    def test_normalise_category(self, raw, expected):
        assert normalise_category(raw) == expected


# ---------------------------------------------------------------------------
# generate
# ---------------------------------------------------------------------------

class TestGenerate:
    def test_one_call_per_destination(self, fake_llm, paris_rome):
        ItineraryAgent(fake_llm).generate(paris_rome, start_date=START)
        prompts = [c[1] for c in fake_llm.chunk_calls()]
        assert len(prompts) == 2
        assert prompts[0].startswith("Create a 3-day itinerary for Paris.")
        assert "Days are numbered 4 to 5" in prompts[1]

    def test_days_numbered_and_dated(self, fake_llm, paris_rome):
        itinerary = ItineraryAgent(fake_llm).generate(paris_rome, start_date=START)
        assert [d.day for d in itinerary.days] == [1, 2, 3, 4, 5]
        assert itinerary.days[0].date == "2026-06-01"
        assert itinerary.days[4].date == "2026-06-05"
        assert [d.destination for d in itinerary.days] == ["Paris"] * 3 + ["Rome"] * 2

    def test_travel_day_at_city_boundary(self, fake_llm, paris_rome):
        itinerary = ItineraryAgent(fake_llm).generate(paris_rome, start_date=START)
        first = itinerary.days[3].activities[0]
        assert first.category == "Travel"
        assert "Paris" in first.description and "Rome" in first.description
        assert itinerary.days[0].activities[0].category != "Travel"

    def test_title_and_destination(self, fake_llm, paris_rome):
        itinerary = ItineraryAgent(fake_llm).generate(paris_rome, start_date=START)
        assert itinerary.title == "5-Day Adventure to Paris, Rome"
        assert itinerary.destination == "Paris, Rome"
        assert itinerary.total_days() == paris_rome.total_days

    def test_categories_normalised(self, fake_llm, paris_rome):
        itinerary = ItineraryAgent(fake_llm).generate(paris_rome, start_date=START)
        categories = {a.category for d in itinerary.days for a in d.activities}
        assert categories <= {"Leisure", "Food", "Travel"}

    def test_trip_start_date_used(self, fake_llm):
        trip = ParsedTrip.build([("Paris", 2)], start_date="2026-07-01")
        itinerary = ItineraryAgent(fake_llm).generate(trip)
        assert itinerary.days[0].date == "2026-07-01"

    def test_extra_days_truncated(self, make_llm, paris_rome):
        llm = make_llm(days_override={"Paris": 5})
        itinerary = ItineraryAgent(llm).generate(paris_rome, start_date=START)
        assert itinerary.total_days() == 5

    def test_tips_returned(self, fake_llm, paris_rome):
        itinerary = ItineraryAgent(fake_llm).generate(paris_rome, start_date=START)
        assert len(itinerary.quick_tips) == 5
        assert itinerary.quick_tips != GENERIC_TIPS

    def test_generic_destination(self, fake_llm):
        itinerary = ItineraryAgent(fake_llm).generate(ParsedTrip(stated_days=3), start_date=START)
        assert itinerary.destination == GENERIC_DESTINATION
        assert itinerary.total_days() == 3


class TestGenerateFailures:
    def test_failed_chunk_names_destination(self, make_llm, paris_rome):
        llm = make_llm(fail_for=["Rome"])
        with pytest.raises(GenerationError) as exc_info:
            ItineraryAgent(llm).generate(paris_rome, start_date=START)
        assert exc_info.value.destination == "Rome"
        assert "Rome" in str(exc_info.value)

    def test_short_chunk_is_an_error(self, make_llm, paris_rome):
        llm = make_llm(days_override={"Paris": 1})
        with pytest.raises(GenerationError) as exc_info:
            ItineraryAgent(llm).generate(paris_rome, start_date=START)
        assert exc_info.value.destination == "Paris"

    def test_tips_failure_falls_back(self, make_llm, paris_rome):
        llm = make_llm(tips_error=LLMUnavailableError("down"))
        itinerary = ItineraryAgent(llm).generate(paris_rome, start_date=START)
        assert itinerary.quick_tips == GENERIC_TIPS

    @pytest.mark.parametrize("tips", [
        {"tips": "Pack light and carry cash"},
        {"tips": []},
        {"quickTips": None},
        "just some text",
    ])
    def test_tips_that_are_not_a_list_fall_back(self, make_llm, paris_rome, tips):
        itinerary = ItineraryAgent(make_llm(tips=tips)).generate(paris_rome, start_date=START)
        assert itinerary.quick_tips == GENERIC_TIPS

    def test_unresolved_trip_raises_validation(self, fake_llm):
        with pytest.raises(ValidationError):
            ItineraryAgent(fake_llm).generate(ParsedTrip.build([("Paris", 0)]))
        assert fake_llm.calls == []
