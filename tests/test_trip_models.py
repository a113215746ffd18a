"""Unit tests for nomad/TripInfo.py record validation and helpers."""
import pytest

from nomad.TripInfo import (
    Activity,
    Day,
    Itinerary,
    ModificationChanges,
    ModificationDiff,
    ModificationResult,
    ModificationRequest,
    ParsedDestination,
    ParsedTrip,
    names_match,
    trip_from_itinerary,
)


def _day(n, dest, when="2026-06-01"):
    return Day(day=n, date=when, title=f"Day {n}", destination=dest,
               activities=[Activity("Morning", f"Walk around {dest}", "Leisure")])


class TestParsedTrip:
    def test_build_assigns_order_and_total(self):
        trip = ParsedTrip.build([("Paris", 3), ("Rome", 2)], origin="London")
        assert [d.order for d in trip.destinations] == [1, 2]
        assert trip.total_days == 5
        assert trip.origin == "London"

    def test_total_mismatch_raises(self):
        with pytest.raises(ValueError):
            ParsedTrip(destinations=[ParsedDestination("Paris", 3, 1)], total_days=4)

    def test_non_contiguous_order_raises(self):
        with pytest.raises(ValueError):
            ParsedTrip(
                destinations=[ParsedDestination("Paris", 3, 1), ParsedDestination("Rome", 2, 3)],
                total_days=5,
            )

    def test_with_destinations_recomputes_and_keeps_origin(self, paris_rome):
        trip = ParsedTrip.build(paris_rome.pairs(), origin="London")
        updated = trip.with_destinations([("Rome", 4)])
        assert updated.pairs() == [("Rome", 4)]
        assert updated.total_days == 4
        assert updated.origin == "London"
        assert trip.pairs() == [("Paris", 3), ("Rome", 2)]

    def test_find_is_case_insensitive_partial(self, paris_rome):
        assert paris_rome.find("rome") == 1
        assert paris_rome.find("par") == 0
        assert paris_rome.find("Berlin") is None
        assert paris_rome.find("") is None

    def test_resolved(self):
        assert ParsedTrip.build([("Paris", 3)]).is_resolved()
        assert not ParsedTrip.build([("Paris", 0)]).is_resolved()
        assert not ParsedTrip().is_resolved()

    def test_json_round_trip(self, lisbon_granada):
        assert ParsedTrip.from_json(lisbon_granada.to_json()) == lisbon_granada


class TestParsedDestination:
    @pytest.mark.parametrize("kwargs", [
        {"name": "", "duration": 3},
        {"name": "Paris", "duration": -1},
        {"name": "Paris", "duration": True},
        {"name": "Paris", "duration": 3, "order": 0},
    ])
    def test_invalid_values_raise(self, kwargs):
        with pytest.raises(ValueError):
            ParsedDestination(**kwargs)


class TestItineraryRecords:
    def test_unknown_category_raises(self):
        with pytest.raises(ValueError):
            Activity("Morning", "Louvre", "Attraction")

    def test_bad_date_raises(self):
        with pytest.raises(ValueError):
            Day(day=1, date="June 1st", title="Arrival")

    def test_days_must_be_contiguous(self):
        with pytest.raises(ValueError):
            Itinerary(title="t", destination="Paris", days=[_day(1, "Paris"), _day(3, "Paris")])

    def test_trip_from_itinerary_counts_days_per_destination(self):
        itinerary = Itinerary(
            title="3-Day Adventure to Paris, Rome",
            destination="Paris, Rome",
            days=[_day(1, "Paris", "2026-06-01"), _day(2, "Paris", "2026-06-02"), _day(3, "Rome", "2026-06-03")],
        )
        trip = trip_from_itinerary(itinerary, origin="London")
        assert trip.pairs() == [("Paris", 2), ("Rome", 1)]
        assert trip.start_date == "2026-06-01"
        assert trip.origin == "London"


class TestModificationRecords:
    def test_unknown_request_type_raises(self):
        with pytest.raises(ValueError):
            ModificationRequest(type="teleport")

    def test_unknown_diff_field_raises(self):
        with pytest.raises(ValueError):
            ModificationDiff("modified", "weather", 1, 2, "nope")

    def test_confidence_bounds(self, paris_rome):
        changes = ModificationChanges(before=paris_rome, after=paris_rome, summary="")
        with pytest.raises(ValueError):
            ModificationResult(success=True, modification_type="add_destination",
                               changes=changes, confidence=1.5)


def test_names_match():
    assert names_match("lisbon", "Lisbon, Portugal")
    assert names_match("New York City", "new york")
    assert not names_match("Paris", "Rome")
    assert not names_match("", "Rome")
