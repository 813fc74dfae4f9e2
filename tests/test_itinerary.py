"""
Unit tests for the itinerary scheduler.

These tests verify that:
1. Day numbers follow calendar days in each event's relevant zone
2. Flights are placed by their destination zone
3. Bad zones or time windows reject the whole computation
4. Plan date rollup honours the auto-calculate flags
"""

import random
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from wandervibe.itinerary import (
    compute_itinerary, itinerary_payload, rollup_plan_dates, resolve_relevant_zone,
    parse_instant, format_instant, is_valid_zone, ItineraryValidationError,
)
from wandervibe.models import Event, EventType, Plan, PlanType


STAMP = "2025-01-01T00:00:00Z"


def make_event(event_id, start, end, event_type=EventType.DINING, origin=None, destination=None):
    return Event(
        id=event_id,
        plan_id="plan-1",
        title=f"Event {event_id}",
        type=event_type,
        start_time=start,
        end_time=end,
        created_at=STAMP,
        updated_at=STAMP,
        origin_time_zone=origin,
        destination_time_zone=destination,
    )


def make_plan(time_zone="UTC", auto_start=True, auto_end=True):
    return Plan(
        id="plan-1",
        type=PlanType.TRIP,
        name="Test Trip",
        owner_id="user-1",
        created_at=STAMP,
        updated_at=STAMP,
        time_zone=time_zone,
        destination="Somewhere",
        auto_calculate_start_date=auto_start,
        auto_calculate_end_date=auto_end,
    )


def day_numbers(scheduled):
    return {item.event.id: item.day_number for item in scheduled}


# ─────────────────────────── TIME HELPERS ───────────────────────────

class TestInstants:
    """Test instant parsing and formatting."""

    def test_naive_values_are_utc(self):
        assert parse_instant("2025-10-11T08:00:00") == datetime(2025, 10, 11, 8, tzinfo=timezone.utc)

    def test_offsets_are_normalized(self):
        assert format_instant(parse_instant("2025-10-11T09:00:00+01:00")) == "2025-10-11T08:00:00Z"

    def test_garbage_returns_none(self):
        assert parse_instant("next tuesday") is None
        assert parse_instant("") is None
        assert parse_instant(None) is None

    def test_offset_before_year_one_returns_none(self):
        assert parse_instant("0001-01-01T00:30:00+01:00") is None


# ─────────────────────────── ZONE RESOLUTION ───────────────────────────

class TestRelevantZone:
    """Test which zone decides an event's calendar day."""

    def test_flight_uses_destination(self):
        flight = make_event("f", "2025-10-11T03:00:00Z", "2025-10-11T05:00:00Z",
                            EventType.FLIGHT, origin="America/New_York", destination="Europe/London")
        assert resolve_relevant_zone(flight, "Asia/Tokyo") == "Europe/London"

    def test_other_events_use_plan_zone(self):
        dinner = make_event("d", "2025-10-11T18:00:00Z", "2025-10-11T20:00:00Z",
                            destination="Europe/London")
        assert resolve_relevant_zone(dinner, "Asia/Tokyo") == "Asia/Tokyo"

    def test_unknown_zone_never_falls_back(self):
        dinner = make_event("d", "2025-10-11T18:00:00Z", "2025-10-11T20:00:00Z")
        with pytest.raises(ItineraryValidationError) as exc:
            resolve_relevant_zone(dinner, "Mars/Olympus_Mons")
        assert exc.value.event_id == "d"

    def test_zone_database_directory_is_not_a_zone(self):
        flight = make_event("f", "2025-10-11T03:00:00Z", "2025-10-11T05:00:00Z",
                            EventType.FLIGHT, origin="Europe/London", destination="America")
        with pytest.raises(ItineraryValidationError) as exc:
            resolve_relevant_zone(flight, "UTC")
        assert exc.value.event_id == "f"
        assert not is_valid_zone("America")
        assert is_valid_zone("America/Los_Angeles")


# ─────────────────────────── DAY NUMBERING ───────────────────────────

class TestDayNumbers:
    """Test sequential day numbering."""

    def test_red_eye_flight_then_breakfast_same_london_day(self):
        # Leaves New York 23:00 local, lands 06:00 London; breakfast at 09:00 London
        flight = make_event("A", "2025-10-11T03:00:00Z", "2025-10-11T05:00:00Z",
                            EventType.FLIGHT, origin="America/New_York", destination="Europe/London")
        breakfast = make_event("B", "2025-10-11T08:00:00Z", "2025-10-11T09:00:00Z")

        scheduled, grouped = compute_itinerary([breakfast, flight], "Europe/London")

        assert [item.event.id for item in scheduled] == ["A", "B"]
        assert day_numbers(scheduled) == {"A": 1, "B": 1}
        assert scheduled[0].relevant_time_zone == "Europe/London"
        assert list(grouped) == [1]

    def test_same_calendar_day_shares_day_one(self):
        lunch = make_event("lunch", "2025-03-15T12:00:00Z", "2025-03-15T13:00:00Z")
        show = make_event("show", "2025-03-15T19:00:00Z", "2025-03-15T21:00:00Z")

        scheduled, _ = compute_itinerary([lunch, show], "UTC")

        assert day_numbers(scheduled) == {"lunch": 1, "show": 1}

    def test_next_calendar_day_opens_day_two(self):
        first = make_event("first", "2025-03-15T12:00:00Z", "2025-03-15T13:00:00Z")
        second = make_event("second", "2025-03-16T09:00:00Z", "2025-03-16T10:00:00Z")

        scheduled, grouped = compute_itinerary([second, first], "UTC")

        assert day_numbers(scheduled) == {"first": 1, "second": 2}
        assert [item.event.id for item in grouped[2]] == ["second"]

    def test_gaps_do_not_skip_day_numbers(self):
        first = make_event("first", "2025-03-15T12:00:00Z", "2025-03-15T13:00:00Z")
        later = make_event("later", "2025-03-20T12:00:00Z", "2025-03-20T13:00:00Z")

        scheduled, _ = compute_itinerary([first, later], "UTC")

        assert day_numbers(scheduled) == {"first": 1, "later": 2}

    def test_event_past_midnight_keeps_next_morning_on_same_day(self):
        party = make_event("party", "2025-03-15T22:00:00Z", "2025-03-16T02:00:00Z")
        brunch = make_event("brunch", "2025-03-16T10:00:00Z", "2025-03-16T11:00:00Z")

        scheduled, _ = compute_itinerary([party, brunch], "UTC")

        assert day_numbers(scheduled) == {"party": 1, "brunch": 1}

    def test_zone_changes_day_boundaries(self):
        late = make_event("late", "2025-01-01T22:00:00Z", "2025-01-01T23:00:00Z")
        early = make_event("early", "2025-01-02T01:00:00Z", "2025-01-02T02:00:00Z")

        in_utc, _ = compute_itinerary([late, early], "UTC")
        in_new_york, _ = compute_itinerary([late, early], "America/New_York")

        assert day_numbers(in_utc) == {"late": 1, "early": 2}
        assert day_numbers(in_new_york) == {"late": 1, "early": 1}

    def test_same_instants_split_by_relevant_zone(self):
        # Prior event ends 19:00 in Tokyo and 03:00 in Los Angeles on 15 March.
        # The next one starts at 01:00 on 16 March in Tokyo, 09:00 on 15 March in Los Angeles.
        prior = make_event("prior", "2025-03-15T09:00:00Z", "2025-03-15T10:00:00Z")
        start, end = "2025-03-15T16:00:00Z", "2025-03-15T18:00:00Z"
        tour = make_event("next", start, end)
        flight = make_event("next", start, end, EventType.FLIGHT,
                            origin="Asia/Tokyo", destination="America/Los_Angeles")

        by_plan_zone, _ = compute_itinerary([prior, tour], "Asia/Tokyo")
        by_destination, _ = compute_itinerary([prior, flight], "Asia/Tokyo")

        assert by_plan_zone[1].relevant_time_zone == "Asia/Tokyo"
        assert by_destination[1].relevant_time_zone == "America/Los_Angeles"
        assert day_numbers(by_plan_zone) == {"prior": 1, "next": 2}
        assert day_numbers(by_destination) == {"prior": 1, "next": 1}

        instant = parse_instant(start)
        assert instant.astimezone(ZoneInfo("Asia/Tokyo")).date() == date(2025, 3, 16)
        assert instant.astimezone(ZoneInfo("America/Los_Angeles")).date() == date(2025, 3, 15)

    def test_equal_starts_keep_input_order(self):
        a = make_event("a", "2025-03-15T12:00:00Z", "2025-03-15T13:00:00Z")
        b = make_event("b", "2025-03-15T12:00:00Z", "2025-03-15T14:00:00Z")

        scheduled, _ = compute_itinerary([b, a], "UTC")

        assert [item.event.id for item in scheduled] == ["b", "a"]

    def test_deterministic_and_monotonic(self):
        events = [
            make_event(f"e{i}", f"2025-06-{1 + i // 3:02d}T{8 + (i % 3) * 4:02d}:00:00Z",
                       f"2025-06-{1 + i // 3:02d}T{9 + (i % 3) * 4:02d}:00:00Z")
            for i in range(12)
        ]
        shuffled = list(events)
        random.Random(7).shuffle(shuffled)

        first, _ = compute_itinerary(shuffled, "Europe/Paris")
        second, _ = compute_itinerary(shuffled, "Europe/Paris")

        assert day_numbers(first) == day_numbers(second)
        numbers = [item.day_number for item in first]
        assert numbers[0] == 1
        assert all(0 <= b - a <= 1 for a, b in zip(numbers, numbers[1:]))
        assert numbers[-1] == 4

    def test_empty_input(self):
        scheduled, grouped = compute_itinerary([], "UTC")

        assert scheduled == []
        assert grouped == {}
        assert itinerary_payload(scheduled, grouped) == {"events": [], "grouped": {}}

    def test_payload_keys_and_fields(self):
        first = make_event("first", "2025-03-15T12:00:00Z", "2025-03-15T13:00:00Z")
        second = make_event("second", "2025-03-16T12:00:00Z", "2025-03-16T13:00:00Z")

        payload = itinerary_payload(*compute_itinerary([first, second], "UTC"))

        assert list(payload["grouped"]) == ["1", "2"]
        assert payload["events"][1]["day_number"] == 2
        assert payload["events"][1]["relevant_time_zone"] == "UTC"
        assert payload["grouped"]["2"][0]["id"] == "second"


class TestItineraryValidation:
    """Test that bad event data rejects the whole computation."""

    def test_flight_without_destination_zone(self):
        ok = make_event("ok", "2025-03-15T12:00:00Z", "2025-03-15T13:00:00Z")
        flight = make_event("flight-1", "2025-03-15T15:00:00Z", "2025-03-15T18:00:00Z",
                            EventType.FLIGHT, origin="Europe/London")

        with pytest.raises(ItineraryValidationError) as exc:
            compute_itinerary([ok, flight], "UTC")
        assert exc.value.event_id == "flight-1"

    def test_unknown_plan_zone(self):
        dinner = make_event("dinner", "2025-03-15T12:00:00Z", "2025-03-15T13:00:00Z")

        with pytest.raises(ItineraryValidationError):
            compute_itinerary([dinner], "Not/AZone")

    def test_zone_database_directory_as_plan_zone(self):
        dinner = make_event("dinner", "2025-03-15T12:00:00Z", "2025-03-15T13:00:00Z")

        with pytest.raises(ItineraryValidationError) as exc:
            compute_itinerary([dinner], "America")
        assert exc.value.event_id == "dinner"

    def test_start_out_of_range_in_zone(self):
        first = make_event("first", "0001-01-01T00:30:00Z", "0001-01-01T02:00:00Z")

        with pytest.raises(ItineraryValidationError) as exc:
            compute_itinerary([first], "America/New_York")
        assert exc.value.event_id == "first"

    def test_end_not_after_start(self):
        broken = make_event("broken", "2025-03-15T12:00:00Z", "2025-03-15T12:00:00Z")

        with pytest.raises(ItineraryValidationError) as exc:
            compute_itinerary([broken], "UTC")
        assert exc.value.event_id == "broken"


# ─────────────────────────── DATE ROLLUP ───────────────────────────

class TestRollup:
    """Test plan start/end date derivation."""

    EVENTS = [
        make_event("mid", "2025-05-02T10:00:00Z", "2025-05-02T12:00:00Z"),
        make_event("first", "2025-05-01T08:30:00Z", "2025-05-01T09:00:00Z"),
        make_event("last", "2025-05-03T20:00:00Z", "2025-05-04T01:15:00Z"),
    ]

    def test_both_flags(self):
        patch = rollup_plan_dates(make_plan(), self.EVENTS)
        assert patch == {"start_date": "2025-05-01T08:30:00Z", "end_date": "2025-05-04T01:15:00Z"}

    def test_start_only(self):
        patch = rollup_plan_dates(make_plan(auto_end=False), self.EVENTS)
        assert patch == {"start_date": "2025-05-01T08:30:00Z"}

    def test_end_only(self):
        patch = rollup_plan_dates(make_plan(auto_start=False), self.EVENTS)
        assert patch == {"end_date": "2025-05-04T01:15:00Z"}

    def test_flags_off(self):
        assert rollup_plan_dates(make_plan(auto_start=False, auto_end=False), self.EVENTS) is None

    def test_no_events(self):
        assert rollup_plan_dates(make_plan(), []) is None
