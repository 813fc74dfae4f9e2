"""
Itinerary scheduling for plans.

Provides:
- Relevant time zone resolution (destination zone for flights, plan zone otherwise)
- Sequential day numbering over a plan's events
- Grouping of events by day number
- Plan start/end date rollup from event extremes

Everything here is pure: callers fetch events and plans, and apply any
date patch themselves (see plans.refresh_plan_dates).
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Any, Tuple, Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

from wandervibe.models import Event, EventType, Plan

logger = logging.getLogger("wandervibe.itinerary")


# ─────────────────────────── ERRORS ───────────────────────────

class ItineraryError(Exception):
    """Base class for itinerary failures."""


class ItineraryValidationError(ItineraryError):
    """An event cannot be placed on the itinerary (bad zone or bad times)."""

    def __init__(self, event_id: Optional[str], reason: str):
        self.event_id = event_id
        self.reason = reason
        super().__init__(f"Event {event_id}: {reason}")


class UpstreamUnavailable(ItineraryError):
    """The persistence store failed while applying a plan date rollup."""


# ─────────────────────────── TIME HELPERS ───────────────────────────

def parse_instant(value) -> Optional[datetime]:
    """
    Parse an ISO datetime (or datetime) into an aware UTC datetime.
    Naive values are stored UTC and read back as such. Returns None when unparseable.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        return dt.astimezone(timezone.utc)
    except OverflowError:
        # Offsets that push the instant outside year 1..9999
        return None


def format_instant(dt: datetime) -> str:
    """UTC timestamp with Z suffix and no microseconds."""
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def load_zone(tz_name: Optional[str], event_id: Optional[str] = None) -> ZoneInfo:
    """Return a ZoneInfo for tz_name. Never falls back to UTC or local time."""
    if not tz_name or not isinstance(tz_name, str) or not tz_name.strip():
        raise ItineraryValidationError(event_id, "missing time zone")
    try:
        return ZoneInfo(tz_name.strip())
    except (ZoneInfoNotFoundError, ValueError, OSError):
        # OSError covers names that are directories in the zone database, e.g. "America"
        raise ItineraryValidationError(event_id, f"unknown time zone '{tz_name}'")


def is_valid_zone(tz_name: Optional[str]) -> bool:
    try:
        load_zone(tz_name)
    except ItineraryValidationError:
        return False
    return True


def _is_flight(event: Event) -> bool:
    event_type = event.type.value if isinstance(event.type, EventType) else event.type
    return event_type == EventType.FLIGHT.value


def resolve_relevant_zone(event: Event, plan_time_zone: Optional[str]) -> str:
    """
    Zone that decides which calendar day an event falls on:
    destination_time_zone for flights, the plan's zone for everything else.
    """
    tz_name = event.destination_time_zone if _is_flight(event) else plan_time_zone
    load_zone(tz_name, event.id)
    return tz_name.strip()


def event_window(event: Event) -> Tuple[datetime, datetime]:
    """Parsed (start, end) for an event; end must be strictly after start."""
    start = parse_instant(event.start_time)
    if start is None:
        raise ItineraryValidationError(event.id, "missing or invalid start_time")
    end = parse_instant(event.end_time)
    if end is None:
        raise ItineraryValidationError(event.id, "missing or invalid end_time")
    if end <= start:
        raise ItineraryValidationError(event.id, "end_time must be after start_time")
    return start, end


def _local_date(instant: datetime, zone: ZoneInfo, event_id: Optional[str]) -> date:
    try:
        return instant.astimezone(zone).date()
    except OverflowError:
        raise ItineraryValidationError(event_id, "time is out of range in its time zone")


# ─────────────────────────── DAY NUMBERING ───────────────────────────

@dataclass
class ScheduledEvent:
    """An event placed on the itinerary. Derived view data, never stored."""
    event: Event
    day_number: int
    relevant_time_zone: str

    def to_dict(self) -> Dict[str, Any]:
        data = self.event.to_dict()
        data["relevant_time_zone"] = self.relevant_time_zone
        data["day_number"] = self.day_number
        return data


def compute_itinerary(
    events: Iterable[Event],
    plan_time_zone: Optional[str],
) -> Tuple[List[ScheduledEvent], Dict[int, List[ScheduledEvent]]]:
    """
    Assign day numbers to a plan's events.

    Events are sorted by start instant (stable, so equal starts keep their
    input order). The first event is day 1. An event opens a new day only when
    its start date, in its own relevant zone, is strictly after the previous
    event's end date read in that same zone.

    Returns the flat sorted list and a mapping of day number -> events in
    ascending key order. Raises ItineraryValidationError for the first event
    with an unusable zone or time window; nothing is silently dropped.
    """
    prepared = []
    for event in events:
        zone_name = resolve_relevant_zone(event, plan_time_zone)
        start, end = event_window(event)
        prepared.append((start, end, zone_name, event))

    prepared.sort(key=lambda item: item[0])

    scheduled: List[ScheduledEvent] = []
    day_number = 0
    previous_end: Optional[datetime] = None
    for start, end, zone_name, event in prepared:
        zone = ZoneInfo(zone_name)
        start_day = _local_date(start, zone, event.id)
        if previous_end is None or start_day > _local_date(previous_end, zone, event.id):
            day_number += 1
        scheduled.append(ScheduledEvent(event=event, day_number=day_number, relevant_time_zone=zone_name))
        previous_end = end

    grouped: Dict[int, List[ScheduledEvent]] = {}
    for item in scheduled:
        grouped.setdefault(item.day_number, []).append(item)

    return scheduled, grouped


def itinerary_payload(scheduled: List[ScheduledEvent], grouped: Dict[int, List[ScheduledEvent]]) -> Dict[str, Any]:
    """JSON-ready response body; day keys become strings in JSON."""
    return {
        "events": [item.to_dict() for item in scheduled],
        "grouped": {str(day): [item.to_dict() for item in items] for day, items in sorted(grouped.items())},
    }


# ─────────────────────────── PLAN DATE ROLLUP ───────────────────────────

def rollup_plan_dates(plan: Plan, events: List[Event]) -> Optional[Dict[str, str]]:
    """
    Derive a {start_date, end_date} patch from the earliest start and latest
    end across events, honouring the plan's auto-calculate flags.
    Returns None when there are no events or nothing is auto-calculated.
    """
    if not events:
        return None
    if not (plan.auto_calculate_start_date or plan.auto_calculate_end_date):
        return None

    windows = [event_window(e) for e in events]
    candidate_start = min(start for start, _ in windows)
    candidate_end = max(end for _, end in windows)

    patch = {}
    if plan.auto_calculate_start_date:
        patch["start_date"] = format_instant(candidate_start)
    if plan.auto_calculate_end_date:
        patch["end_date"] = format_instant(candidate_end)
    return patch
