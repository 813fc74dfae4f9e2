"""
Plan event routes.

Creating, editing or deleting an event re-runs the plan date rollup
(plans.refresh_plan_dates) and notifies the plan's participants.
"""

from datetime import timedelta
from typing import Optional, Dict, Any
from urllib.parse import urlparse
import logging

from fastapi import APIRouter, Request, HTTPException, Depends
from fastapi.responses import JSONResponse

from wandervibe.auth import require_user, read_json_body, log_audit
from wandervibe.itinerary import parse_instant, format_instant, is_valid_zone
from wandervibe.models import Event, EventType, CostType, AuditAction, User
from wandervibe.notifications import Notifier, get_notifier
from wandervibe.plans import (
    require_plan_member, get_plan_or_404, get_member_ids, refresh_plan_dates,
    create_event, get_event_by_id, update_event, delete_event,
)

logger = logging.getLogger("wandervibe.events")

router = APIRouter(prefix="/api/events", tags=["events"])

RESOURCE_LINK_KEYS = ("maps", "uber", "booking")
MUTABLE_FIELDS = (
    "title", "type", "custom_type", "start_time", "end_time", "duration",
    "origin_time_zone", "destination_time_zone", "location", "details",
    "cost", "cost_type", "resource_links",
)


def normalize_link(url_value: Optional[str]) -> Optional[str]:
    """Keep only http(s) links; drop everything else."""
    if not url_value or not isinstance(url_value, str):
        return None
    parsed = urlparse(url_value.strip())
    if parsed.scheme in ("http", "https") and parsed.netloc:
        return url_value.strip()
    return None


def _clean_text(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def validate_event_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a full event body (new event, or existing event merged with a patch).
    Returns stored values; raises HTTPException(400) on the first problem.
    """
    title = _clean_text(data.get("title"))
    raw_type = data.get("type")
    raw_start = data.get("start_time")
    raw_end = data.get("end_time")
    duration = data.get("duration")

    if not title or not raw_type or not raw_start or (duration in (None, "") and not raw_end):
        raise HTTPException(
            status_code=400,
            detail="Missing required: plan_id, title, type, start_time, and either duration or end_time",
        )

    try:
        event_type = EventType(raw_type)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid event type: {raw_type}")

    custom_type = _clean_text(data.get("custom_type"))
    location = _clean_text(data.get("location"))
    details = _clean_text(data.get("details"))
    if event_type == EventType.CUSTOM and not (custom_type and location and details):
        raise HTTPException(status_code=400, detail="Custom events require custom_type, location, details")

    start = parse_instant(raw_start)
    if start is None:
        raise HTTPException(status_code=400, detail="Invalid start_time")

    if duration not in (None, ""):
        try:
            duration = int(duration)
        except (TypeError, ValueError):
            raise HTTPException(status_code=400, detail="duration must be a whole number of minutes")
        if duration < 0:
            raise HTTPException(status_code=400, detail="duration must not be negative")
    else:
        duration = None

    if raw_end:
        end = parse_instant(raw_end)
        if end is None:
            raise HTTPException(status_code=400, detail="Invalid end_time")
    else:
        try:
            end = start + timedelta(minutes=duration)
        except OverflowError:
            raise HTTPException(status_code=400, detail="duration is out of range")

    if end <= start:
        raise HTTPException(status_code=400, detail="end_time must be after start_time")

    origin_tz = destination_tz = None
    if event_type == EventType.FLIGHT:
        origin_tz = _clean_text(data.get("origin_time_zone"))
        destination_tz = _clean_text(data.get("destination_time_zone"))
        if not (origin_tz and destination_tz):
            raise HTTPException(status_code=400, detail="Flights require origin_time_zone and destination_time_zone")
        for tz_name in (origin_tz, destination_tz):
            if not is_valid_zone(tz_name):
                raise HTTPException(status_code=400, detail=f"Unknown time zone: {tz_name}")

    try:
        cost = float(data.get("cost") or 0)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="cost must be a number")
    try:
        cost_type = CostType(data.get("cost_type") or CostType.ESTIMATED.value)
    except ValueError:
        raise HTTPException(status_code=400, detail="cost_type must be estimated or actual")

    links = {}
    raw_links = data.get("resource_links") or {}
    if isinstance(raw_links, dict):
        for key in RESOURCE_LINK_KEYS:
            safe = normalize_link(raw_links.get(key))
            if safe:
                links[key] = safe

    return {
        "title": title,
        "type": event_type,
        "custom_type": custom_type if event_type == EventType.CUSTOM else None,
        "start_time": format_instant(start),
        "end_time": format_instant(end),
        "duration": duration,
        "origin_time_zone": origin_tz,
        "destination_time_zone": destination_tz,
        "location": location,
        "details": details,
        "cost": cost,
        "cost_type": cost_type,
        "resource_links": links,
    }


def get_event_or_404(event_id: str) -> Event:
    event = get_event_by_id(event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


def _notify_participants(notifier: Notifier, plan_id: str, message: str):
    notifier.notify(get_member_ids(plan_id), message)


# ─────────────────────────── ROUTES ───────────────────────────

@router.post("")
async def create_event_submit(
    request: Request,
    user: User = Depends(require_user),
    notifier: Notifier = Depends(get_notifier),
):
    """Create an event for a plan (VibeCoordinator or VibePlanner)."""
    data = await read_json_body(request)
    plan_id = data.get("plan_id")
    if not plan_id:
        raise HTTPException(
            status_code=400,
            detail="Missing required: plan_id, title, type, start_time, and either duration or end_time",
        )

    fields = validate_event_fields(data)
    get_plan_or_404(plan_id)
    require_plan_member(user, plan_id, require_edit=True)

    title = fields.pop("title")
    event_type = fields.pop("type")
    event = create_event(
        plan_id=plan_id,
        title=title,
        event_type=event_type,
        start_time=fields.pop("start_time"),
        end_time=fields.pop("end_time"),
        **fields,
    )

    refresh_plan_dates(plan_id)

    log_audit(
        action=AuditAction.EVENT_CREATED,
        actor_id=user.id,
        actor_name=user.display_name,
        target_type="event",
        target_id=event.id,
        details={"plan_id": plan_id, "title": title},
    )
    _notify_participants(notifier, plan_id, f"New event added: {title} ({event_type.value})")

    return JSONResponse({"msg": "Event created!", "event": event.to_dict()}, status_code=201)


@router.get("/{event_id}")
async def get_event(event_id: str, user: User = Depends(require_user)):
    event = get_event_or_404(event_id)
    require_plan_member(user, event.plan_id)
    return JSONResponse({"event": event.to_dict()})


@router.patch("/{event_id}")
async def update_event_submit(
    event_id: str,
    request: Request,
    user: User = Depends(require_user),
    notifier: Notifier = Depends(get_notifier),
):
    """Edit an event; the merged record is validated as a whole."""
    event = get_event_or_404(event_id)
    require_plan_member(user, event.plan_id, require_edit=True)
    data = await read_json_body(request)

    merged = event.to_dict()
    merged.update({k: v for k, v in data.items() if k in MUTABLE_FIELDS})
    if "duration" in data and "end_time" not in data:
        merged["end_time"] = None
    elif "end_time" in data and "duration" not in data:
        merged["duration"] = None
    fields = validate_event_fields(merged)

    update_event(event_id, **fields)
    refresh_plan_dates(event.plan_id)

    log_audit(
        action=AuditAction.EVENT_UPDATED,
        actor_id=user.id,
        actor_name=user.display_name,
        target_type="event",
        target_id=event_id,
        details={"plan_id": event.plan_id, "fields": sorted(k for k in data if k in MUTABLE_FIELDS)},
    )
    _notify_participants(notifier, event.plan_id, f"Event updated: {fields['title']}")

    return JSONResponse({"msg": "Event updated!", "event": get_event_by_id(event_id).to_dict()})


@router.delete("/{event_id}")
async def delete_event_submit(
    event_id: str,
    user: User = Depends(require_user),
    notifier: Notifier = Depends(get_notifier),
):
    event = get_event_or_404(event_id)
    require_plan_member(user, event.plan_id, require_edit=True)

    delete_event(event_id)
    refresh_plan_dates(event.plan_id)

    log_audit(
        action=AuditAction.EVENT_DELETED,
        actor_id=user.id,
        actor_name=user.display_name,
        target_type="event",
        target_id=event_id,
        details={"plan_id": event.plan_id, "title": event.title},
    )
    _notify_participants(notifier, event.plan_id, f"Event removed: {event.title}")

    return JSONResponse({"msg": "Event deleted!"})
