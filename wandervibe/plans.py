"""
Plans feature for WanderVibe.

Provides:
- Plan management (CRUD) for trips and venue-based event plans
- Plan member management with role-based access
- Event persistence helpers shared with the events routes
- Plan date rollup from event extremes
- Day-numbered itinerary view
"""

import os
import uuid
import sqlite3
import json
from typing import Optional, List, Dict, Any
import logging

from fastapi import APIRouter, Request, HTTPException, Depends
from fastapi.responses import JSONResponse

from wandervibe.auth import db, now_iso, require_user, read_json_body, log_audit, get_user_by_id
from wandervibe.itinerary import (
    compute_itinerary, itinerary_payload, rollup_plan_dates, parse_instant, format_instant,
    is_valid_zone, ItineraryValidationError, UpstreamUnavailable,
)
from wandervibe.models import (
    Plan, PlanMember, Event, PlanType, PlanRole, PlanningState, EventType, CostType,
    AuditAction, ROLE_ORDER, User,
)
from wandervibe.notifications import Notifier, get_notifier

logger = logging.getLogger("wandervibe.plans")

# ─────────────────────────── SETUP ───────────────────────────

router = APIRouter(prefix="/api/plans", tags=["plans"])

DEFAULT_PLAN_TIMEZONE = os.getenv("DEFAULT_PLAN_TIMEZONE", "UTC")


def as_bool(value, default: bool = False) -> bool:
    """Loose boolean parsing for JSON bodies ("true", 1, True, ...)."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def normalize_instant(value, field_name: str) -> Optional[str]:
    """Parse an optional ISO date/datetime into stored UTC form, or raise 400."""
    if value in (None, ""):
        return None
    parsed = parse_instant(value)
    if parsed is None:
        raise HTTPException(status_code=400, detail=f"Invalid {field_name}")
    return format_instant(parsed)


# ─────────────────────────── DATABASE HELPERS ───────────────────────────

def _row_to_plan(row: sqlite3.Row) -> Plan:
    """Convert database row to Plan object."""
    return Plan(
        id=row["id"],
        type=PlanType(row["type"]),
        name=row["name"],
        destination=row["destination"],
        location=row["location"],
        time_zone=row["time_zone"] or DEFAULT_PLAN_TIMEZONE,
        start_date=row["start_date"],
        end_date=row["end_date"],
        auto_calculate_start_date=bool(row["auto_calculate_start_date"]),
        auto_calculate_end_date=bool(row["auto_calculate_end_date"]),
        budget=row["budget"] or 0,
        planning_state=PlanningState(row["planning_state"] or "initial"),
        owner_id=row["owner_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_plan_member(row: sqlite3.Row) -> PlanMember:
    """Convert database row to PlanMember object."""
    keys = row.keys()
    user_name = None
    if "first_name" in keys:
        user_name = " ".join(p for p in (row["first_name"], row["last_name"]) if p) or None
    return PlanMember(
        id=row["id"],
        plan_id=row["plan_id"],
        user_id=row["user_id"],
        role=PlanRole(row["role"]),
        added_at=row["added_at"],
        user_email=row["email"] if "email" in keys else None,
        user_name=user_name,
    )


def _row_to_event(row: sqlite3.Row) -> Event:
    """Convert database row to Event object."""
    links = {}
    if row["resource_links"]:
        try:
            links = json.loads(row["resource_links"])
        except json.JSONDecodeError:
            logger.warning(f"Bad resource_links JSON on event {row['id']}")

    return Event(
        id=row["id"],
        plan_id=row["plan_id"],
        title=row["title"],
        type=EventType(row["type"]),
        custom_type=row["custom_type"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        duration=row["duration"],
        origin_time_zone=row["origin_time_zone"],
        destination_time_zone=row["destination_time_zone"],
        location=row["location"],
        details=row["details"],
        cost=row["cost"] or 0,
        cost_type=CostType(row["cost_type"] or "estimated"),
        resource_links=links,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


# ─────────────────────────── ACCESS CONTROL ───────────────────────────

def get_plan_membership(user_id: str, plan_id: str) -> Optional[PlanMember]:
    """Get user's membership for a plan, or None if not a participant."""
    conn = db()
    row = conn.execute("""
        SELECT pm.*, u.email, u.first_name, u.last_name
        FROM plan_members pm
        JOIN users u ON u.id = pm.user_id
        WHERE pm.plan_id = ? AND pm.user_id = ?
    """, (plan_id, user_id)).fetchone()
    conn.close()

    if not row:
        return None
    return _row_to_plan_member(row)


def require_plan_member(user: User, plan_id: str, require_edit: bool = False) -> PlanMember:
    """
    Check the user participates in the plan.
    Returns the membership or raises HTTPException.
    """
    membership = get_plan_membership(user.id, plan_id)
    if not membership:
        raise HTTPException(status_code=403, detail="Access denied: Not a plan participant")

    if require_edit and not membership.can_edit():
        raise HTTPException(status_code=403, detail="Only VibeCoordinators and VibePlanners can edit this plan")

    return membership


def get_plan_or_404(plan_id: str) -> Plan:
    plan = get_plan_by_id(plan_id)
    if not plan:
        raise HTTPException(status_code=404, detail="Plan not found")
    return plan


# ─────────────────────────── PLAN CRUD ───────────────────────────

def create_plan(
    plan_type: PlanType,
    name: str,
    owner_id: str,
    time_zone: str = DEFAULT_PLAN_TIMEZONE,
    **kwargs
) -> Plan:
    """Create a new plan and add the creator as VibeCoordinator."""
    conn = db()
    now = now_iso()
    plan_id = str(uuid.uuid4())

    conn.execute("""
        INSERT INTO plans (id, type, name, destination, location, time_zone, start_date, end_date,
                           auto_calculate_start_date, auto_calculate_end_date, budget, planning_state,
                           owner_id, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        plan_id, plan_type.value, name,
        kwargs.get("destination"),
        kwargs.get("location"),
        time_zone,
        kwargs.get("start_date"),
        kwargs.get("end_date"),
        1 if kwargs.get("auto_calculate_start_date", True) else 0,
        1 if kwargs.get("auto_calculate_end_date", True) else 0,
        kwargs.get("budget") or 0,
        PlanningState.INITIAL.value,
        owner_id, now, now,
    ))

    conn.execute("""
        INSERT INTO plan_members (id, plan_id, user_id, role, added_at)
        VALUES (?, ?, ?, ?, ?)
    """, (str(uuid.uuid4()), plan_id, owner_id, PlanRole.COORDINATOR.value, now))

    conn.commit()
    conn.close()

    logger.info(f"Plan created: {name} ({plan_id}) by user {owner_id}")
    return get_plan_by_id(plan_id)


def get_plan_by_id(plan_id: str) -> Optional[Plan]:
    """Get plan by ID."""
    conn = db()
    row = conn.execute("SELECT * FROM plans WHERE id = ?", (plan_id,)).fetchone()
    conn.close()

    if not row:
        return None
    return _row_to_plan(row)


def get_user_plans(user_id: str) -> List[Plan]:
    """Get all plans a user participates in, undated plans last."""
    conn = db()
    rows = conn.execute("""
        SELECT p.* FROM plans p
        JOIN plan_members pm ON pm.plan_id = p.id
        WHERE pm.user_id = ?
        ORDER BY p.start_date IS NULL, p.start_date, p.created_at
    """, (user_id,)).fetchall()
    conn.close()

    return [_row_to_plan(row) for row in rows]


def update_plan(plan_id: str, **kwargs) -> bool:
    """Update plan fields."""
    allowed_fields = {"name", "destination", "location", "time_zone", "start_date", "end_date",
                      "auto_calculate_start_date", "auto_calculate_end_date", "budget",
                      "planning_state", "owner_id"}
    updates = {}
    for k, v in kwargs.items():
        if k not in allowed_fields:
            continue
        if k in ("auto_calculate_start_date", "auto_calculate_end_date"):
            updates[k] = 1 if v else 0
        elif k == "planning_state" and isinstance(v, PlanningState):
            updates[k] = v.value
        else:
            updates[k] = v

    if not updates:
        return False

    updates["updated_at"] = now_iso()

    set_clause = ", ".join(f"{k} = ?" for k in updates.keys())
    values = list(updates.values()) + [plan_id]

    conn = db()
    conn.execute(f"UPDATE plans SET {set_clause} WHERE id = ?", values)
    conn.commit()
    conn.close()

    return True


def patch_plan_dates(plan_id: str, patch: Dict[str, str]) -> None:
    """
    Write a start/end date patch. Last write wins; no locking.
    Raises UpstreamUnavailable if the store fails or the plan is gone.
    """
    updates = {k: v for k, v in patch.items() if k in ("start_date", "end_date")}
    if not updates:
        return
    updates["updated_at"] = now_iso()

    set_clause = ", ".join(f"{k} = ?" for k in updates.keys())
    values = list(updates.values()) + [plan_id]

    try:
        conn = db()
        try:
            cur = conn.execute(f"UPDATE plans SET {set_clause} WHERE id = ?", values)
            conn.commit()
            affected = cur.rowcount
        finally:
            conn.close()
    except sqlite3.Error as e:
        raise UpstreamUnavailable(f"Could not update dates for plan {plan_id}: {e}") from e

    if affected == 0:
        raise UpstreamUnavailable(f"Plan {plan_id} no longer exists")


def delete_plan(plan_id: str) -> bool:
    """Delete a plan and all associated events, members and invitations."""
    conn = db()
    conn.execute("DELETE FROM events WHERE plan_id = ?", (plan_id,))
    conn.execute("DELETE FROM invitations WHERE plan_id = ?", (plan_id,))
    conn.execute("DELETE FROM plan_members WHERE plan_id = ?", (plan_id,))
    cur = conn.execute("DELETE FROM plans WHERE id = ?", (plan_id,))
    conn.commit()
    deleted = cur.rowcount > 0
    conn.close()

    if deleted:
        logger.info(f"Plan deleted: {plan_id}")
    return deleted


# ─────────────────────────── PLAN MEMBERS ───────────────────────────

def get_plan_members(plan_id: str) -> List[PlanMember]:
    """Get all members of a plan, coordinator first."""
    conn = db()
    rows = conn.execute("""
        SELECT pm.*, u.email, u.first_name, u.last_name
        FROM plan_members pm
        JOIN users u ON u.id = pm.user_id
        WHERE pm.plan_id = ?
        ORDER BY pm.added_at, pm.rowid
    """, (plan_id,)).fetchall()
    conn.close()

    members = [_row_to_plan_member(row) for row in rows]
    members.sort(key=lambda m: ROLE_ORDER[m.role])
    return members


def get_user_memberships(user_id: str) -> List[PlanMember]:
    """All plan memberships held by a user."""
    conn = db()
    rows = conn.execute("""
        SELECT * FROM plan_members WHERE user_id = ? ORDER BY added_at
    """, (user_id,)).fetchall()
    conn.close()
    return [_row_to_plan_member(row) for row in rows]


def get_member_ids(plan_id: str) -> List[str]:
    conn = db()
    rows = conn.execute("SELECT user_id FROM plan_members WHERE plan_id = ?", (plan_id,)).fetchall()
    conn.close()
    return [row["user_id"] for row in rows]


def add_plan_member(plan_id: str, user_id: str, role: PlanRole) -> Optional[PlanMember]:
    """Add a participant to a plan. Returns None if already a member."""
    conn = db()
    try:
        conn.execute("""
            INSERT INTO plan_members (id, plan_id, user_id, role, added_at)
            VALUES (?, ?, ?, ?, ?)
        """, (str(uuid.uuid4()), plan_id, user_id, role.value, now_iso()))
        conn.commit()
    except sqlite3.IntegrityError:
        return None
    finally:
        conn.close()

    logger.info(f"Plan member added: user {user_id} to plan {plan_id} as {role.value}")
    return get_plan_membership(user_id, plan_id)


def remove_plan_member(plan_id: str, user_id: str) -> bool:
    """Remove a participant from a plan."""
    conn = db()
    cur = conn.execute("""
        DELETE FROM plan_members WHERE plan_id = ? AND user_id = ?
    """, (plan_id, user_id))
    conn.commit()
    affected = cur.rowcount
    conn.close()

    if affected > 0:
        logger.info(f"Plan member removed: user {user_id} from plan {plan_id}")
    return affected > 0


def transfer_coordinator(plan_id: str, from_user_id: str, to_user_id: str) -> None:
    """Swap roles so to_user becomes coordinator and owner, in one transaction."""
    conn = db()
    now = now_iso()
    try:
        if from_user_id:
            conn.execute("UPDATE plan_members SET role = ? WHERE plan_id = ? AND user_id = ?",
                         (PlanRole.PLANNER.value, plan_id, from_user_id))
        conn.execute("UPDATE plan_members SET role = ? WHERE plan_id = ? AND user_id = ?",
                     (PlanRole.COORDINATOR.value, plan_id, to_user_id))
        conn.execute("UPDATE plans SET owner_id = ?, updated_at = ? WHERE id = ?",
                     (to_user_id, now, plan_id))
        conn.commit()
    finally:
        conn.close()
    logger.info(f"Plan {plan_id} coordinator transferred to {to_user_id}")


# ─────────────────────────── EVENTS ───────────────────────────

def create_event(
    plan_id: str,
    title: str,
    event_type: EventType,
    start_time: str,
    end_time: str,
    **kwargs
) -> Event:
    """Create a new plan event."""
    conn = db()
    now = now_iso()
    event_id = str(uuid.uuid4())

    cost_type = kwargs.get("cost_type") or CostType.ESTIMATED
    conn.execute("""
        INSERT INTO events (
            id, plan_id, title, type, custom_type, start_time, end_time, duration,
            origin_time_zone, destination_time_zone, location, details,
            cost, cost_type, resource_links, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        event_id, plan_id, title, event_type.value,
        kwargs.get("custom_type"),
        start_time, end_time,
        kwargs.get("duration"),
        kwargs.get("origin_time_zone"),
        kwargs.get("destination_time_zone"),
        kwargs.get("location"),
        kwargs.get("details"),
        kwargs.get("cost") or 0,
        cost_type.value,
        json.dumps(kwargs.get("resource_links") or {}),
        now, now,
    ))
    conn.commit()
    conn.close()

    logger.info(f"Event created: {title} ({event_id}) for plan {plan_id}")
    return get_event_by_id(event_id)


def get_event_by_id(event_id: str) -> Optional[Event]:
    """Get event by ID."""
    conn = db()
    row = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
    conn.close()

    if not row:
        return None
    return _row_to_event(row)


def get_plan_events(plan_id: str) -> List[Event]:
    """Get all events for a plan in creation order (the scheduler sorts)."""
    conn = db()
    rows = conn.execute("""
        SELECT * FROM events WHERE plan_id = ?
        ORDER BY created_at, rowid
    """, (plan_id,)).fetchall()
    conn.close()

    return [_row_to_event(row) for row in rows]


def update_event(event_id: str, **kwargs) -> bool:
    """Update event fields."""
    allowed_fields = {
        "title", "type", "custom_type", "start_time", "end_time", "duration",
        "origin_time_zone", "destination_time_zone", "location", "details",
        "cost", "cost_type", "resource_links",
    }
    updates = {}
    for k, v in kwargs.items():
        if k not in allowed_fields:
            continue
        if k == "resource_links" and isinstance(v, dict):
            updates[k] = json.dumps(v)
        elif k in ("type", "cost_type") and hasattr(v, "value"):
            updates[k] = v.value
        else:
            updates[k] = v

    if not updates:
        return False

    updates["updated_at"] = now_iso()

    set_clause = ", ".join(f"{k} = ?" for k in updates.keys())
    values = list(updates.values()) + [event_id]

    conn = db()
    conn.execute(f"UPDATE events SET {set_clause} WHERE id = ?", values)
    conn.commit()
    conn.close()

    return True


def delete_event(event_id: str) -> bool:
    """Delete an event."""
    conn = db()
    cur = conn.execute("DELETE FROM events WHERE id = ?", (event_id,))
    conn.commit()
    affected = cur.rowcount
    conn.close()

    if affected > 0:
        logger.info(f"Event deleted: {event_id}")
    return affected > 0


# ─────────────────────────── DATE ROLLUP ───────────────────────────

def refresh_plan_dates(plan_id: str) -> Optional[Dict[str, str]]:
    """
    Recompute and store auto-calculated plan dates after an event mutation.

    Best-effort: failures are logged and None is returned, so the event
    mutation that triggered the rollup still succeeds.
    """
    try:
        plan = get_plan_by_id(plan_id)
        if not plan:
            raise UpstreamUnavailable(f"Plan {plan_id} no longer exists")
        events = get_plan_events(plan_id)
        patch = rollup_plan_dates(plan, events)
        if not patch:
            return None
        patch_plan_dates(plan_id, patch)
    except sqlite3.Error as e:
        logger.error(f"Plan date rollup failed for plan {plan_id}: {e}")
        return None
    except UpstreamUnavailable as e:
        logger.error(f"Plan date rollup failed for plan {plan_id}: {e}")
        return None
    except ItineraryValidationError as e:
        logger.warning(f"Plan date rollup skipped for plan {plan_id}: {e}")
        return None

    logger.info(f"Plan dates auto-updated for {plan_id}: {patch}")
    return patch


# ─────────────────────────── VALIDATION ───────────────────────────

def validate_plan_fields(data: Dict[str, Any], plan_type: PlanType, partial: bool = False) -> Dict[str, Any]:
    """
    Validate plan body fields; returns cleaned values for create/update.

    Supplying start_date or end_date without the matching auto_calculate_*
    flag turns that flag off, so the date is kept rather than overwritten by
    the next rollup. Sending the flag as true alongside a date keeps
    auto-calculation on and the date is replaced once the plan has events.
    """
    cleaned = {}

    if "name" in data or not partial:
        name = (data.get("name") or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="Missing required fields: type, name")
        cleaned["name"] = name

    for key in ("destination", "location"):
        if key in data:
            cleaned[key] = (data.get(key) or "").strip() or None

    if not partial:
        if plan_type == PlanType.TRIP and not cleaned.get("destination"):
            raise HTTPException(status_code=400, detail="Trips require a destination")
        if plan_type == PlanType.PLAN and not cleaned.get("location"):
            raise HTTPException(status_code=400, detail="Plans require a location")

    if "time_zone" in data or not partial:
        tz_name = data.get("time_zone") or DEFAULT_PLAN_TIMEZONE
        if not is_valid_zone(tz_name):
            raise HTTPException(status_code=400, detail=f"Unknown time zone: {tz_name}")
        cleaned["time_zone"] = tz_name

    for key in ("start_date", "end_date"):
        if key in data:
            cleaned[key] = normalize_instant(data.get(key), key)
    if cleaned.get("start_date") and cleaned.get("end_date") and cleaned["end_date"] < cleaned["start_date"]:
        raise HTTPException(status_code=400, detail="end_date must not be before start_date")

    for date_key, flag_key in (("start_date", "auto_calculate_start_date"), ("end_date", "auto_calculate_end_date")):
        if flag_key in data:
            cleaned[flag_key] = as_bool(data.get(flag_key), default=True)
        elif cleaned.get(date_key):
            # An explicit date switches its auto-calculation off
            cleaned[flag_key] = False
        elif not partial:
            cleaned[flag_key] = True

    if "budget" in data:
        try:
            cleaned["budget"] = float(data.get("budget") or 0)
        except (TypeError, ValueError):
            raise HTTPException(status_code=400, detail="budget must be a number")

    if "planning_state" in data:
        try:
            cleaned["planning_state"] = PlanningState(data.get("planning_state"))
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid planning_state")

    return cleaned


# ─────────────────────────── ROUTES: PLANS ───────────────────────────

@router.post("")
async def create_plan_submit(
    request: Request,
    user: User = Depends(require_user),
    notifier: Notifier = Depends(get_notifier),
):
    """Create a plan; the requester becomes its VibeCoordinator."""
    data = await read_json_body(request)

    try:
        plan_type = PlanType(data.get("type"))
    except ValueError:
        raise HTTPException(status_code=400, detail="Missing required fields: type, name")

    fields = validate_plan_fields(data, plan_type)
    name = fields.pop("name")
    time_zone = fields.pop("time_zone")

    plan = create_plan(plan_type, name, owner_id=user.id, time_zone=time_zone, **fields)

    log_audit(
        action=AuditAction.PLAN_CREATED,
        actor_id=user.id,
        actor_name=user.display_name,
        target_type="plan",
        target_id=plan.id,
        details={"name": name, "type": plan_type.value},
    )
    notifier.notify([user.id], f"Your plan \"{name}\" has been created! ID: {plan.id}")

    return JSONResponse({"msg": "Plan created successfully!", "plan": plan.to_dict()}, status_code=201)


@router.get("")
async def list_plans(user: User = Depends(require_user)):
    """Plans the caller participates in."""
    plans = get_user_plans(user.id)
    return JSONResponse({"msg": "User plans fetched!", "plans": [p.to_dict() for p in plans]})


@router.get("/{plan_id}")
async def get_plan(plan_id: str, user: User = Depends(require_user)):
    membership = require_plan_member(user, plan_id)
    plan = get_plan_or_404(plan_id)
    return JSONResponse({"plan": plan.to_dict(), "role": membership.role.value})


@router.patch("/{plan_id}")
async def update_plan_submit(plan_id: str, request: Request, user: User = Depends(require_user)):
    """
    Edit plan details (coordinators and planners). Dates are re-rolled up
    afterwards for any auto-calculated side; see validate_plan_fields for
    how explicit dates interact with the auto_calculate flags.
    """
    require_plan_member(user, plan_id, require_edit=True)
    plan = get_plan_or_404(plan_id)
    data = await read_json_body(request)

    fields = validate_plan_fields(data, plan.type, partial=True)
    if fields:
        update_plan(plan_id, **fields)
        log_audit(
            action=AuditAction.PLAN_UPDATED,
            actor_id=user.id,
            actor_name=user.display_name,
            target_type="plan",
            target_id=plan_id,
            details={"fields": sorted(fields.keys())},
        )
        refresh_plan_dates(plan_id)

    return JSONResponse({"msg": "Plan updated!", "plan": get_plan_or_404(plan_id).to_dict()})


@router.delete("/{plan_id}")
async def delete_plan_submit(
    plan_id: str,
    user: User = Depends(require_user),
    notifier: Notifier = Depends(get_notifier),
):
    """Delete a plan (VibeCoordinator only)."""
    membership = require_plan_member(user, plan_id)
    if not membership.is_coordinator():
        raise HTTPException(status_code=403, detail="Only the VibeCoordinator can delete a plan")
    plan = get_plan_or_404(plan_id)

    participant_ids = [uid for uid in get_member_ids(plan_id) if uid != user.id]
    delete_plan(plan_id)

    log_audit(
        action=AuditAction.PLAN_DELETED,
        actor_id=user.id,
        actor_name=user.display_name,
        target_type="plan",
        target_id=plan_id,
        details={"name": plan.name},
    )
    notifier.notify(participant_ids, f"\"{plan.name}\" was deleted by {user.display_name}.")

    return JSONResponse({"msg": "Plan deleted!"})


# ─────────────────────────── ROUTES: MEMBERS ───────────────────────────

@router.get("/{plan_id}/users")
async def list_plan_users(plan_id: str, user: User = Depends(require_user)):
    """Participants with roles, flat and grouped by role."""
    require_plan_member(user, plan_id)

    formatted = [m.to_dict() for m in get_plan_members(plan_id)]
    grouped = {
        "VibeCoordinator": [u for u in formatted if u["role"] == PlanRole.COORDINATOR.value],
        "VibePlanners": [u for u in formatted if u["role"] == PlanRole.PLANNER.value],
        "Wanderers": [u for u in formatted if u["role"] == PlanRole.WANDERER.value],
    }

    return JSONResponse({"msg": "Plan users fetched!", "users": formatted, "grouped": grouped})


@router.post("/{plan_id}/remove-user")
async def remove_plan_user(
    plan_id: str,
    request: Request,
    user: User = Depends(require_user),
    notifier: Notifier = Depends(get_notifier),
):
    data = await read_json_body(request)
    target_user_id = data.get("user_id")
    if not target_user_id:
        raise HTTPException(status_code=400, detail="Missing user_id to remove")

    caller = require_plan_member(user, plan_id)

    if target_user_id == user.id:
        raise HTTPException(status_code=400, detail="Cannot remove yourself")

    target = get_plan_membership(target_user_id, plan_id)
    if not target:
        raise HTTPException(status_code=404, detail="Target user not found on plan")

    if target.is_coordinator():
        raise HTTPException(status_code=400, detail="Cannot remove VibeCoordinator; use reassign instead")

    if not caller.can_remove(target):
        raise HTTPException(status_code=403, detail="VibePlanners can only remove Wanderers")

    remove_plan_member(plan_id, target_user_id)
    plan = get_plan_by_id(plan_id)

    log_audit(
        action=AuditAction.PLAN_MEMBER_REMOVED,
        actor_id=user.id,
        actor_name=user.display_name,
        target_type="plan",
        target_id=plan_id,
        details={"user_id": target_user_id, "role": target.role.value},
    )
    notifier.notify([target_user_id], f"You've been removed from \"{plan.name}\" by {user.display_name}.")
    notifier.notify([user.id], f"Removed {target.user_name or target.user_email} from \"{plan.name}\".")

    return JSONResponse({"msg": "User removed successfully!"})


@router.post("/{plan_id}/reassign-coordinator")
async def reassign_coordinator(
    plan_id: str,
    request: Request,
    user: User = Depends(require_user),
    notifier: Notifier = Depends(get_notifier),
):
    """Hand the VibeCoordinator role to a VibePlanner."""
    data = await read_json_body(request)
    target_user_id = data.get("target_user_id")
    if not target_user_id:
        raise HTTPException(status_code=400, detail="Missing target_user_id")

    caller = get_plan_membership(user.id, plan_id)
    if not caller or not caller.is_coordinator():
        raise HTTPException(status_code=403, detail="Only VibeCoordinator can reassign")

    target = get_plan_membership(target_user_id, plan_id)
    if not target or target.role != PlanRole.PLANNER:
        raise HTTPException(status_code=400, detail="Target must be a VibePlanner")

    transfer_coordinator(plan_id, user.id, target_user_id)

    log_audit(
        action=AuditAction.PLAN_COORDINATOR_REASSIGNED,
        actor_id=user.id,
        actor_name=user.display_name,
        target_type="plan",
        target_id=plan_id,
        details={"new_coordinator": target_user_id},
    )
    new_coordinator = get_user_by_id(target_user_id)
    notifier.notify(get_member_ids(plan_id), f"Ownership transferred to {new_coordinator.display_name}!")

    return JSONResponse({
        "msg": "Ownership reassigned!",
        "new_coordinator": {"user_id": target_user_id, "name": new_coordinator.display_name},
    })


# ─────────────────────────── ROUTES: ITINERARY ───────────────────────────

@router.get("/{plan_id}/itinerary")
async def plan_itinerary(plan_id: str, user: User = Depends(require_user)):
    """
    Sorted events with day numbers, plus the same events grouped by day.
    Invalid event data propagates as ItineraryValidationError (400).
    """
    require_plan_member(user, plan_id)
    plan = get_plan_or_404(plan_id)

    events = get_plan_events(plan_id)
    scheduled, grouped = compute_itinerary(events, plan.time_zone)

    logger.debug(f"Itinerary for plan {plan_id}: {len(scheduled)} events over {len(grouped)} days")
    return JSONResponse({"msg": "Itinerary fetched!", **itinerary_payload(scheduled, grouped)})
