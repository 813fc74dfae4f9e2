"""
User account routes.

These routes handle:
- Registration, login and logout (session token returned and set as cookie)
- Profile viewing and editing
- Account deletion, handing coordinated plans to a VibePlanner
"""

import os
import sqlite3
import logging

from fastapi import APIRouter, Request, HTTPException, Depends
from fastapi.responses import JSONResponse

from wandervibe.auth import (
    create_user, get_user_by_email, get_user_by_id, authenticate_user, create_user_session,
    delete_user_session, get_user_by_session, session_token_from_request, update_user_profile,
    delete_user_record, get_client_ip, read_json_body, require_user, log_audit, SESSION_COOKIE, SESSION_TTL_DAYS,
)
from wandervibe.invites import delete_user_invitations
from wandervibe.models import AuditAction, PlanRole, User
from wandervibe.notifications import Notifier, get_notifier
from wandervibe.plans import (
    get_user_memberships, get_plan_members, get_plan_by_id, transfer_coordinator,
    remove_plan_member, delete_plan, get_member_ids,
)

logger = logging.getLogger("wandervibe.users")

router = APIRouter(prefix="/api", tags=["users"])

MIN_PASSWORD_LENGTH = 8


def _session_response(payload: dict, token: str, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(payload, status_code=status_code)
    resp.set_cookie(
        SESSION_COOKIE,
        token,
        httponly=True,
        samesite="lax",
        secure=os.getenv("BASE_URL", "").startswith("https"),
        path="/",
        max_age=SESSION_TTL_DAYS * 24 * 60 * 60,
    )
    return resp


# ─────────────────────────── AUTH ───────────────────────────

@router.post("/auth/register")
async def register(request: Request):
    data = await read_json_body(request)
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""

    if not email or "@" not in email:
        raise HTTPException(status_code=400, detail="A valid email is required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if get_user_by_email(email):
        raise HTTPException(status_code=400, detail="Email already registered")

    try:
        user = create_user(
            email,
            password,
            first_name=(data.get("first_name") or "").strip() or None,
            last_name=(data.get("last_name") or "").strip() or None,
            phone_number=(data.get("phone_number") or "").strip() or None,
        )
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=400, detail="Email already registered")

    token = create_user_session(
        user.id,
        device_info=request.headers.get("User-Agent"),
        ip_address=get_client_ip(request),
    )
    log_audit(action=AuditAction.USER_REGISTERED, actor_id=user.id, actor_name=user.display_name,
              target_type="user", target_id=user.id)

    return _session_response({"msg": "Registered!", "user": user.to_dict(), "token": token}, token, status_code=201)


@router.post("/auth/login")
async def login(request: Request):
    data = await read_json_body(request)
    user = authenticate_user(data.get("email") or "", data.get("password") or "")
    if not user:
        logger.info(f"Failed login for {data.get('email')!r} from {get_client_ip(request)}")
        raise HTTPException(status_code=400, detail="Invalid credentials")

    token = create_user_session(
        user.id,
        device_info=request.headers.get("User-Agent"),
        ip_address=get_client_ip(request),
    )
    log_audit(action=AuditAction.USER_LOGIN, actor_id=user.id, actor_name=user.display_name,
              target_type="user", target_id=user.id)

    return _session_response({"token": token, "user": user.to_dict()}, token)


@router.post("/auth/logout")
async def logout(request: Request):
    token = session_token_from_request(request)
    if token:
        user = get_user_by_session(token)
        delete_user_session(token)
        if user:
            log_audit(action=AuditAction.USER_LOGOUT, actor_id=user.id, actor_name=user.display_name,
                      target_type="user", target_id=user.id)

    resp = JSONResponse({"msg": "Logged out"})
    resp.delete_cookie(SESSION_COOKIE, path="/")
    return resp


# ─────────────────────────── PROFILE ───────────────────────────

@router.get("/users/me")
async def current_user(user: User = Depends(require_user)):
    return JSONResponse({"user": user.to_dict()})


@router.patch("/users/me")
async def update_current_user(request: Request, user: User = Depends(require_user)):
    data = await read_json_body(request)

    prefs = data.get("notification_prefs")
    if prefs is not None:
        if not isinstance(prefs, dict):
            raise HTTPException(status_code=400, detail="notification_prefs must be an object")
        merged = dict(user.notification_prefs)
        merged.update({k: bool(prefs[k]) for k in ("email", "sms") if k in prefs})
        prefs = merged

    update_user_profile(
        user.id,
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
        phone_number=data.get("phone_number"),
        notification_prefs=prefs,
    )
    log_audit(action=AuditAction.USER_UPDATED, actor_id=user.id, actor_name=user.display_name,
              target_type="user", target_id=user.id)

    return JSONResponse({"user": get_user_by_id(user.id).to_dict()})


# ─────────────────────────── DELETION ───────────────────────────

def hand_off_user_plans(user_id: str, notifier: Notifier) -> dict:
    """
    Remove a user from every plan. Plans they coordinate pass to the
    longest-standing VibePlanner, or are deleted when there is none.
    """
    summary = {"transferred": [], "deleted": [], "left": []}

    for membership in get_user_memberships(user_id):
        plan_id = membership.plan_id
        if membership.is_coordinator():
            successor = next(
                (m for m in get_plan_members(plan_id) if m.role == PlanRole.PLANNER),
                None,
            )
            if successor:
                transfer_coordinator(plan_id, None, successor.user_id)
                remove_plan_member(plan_id, user_id)
                plan = get_plan_by_id(plan_id)
                new_name = successor.user_name or successor.user_email
                notifier.notify(
                    get_member_ids(plan_id),
                    f"Ownership of \"{plan.name}\" transferred to {new_name} due to user deletion.",
                )
                summary["transferred"].append(plan_id)
            else:
                delete_plan(plan_id)
                summary["deleted"].append(plan_id)
        else:
            remove_plan_member(plan_id, user_id)
            summary["left"].append(plan_id)

    return summary


@router.post("/users/{user_id}/delete")
async def delete_user_account(
    user_id: str,
    user: User = Depends(require_user),
    notifier: Notifier = Depends(get_notifier),
):
    """Delete a user (self, or any user for admins) and cascade plan ownership."""
    if user_id != user.id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required for deleting others")

    target = get_user_by_id(user_id)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")

    summary = hand_off_user_plans(user_id, notifier)
    removed_invites = delete_user_invitations(user_id)
    delete_user_record(user_id)

    log_audit(
        action=AuditAction.USER_DELETED,
        actor_id=user.id,
        actor_name=user.display_name,
        target_type="user",
        target_id=user_id,
        details={**summary, "invitations_removed": removed_invites},
    )
    logger.info(f"User deleted: {target.email} ({user_id}) by {user.id}")

    return JSONResponse({"msg": "User deleted successfully; plans transferred or deleted", **summary})
