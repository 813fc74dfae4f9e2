"""
Plan invitations.

Provides:
- Inviting an existing user to a plan as VibePlanner or Wanderer
- Listing the caller's pending invitations
- Accepting or rejecting an invitation
"""

import uuid
import sqlite3
from typing import Optional, List
import logging

from fastapi import APIRouter, Request, HTTPException, Depends
from fastapi.responses import JSONResponse

from wandervibe.auth import db, now_iso, require_user, read_json_body, log_audit, get_user_by_email, get_user_by_id
from wandervibe.models import Invitation, InvitationStatus, PlanRole, AuditAction, User
from wandervibe.notifications import Notifier, get_notifier
from wandervibe.plans import (
    require_plan_member, get_plan_or_404, get_plan_by_id, get_plan_membership,
    add_plan_member, get_member_ids,
)

logger = logging.getLogger("wandervibe.invites")

router = APIRouter(prefix="/api", tags=["invitations"])

INVITABLE_ROLES = (PlanRole.PLANNER, PlanRole.WANDERER)


# ─────────────────────────── DATABASE HELPERS ───────────────────────────

def _row_to_invitation(row: sqlite3.Row) -> Invitation:
    keys = row.keys()
    return Invitation(
        id=row["id"],
        plan_id=row["plan_id"],
        user_id=row["user_id"],
        invited_by=row["invited_by"],
        role=PlanRole(row["role"]),
        status=InvitationStatus(row["status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        plan_name=row["plan_name"] if "plan_name" in keys else None,
    )


def create_invitation(plan_id: str, user_id: str, invited_by: str, role: PlanRole) -> Invitation:
    conn = db()
    now = now_iso()
    invitation_id = str(uuid.uuid4())
    conn.execute("""
        INSERT INTO invitations (id, plan_id, user_id, invited_by, role, status, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    """, (invitation_id, plan_id, user_id, invited_by, role.value, InvitationStatus.PENDING.value, now, now))
    conn.commit()
    conn.close()

    logger.info(f"Invitation {invitation_id}: user {user_id} to plan {plan_id} as {role.value}")
    return get_invitation_by_id(invitation_id)


def get_invitation_by_id(invitation_id: str) -> Optional[Invitation]:
    conn = db()
    row = conn.execute("""
        SELECT i.*, p.name AS plan_name
        FROM invitations i
        LEFT JOIN plans p ON p.id = i.plan_id
        WHERE i.id = ?
    """, (invitation_id,)).fetchone()
    conn.close()
    return _row_to_invitation(row) if row else None


def get_pending_invitation(plan_id: str, user_id: str) -> Optional[Invitation]:
    conn = db()
    row = conn.execute("""
        SELECT * FROM invitations WHERE plan_id = ? AND user_id = ? AND status = ?
    """, (plan_id, user_id, InvitationStatus.PENDING.value)).fetchone()
    conn.close()
    return _row_to_invitation(row) if row else None


def get_user_invitations(user_id: str, status: InvitationStatus = InvitationStatus.PENDING) -> List[Invitation]:
    conn = db()
    rows = conn.execute("""
        SELECT i.*, p.name AS plan_name
        FROM invitations i
        JOIN plans p ON p.id = i.plan_id
        WHERE i.user_id = ? AND i.status = ?
        ORDER BY i.created_at DESC
    """, (user_id, status.value)).fetchall()
    conn.close()
    return [_row_to_invitation(row) for row in rows]


def set_invitation_status(invitation_id: str, status: InvitationStatus) -> bool:
    """Answer a pending invitation. False if it was already answered."""
    conn = db()
    cur = conn.execute("""
        UPDATE invitations SET status = ?, updated_at = ? WHERE id = ? AND status = ?
    """, (status.value, now_iso(), invitation_id, InvitationStatus.PENDING.value))
    conn.commit()
    changed = cur.rowcount > 0
    conn.close()
    return changed


def delete_user_invitations(user_id: str) -> int:
    """Drop pending invitations addressed to a user."""
    conn = db()
    cur = conn.execute("DELETE FROM invitations WHERE user_id = ? AND status = ?",
                       (user_id, InvitationStatus.PENDING.value))
    conn.commit()
    removed = cur.rowcount
    conn.close()
    return removed


# ─────────────────────────── ROUTES ───────────────────────────

@router.post("/plans/{plan_id}/invite")
async def invite_user(
    plan_id: str,
    request: Request,
    user: User = Depends(require_user),
    notifier: Notifier = Depends(get_notifier),
):
    """Invite a registered user by email as VibePlanner or Wanderer."""
    data = await read_json_body(request)
    email = (data.get("email") or "").strip()
    try:
        role = PlanRole(data.get("role"))
    except ValueError:
        role = None
    if not email or role not in INVITABLE_ROLES:
        raise HTTPException(status_code=400, detail="Missing email or invalid role")

    plan = get_plan_or_404(plan_id)
    caller = require_plan_member(user, plan_id)
    if not caller.can_invite(role):
        if role == PlanRole.PLANNER:
            raise HTTPException(status_code=403, detail="Only VibeCoordinator can invite VibePlanners")
        raise HTTPException(status_code=403, detail="Only VibeCoordinator or VibePlanner can invite Wanderers")

    invitee = get_user_by_email(email)
    if not invitee:
        raise HTTPException(status_code=404, detail="User not found")

    if get_plan_membership(invitee.id, plan_id):
        raise HTTPException(status_code=400, detail="User is already a plan participant")
    if get_pending_invitation(plan_id, invitee.id):
        raise HTTPException(status_code=400, detail="User already invited")

    invitation = create_invitation(plan_id, invitee.id, user.id, role)

    log_audit(
        action=AuditAction.INVITATION_SENT,
        actor_id=user.id,
        actor_name=user.display_name,
        target_type="invitation",
        target_id=invitation.id,
        details={"plan_id": plan_id, "user_id": invitee.id, "role": role.value},
    )
    notifier.notify([invitee.id], f"You've been invited to \"{plan.name}\" as {role.value}! Check the app to accept.")
    notifier.notify([user.id], f"Invited {invitee.display_name} as {role.value}.")

    return JSONResponse({"msg": "Invitation sent!", "invitation": invitation.to_dict()}, status_code=201)


@router.get("/invitations")
async def list_my_invitations(user: User = Depends(require_user)):
    invitations = get_user_invitations(user.id)
    return JSONResponse({"invitations": [i.to_dict() for i in invitations]})


@router.post("/invitations/{invitation_id}/respond")
async def respond_to_invitation(
    invitation_id: str,
    request: Request,
    user: User = Depends(require_user),
    notifier: Notifier = Depends(get_notifier),
):
    """Accept or reject an invitation (invitee only)."""
    data = await read_json_body(request)
    try:
        status = InvitationStatus(data.get("status"))
    except ValueError:
        status = None
    if status not in (InvitationStatus.ACCEPTED, InvitationStatus.REJECTED):
        raise HTTPException(status_code=400, detail="Invalid status: must be accepted or rejected")

    invitation = get_invitation_by_id(invitation_id)
    if not invitation or invitation.status != InvitationStatus.PENDING:
        raise HTTPException(status_code=404, detail="Invitation not found or already responded")

    if invitation.user_id != user.id:
        raise HTTPException(status_code=403, detail="Access denied: Not your invitation")

    plan = get_plan_by_id(invitation.plan_id)
    if not plan:
        raise HTTPException(status_code=404, detail="Plan no longer exists")

    if not set_invitation_status(invitation_id, status):
        raise HTTPException(status_code=404, detail="Invitation not found or already responded")

    if status == InvitationStatus.ACCEPTED:
        add_plan_member(invitation.plan_id, user.id, invitation.role)
        notifier.notify(
            [uid for uid in get_member_ids(invitation.plan_id) if uid != user.id],
            f"{user.display_name} joined \"{plan.name}\" as {invitation.role.value}!",
        )
        action = AuditAction.INVITATION_ACCEPTED
    else:
        inviter = get_user_by_id(invitation.invited_by)
        if inviter:
            notifier.notify([inviter.id], f"{user.display_name} declined your invite to \"{plan.name}\".")
        action = AuditAction.INVITATION_REJECTED

    log_audit(
        action=action,
        actor_id=user.id,
        actor_name=user.display_name,
        target_type="invitation",
        target_id=invitation_id,
        details={"plan_id": invitation.plan_id, "role": invitation.role.value},
    )
    response_msg = f"Welcome to \"{plan.name}\" as {invitation.role.value}!" if status == InvitationStatus.ACCEPTED else "Invite rejected."
    notifier.notify([user.id], response_msg)

    return JSONResponse({
        "msg": f"Invitation {status.value}!",
        "invitation": get_invitation_by_id(invitation_id).to_dict(),
    })
