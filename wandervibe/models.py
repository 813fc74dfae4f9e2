"""
Database models and schema definitions for WanderVibe.

This module defines:
- User accounts and sessions
- Plans (trips and venue-based event plans) with role-based members
- Scheduled plan events (flights, hotels, dining, ...)
- Invitations to join a plan
- Audit logging
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any
from enum import Enum


# ─────────────────────────── ENUMS ───────────────────────────

class PlanType(str, Enum):
    """Kind of plan"""
    TRIP = "trip"    # Travel itinerary, needs a destination
    PLAN = "plan"    # Venue-based event plan, needs a location


class PlanningState(str, Enum):
    INITIAL = "initial"
    REVIEWING = "reviewing"
    COMPLETE = "complete"


class PlanRole(str, Enum):
    """Plan member permission levels (hierarchical)"""
    COORDINATOR = "VibeCoordinator"  # Owner: manage members, reassign, delete plan
    PLANNER = "VibePlanner"          # Add/edit events, invite Wanderers
    WANDERER = "Wanderer"            # Read-only participant


class EventType(str, Enum):
    """Plan event category types"""
    FLIGHT = "flight"
    CAR = "car"
    DINING = "dining"
    HOTEL = "hotel"
    TOUR = "tour"
    ATTRACTION = "attraction"
    CRUISE = "cruise"
    SETUP = "setup"
    CEREMONY = "ceremony"
    RECEPTION = "reception"
    VENDOR = "vendor"
    CUSTOM = "custom"


class CostType(str, Enum):
    ESTIMATED = "estimated"
    ACTUAL = "actual"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class AuditAction(str, Enum):
    """Types of auditable actions"""
    USER_REGISTERED = "user_registered"
    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"

    PLAN_CREATED = "plan_created"
    PLAN_UPDATED = "plan_updated"
    PLAN_DELETED = "plan_deleted"
    PLAN_MEMBER_REMOVED = "plan_member_removed"
    PLAN_COORDINATOR_REASSIGNED = "plan_coordinator_reassigned"

    EVENT_CREATED = "event_created"
    EVENT_UPDATED = "event_updated"
    EVENT_DELETED = "event_deleted"

    INVITATION_SENT = "invitation_sent"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_REJECTED = "invitation_rejected"


# Roles each role may invite
INVITE_PERMISSIONS = {
    PlanRole.COORDINATOR: {PlanRole.PLANNER, PlanRole.WANDERER},
    PlanRole.PLANNER: {PlanRole.WANDERER},
    PlanRole.WANDERER: set(),
}

ROLE_ORDER = {
    PlanRole.COORDINATOR: 1,
    PlanRole.PLANNER: 2,
    PlanRole.WANDERER: 3,
}


def _as_role(value) -> PlanRole:
    return value if isinstance(value, PlanRole) else PlanRole(value)


# ─────────────────────────── DATA CLASSES ───────────────────────────

@dataclass
class User:
    """User account"""
    id: str
    email: str
    created_at: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    is_admin: bool = False

    notification_prefs: Dict[str, Any] = field(default_factory=lambda: {
        "email": True,
        "sms": False,
    })

    password_hash: Optional[str] = None
    last_login: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone_number": self.phone_number,
            "is_admin": self.is_admin,
            "notification_prefs": self.notification_prefs,
            "created_at": self.created_at,
            "last_login": self.last_login,
        }

    @property
    def display_name(self) -> str:
        """Return full name or email prefix as display name."""
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or self.email.split('@')[0]


@dataclass
class Plan:
    """A trip or event plan owning scheduled events"""
    id: str
    type: PlanType
    name: str
    owner_id: str
    created_at: str
    updated_at: str

    time_zone: str = "UTC"
    destination: Optional[str] = None
    location: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    auto_calculate_start_date: bool = True
    auto_calculate_end_date: bool = True
    budget: float = 0
    planning_state: PlanningState = PlanningState.INITIAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type.value if isinstance(self.type, PlanType) else self.type,
            'name': self.name,
            'destination': self.destination,
            'location': self.location,
            'time_zone': self.time_zone,
            'start_date': self.start_date,
            'end_date': self.end_date,
            'auto_calculate_start_date': self.auto_calculate_start_date,
            'auto_calculate_end_date': self.auto_calculate_end_date,
            'budget': self.budget,
            'planning_state': self.planning_state.value if isinstance(self.planning_state, PlanningState) else self.planning_state,
            'owner_id': self.owner_id,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


@dataclass
class PlanMember:
    """A participant of a plan with role-based access"""
    id: str
    plan_id: str
    user_id: str
    role: PlanRole
    added_at: str

    # Cached user info for display
    user_email: Optional[str] = None
    user_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'name': self.user_name,
            'email': self.user_email,
            'role': _as_role(self.role).value,
            'added_at': self.added_at,
        }

    def is_coordinator(self) -> bool:
        return _as_role(self.role) == PlanRole.COORDINATOR

    def can_edit(self) -> bool:
        """Check if member can add/edit plan events"""
        return _as_role(self.role) in (PlanRole.COORDINATOR, PlanRole.PLANNER)

    def can_invite(self, role: PlanRole) -> bool:
        return _as_role(role) in INVITE_PERMISSIONS[_as_role(self.role)]

    def can_remove(self, target: "PlanMember") -> bool:
        """VibePlanners may only remove Wanderers; nobody removes the coordinator."""
        target_role = _as_role(target.role)
        if target_role == PlanRole.COORDINATOR:
            return False
        if self.is_coordinator():
            return True
        return _as_role(self.role) == PlanRole.PLANNER and target_role == PlanRole.WANDERER


@dataclass
class Event:
    """A scheduled activity or travel segment within a plan"""
    id: str
    plan_id: str
    title: str
    type: EventType
    start_time: str  # UTC ISO datetime with Z
    end_time: str    # UTC ISO datetime with Z
    created_at: str
    updated_at: str

    custom_type: Optional[str] = None
    duration: Optional[int] = None  # minutes

    # Required for flights
    origin_time_zone: Optional[str] = None
    destination_time_zone: Optional[str] = None

    location: Optional[str] = None
    details: Optional[str] = None
    cost: float = 0
    cost_type: CostType = CostType.ESTIMATED

    # e.g. {"maps": "url", "uber": "url", "booking": "url"}
    resource_links: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'plan_id': self.plan_id,
            'title': self.title,
            'type': self.type.value if isinstance(self.type, EventType) else self.type,
            'custom_type': self.custom_type,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'duration': self.duration,
            'origin_time_zone': self.origin_time_zone,
            'destination_time_zone': self.destination_time_zone,
            'location': self.location,
            'details': self.details,
            'cost': self.cost,
            'cost_type': self.cost_type.value if isinstance(self.cost_type, CostType) else self.cost_type,
            'resource_links': self.resource_links,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


@dataclass
class Invitation:
    """Pending or answered invitation to join a plan"""
    id: str
    plan_id: str
    user_id: str
    invited_by: str
    role: PlanRole
    created_at: str
    updated_at: str
    status: InvitationStatus = InvitationStatus.PENDING
    plan_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'plan_id': self.plan_id,
            'plan_name': self.plan_name,
            'user_id': self.user_id,
            'invited_by': self.invited_by,
            'role': _as_role(self.role).value,
            'status': self.status.value if isinstance(self.status, InvitationStatus) else self.status,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


# ─────────────────────────── SQL SCHEMAS ───────────────────────────

# Used by init_db() in auth.py

USERS_TABLE = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    first_name TEXT,
    last_name TEXT,
    phone_number TEXT,
    password_hash TEXT NOT NULL,
    is_admin INTEGER DEFAULT 0,
    notification_prefs TEXT DEFAULT '{}',
    created_at TEXT NOT NULL,
    last_login TEXT
);
"""

USER_SESSIONS_TABLE = """
CREATE TABLE IF NOT EXISTS user_sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    token TEXT NOT NULL UNIQUE,
    device_info TEXT,
    ip_address TEXT,
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    last_active TEXT,
    FOREIGN KEY(user_id) REFERENCES users(id)
);
"""

AUDIT_LOG_TABLE = """
CREATE TABLE IF NOT EXISTS audit_log (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    action TEXT NOT NULL,
    actor_id TEXT,
    actor_name TEXT,
    target_type TEXT,
    target_id TEXT,
    details TEXT DEFAULT '{}'
);
"""

PLANS_TABLE = """
CREATE TABLE IF NOT EXISTS plans (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    name TEXT NOT NULL,
    destination TEXT,
    location TEXT,
    time_zone TEXT NOT NULL DEFAULT 'UTC',
    start_date TEXT,
    end_date TEXT,
    auto_calculate_start_date INTEGER DEFAULT 1,
    auto_calculate_end_date INTEGER DEFAULT 1,
    budget REAL DEFAULT 0,
    planning_state TEXT DEFAULT 'initial',
    owner_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY(owner_id) REFERENCES users(id)
);
"""

PLAN_MEMBERS_TABLE = """
CREATE TABLE IF NOT EXISTS plan_members (
    id TEXT PRIMARY KEY,
    plan_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    role TEXT NOT NULL,
    added_at TEXT NOT NULL,
    FOREIGN KEY(plan_id) REFERENCES plans(id) ON DELETE CASCADE,
    FOREIGN KEY(user_id) REFERENCES users(id),
    UNIQUE(plan_id, user_id)
);
"""

EVENTS_TABLE = """
CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    plan_id TEXT NOT NULL,
    title TEXT NOT NULL,
    type TEXT NOT NULL,
    custom_type TEXT,
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    duration INTEGER,
    origin_time_zone TEXT,
    destination_time_zone TEXT,
    location TEXT,
    details TEXT,
    cost REAL DEFAULT 0,
    cost_type TEXT DEFAULT 'estimated',
    resource_links TEXT DEFAULT '{}',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY(plan_id) REFERENCES plans(id) ON DELETE CASCADE
);
"""

INVITATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS invitations (
    id TEXT PRIMARY KEY,
    plan_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    invited_by TEXT NOT NULL,
    role TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY(plan_id) REFERENCES plans(id) ON DELETE CASCADE
);
"""

# Index definitions for performance
INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_users_email ON users(email);",
    "CREATE INDEX IF NOT EXISTS idx_user_sessions_token ON user_sessions(token);",
    "CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_log(action);",
    "CREATE INDEX IF NOT EXISTS idx_audit_target ON audit_log(target_type, target_id);",
    "CREATE INDEX IF NOT EXISTS idx_plans_owner ON plans(owner_id);",
    "CREATE INDEX IF NOT EXISTS idx_plan_members_plan ON plan_members(plan_id);",
    "CREATE INDEX IF NOT EXISTS idx_plan_members_user ON plan_members(user_id);",
    "CREATE INDEX IF NOT EXISTS idx_events_plan_start ON events(plan_id, start_time, end_time);",
    "CREATE INDEX IF NOT EXISTS idx_invitations_lookup ON invitations(plan_id, user_id, status);",
]

ALL_TABLES = [
    USERS_TABLE,
    USER_SESSIONS_TABLE,
    AUDIT_LOG_TABLE,
    PLANS_TABLE,
    PLAN_MEMBERS_TABLE,
    EVENTS_TABLE,
    INVITATIONS_TABLE,
]
