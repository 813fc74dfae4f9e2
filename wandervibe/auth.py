"""
Authentication and persistence services for WanderVibe.

Provides:
- SQLite connection and schema initialization
- User accounts (password auth)
- Session tokens (cookie or Bearer header)
- Audit logging
- FastAPI dependencies for the current user
"""

import os
import uuid
import secrets
import hashlib
import sqlite3
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
import json
import logging

from fastapi import Request, HTTPException

from wandervibe.models import User, AuditAction, ALL_TABLES, INDEXES

logger = logging.getLogger("wandervibe.auth")

SESSION_TTL_DAYS = int(os.getenv("SESSION_TTL_DAYS", "30"))
SESSION_COOKIE = "user_session"

# ─────────────────────────── DATABASE HELPERS ───────────────────────────

def get_db_path():
    """Get database path from environment."""
    return os.getenv("DB_PATH", "/data/wandervibe.db")


def db():
    """Get database connection."""
    conn = sqlite3.connect(get_db_path())
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db():
    """Create tables and indexes if they don't exist."""
    db_dir = os.path.dirname(get_db_path())
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    conn = db()
    cur = conn.cursor()

    for table_sql in ALL_TABLES:
        cur.execute(table_sql)

    for index_sql in INDEXES:
        try:
            cur.execute(index_sql)
        except sqlite3.OperationalError as e:
            logger.warning(f"Index creation warning: {e}")

    conn.commit()
    conn.close()
    logger.info("Database tables initialized")


def now_iso() -> str:
    """UTC timestamp with Z suffix and no microseconds."""
    return datetime.utcnow().isoformat(timespec="seconds") + "Z"


def admin_emails() -> set:
    raw = os.getenv("ADMIN_EMAILS", "")
    return {e.strip().lower() for e in raw.split(",") if e.strip()}


# ─────────────────────────── PASSWORD HASHING ───────────────────────────

def hash_password(password: str) -> str:
    """Hash a password using SHA256 with salt."""
    salt = secrets.token_hex(16)
    hash_val = hashlib.sha256(f"{salt}{password}".encode()).hexdigest()
    return f"{salt}:{hash_val}"


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash."""
    if not password_hash or ":" not in password_hash:
        return False
    salt, stored_hash = password_hash.split(":", 1)
    computed_hash = hashlib.sha256(f"{salt}{password}".encode()).hexdigest()
    return secrets.compare_digest(computed_hash, stored_hash)


def generate_session_token() -> str:
    """Generate a secure session token."""
    return secrets.token_urlsafe(32)


# ─────────────────────────── USERS ───────────────────────────

def _row_to_user(row: sqlite3.Row) -> User:
    prefs = {"email": True, "sms": False}
    if row["notification_prefs"]:
        try:
            prefs.update(json.loads(row["notification_prefs"]))
        except json.JSONDecodeError:
            logger.warning(f"Bad notification_prefs for user {row['id']}")

    return User(
        id=row["id"],
        email=row["email"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        phone_number=row["phone_number"],
        is_admin=bool(row["is_admin"]),
        notification_prefs=prefs,
        password_hash=row["password_hash"],
        created_at=row["created_at"],
        last_login=row["last_login"],
    )


def create_user(
    email: str,
    password: str,
    first_name: str = None,
    last_name: str = None,
    phone_number: str = None,
) -> User:
    """Create a new user account. Raises sqlite3.IntegrityError on duplicate email."""
    conn = db()
    now = now_iso()
    user_id = str(uuid.uuid4())
    email = email.strip().lower()
    is_admin = 1 if email in admin_emails() else 0

    try:
        conn.execute("""
            INSERT INTO users (id, email, first_name, last_name, phone_number, password_hash,
                               is_admin, notification_prefs, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (user_id, email, first_name, last_name, phone_number, hash_password(password),
              is_admin, json.dumps({"email": True, "sms": False}), now))
        conn.commit()
    finally:
        conn.close()

    logger.info(f"User registered: {email} ({user_id})")
    return get_user_by_id(user_id)


def get_user_by_id(user_id: str) -> Optional[User]:
    """Get user by ID."""
    conn = db()
    row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    conn.close()
    return _row_to_user(row) if row else None


def get_user_by_email(email: str) -> Optional[User]:
    """Get user by email."""
    if not email:
        return None
    conn = db()
    row = conn.execute("SELECT * FROM users WHERE email = ?", (email.strip().lower(),)).fetchone()
    conn.close()
    return _row_to_user(row) if row else None


def get_users_by_ids(user_ids) -> Dict[str, User]:
    ids = list(dict.fromkeys(user_ids))
    if not ids:
        return {}
    placeholders = ", ".join("?" for _ in ids)
    conn = db()
    rows = conn.execute(f"SELECT * FROM users WHERE id IN ({placeholders})", ids).fetchall()
    conn.close()
    return {row["id"]: _row_to_user(row) for row in rows}


def authenticate_user(email: str, password: str) -> Optional[User]:
    """Authenticate user with email and password."""
    user = get_user_by_email(email)
    if not user or not verify_password(password, user.password_hash):
        return None

    conn = db()
    conn.execute("UPDATE users SET last_login = ? WHERE id = ?", (now_iso(), user.id))
    conn.commit()
    conn.close()
    return user


def update_user_profile(user_id: str, **kwargs) -> bool:
    """Update user profile fields."""
    allowed_fields = {"first_name", "last_name", "phone_number", "notification_prefs"}
    updates = {k: v for k, v in kwargs.items() if k in allowed_fields and v is not None}

    if not updates:
        return False

    if "notification_prefs" in updates:
        updates["notification_prefs"] = json.dumps(updates["notification_prefs"])

    set_clause = ", ".join(f"{k} = ?" for k in updates.keys())
    values = list(updates.values()) + [user_id]

    conn = db()
    conn.execute(f"UPDATE users SET {set_clause} WHERE id = ?", values)
    conn.commit()
    conn.close()
    return True


def delete_user_record(user_id: str) -> bool:
    """Delete a user row and their sessions. Plan hand-off happens in users.py."""
    conn = db()
    conn.execute("DELETE FROM user_sessions WHERE user_id = ?", (user_id,))
    cur = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
    conn.commit()
    deleted = cur.rowcount > 0
    conn.close()
    return deleted


# ─────────────────────────── SESSIONS ───────────────────────────

def create_user_session(user_id: str, device_info: str = None, ip_address: str = None) -> str:
    """Create a new session for a user and return the token."""
    conn = db()
    now = now_iso()
    token = generate_session_token()
    expires = (datetime.utcnow() + timedelta(days=SESSION_TTL_DAYS)).isoformat(timespec="seconds") + "Z"

    conn.execute("""
        INSERT INTO user_sessions (id, user_id, token, device_info, ip_address, created_at, expires_at, last_active)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    """, (str(uuid.uuid4()), user_id, token, device_info, ip_address, now, expires, now))
    conn.commit()
    conn.close()
    return token


def get_user_by_session(token: str) -> Optional[User]:
    """Get user from a session token, if the session is still valid."""
    if not token:
        return None
    conn = db()
    row = conn.execute("""
        SELECT u.* FROM user_sessions s
        JOIN users u ON u.id = s.user_id
        WHERE s.token = ? AND s.expires_at > ?
    """, (token, now_iso())).fetchone()
    if row:
        conn.execute("UPDATE user_sessions SET last_active = ? WHERE token = ?", (now_iso(), token))
        conn.commit()
    conn.close()
    return _row_to_user(row) if row else None


def delete_user_session(token: str):
    """Delete a session (logout)."""
    conn = db()
    conn.execute("DELETE FROM user_sessions WHERE token = ?", (token,))
    conn.commit()
    conn.close()


def session_token_from_request(request: Request) -> Optional[str]:
    """Session token from the Authorization header, falling back to the cookie."""
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    return request.cookies.get(SESSION_COOKIE)


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def read_json_body(request: Request) -> Dict[str, Any]:
    """Parse a JSON object body or raise 400."""
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be valid JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return data


# ─────────────────────────── AUDIT LOGGING ───────────────────────────

def log_audit(
    action: AuditAction,
    actor_id: str = None,
    actor_name: str = None,
    target_type: str = None,
    target_id: str = None,
    details: Dict[str, Any] = None
):
    """Log an auditable action."""
    conn = db()
    try:
        conn.execute("""
            INSERT INTO audit_log (id, created_at, action, actor_id, actor_name, target_type, target_id, details)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            str(uuid.uuid4()), now_iso(), action.value, actor_id, actor_name,
            target_type, target_id, json.dumps(details or {})
        ))
        conn.commit()
    except sqlite3.Error as e:
        logger.error(f"Failed to write audit log: {e}")
    finally:
        conn.close()


def get_audit_logs(target_type: str = None, target_id: str = None, limit: int = 100) -> list:
    conn = db()
    query = "SELECT * FROM audit_log WHERE 1=1"
    params = []
    if target_type:
        query += " AND target_type = ?"
        params.append(target_type)
    if target_id:
        query += " AND target_id = ?"
        params.append(target_id)
    query += " ORDER BY created_at DESC LIMIT ?"
    params.append(limit)
    rows = conn.execute(query, params).fetchall()
    conn.close()
    return [dict(row) for row in rows]


# ─────────────────────────── FASTAPI DEPENDENCIES ───────────────────────────

async def get_current_user(request: Request) -> Optional[User]:
    """Get current logged-in user from the session token."""
    return get_user_by_session(session_token_from_request(request))


async def require_user(request: Request) -> User:
    """Require authenticated user."""
    user = await get_current_user(request)
    if not user:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


async def require_admin(request: Request) -> User:
    """Require authenticated admin user."""
    user = await require_user(request)
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
