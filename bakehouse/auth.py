import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from passlib.context import CryptContext
from pydantic import BaseModel

from .db import execute, now_iso, query_one
from .errors import Forbidden, InvalidInput, Unauthorized

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
TOKEN_HOURS = 16
ROLES = ("admin", "head_chef", "baker")


class RequestContext(BaseModel):
    """Who is calling, resolved once per request and handed to the handler."""

    user: dict[str, Any] | None = None
    preview_role: str | None = None

    @property
    def role(self) -> str | None:
        if not self.user:
            return None
        if self.preview_role and self.user["role"] == "admin":
            return self.preview_role
        return self.user["role"]

    @property
    def user_id(self) -> str | None:
        return str(self.user["id"]) if self.user else None


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_token(user_id: int) -> str:
    token = secrets.token_urlsafe(32)
    expires_at = (datetime.now(timezone.utc) + timedelta(hours=TOKEN_HOURS)).isoformat()
    execute(
        "INSERT INTO auth_tokens(token, user_id, expires_at, created_at) VALUES (?, ?, ?, ?)",
        (token, user_id, expires_at, now_iso()),
    )
    return token


def login(username: str, password: str) -> dict[str, Any]:
    row = query_one(
        """
        SELECT u.id, u.password_hash, u.active, u.full_name, r.name AS role
        FROM users u
        JOIN roles r ON r.id = u.role_id
        WHERE u.username = ?
        """,
        (username,),
    )
    if not row or not verify_password(password, row["password_hash"]):
        raise Unauthorized("Invalid credentials")
    if int(row["active"]) != 1:
        raise Forbidden("User inactive")

    token = create_token(int(row["id"]))
    return {
        "token": token,
        "user": {"id": row["id"], "username": username, "full_name": row["full_name"], "role": row["role"]},
    }


def resolve_context(authorization: str | None, preview_role: str | None = None) -> RequestContext:
    if not authorization:
        return RequestContext()
    if not authorization.lower().startswith("bearer "):
        raise Unauthorized("Malformed auth header")

    token = authorization.split(" ", 1)[1].strip()
    row = query_one(
        """
        SELECT u.id, u.username, u.full_name, u.active, r.name AS role, t.expires_at
        FROM auth_tokens t
        JOIN users u ON u.id = t.user_id
        JOIN roles r ON r.id = u.role_id
        WHERE t.token = ?
        """,
        (token,),
    )
    if not row:
        raise Unauthorized("Invalid token")
    if datetime.fromisoformat(row["expires_at"]) < datetime.now(timezone.utc):
        raise Unauthorized("Token expired")
    if int(row["active"]) != 1:
        raise Forbidden("User inactive")

    preview = (preview_role or "").strip().lower() or None
    if preview and preview not in ROLES:
        raise InvalidInput(f"Unknown preview role: {preview}")
    return RequestContext(user=row, preview_role=preview)


def require_roles(ctx: RequestContext, *allowed: str) -> dict[str, Any]:
    if not ctx.user:
        raise Unauthorized("Missing auth token")
    if allowed and ctx.role not in allowed:
        raise Forbidden("Insufficient permissions")
    return ctx.user
