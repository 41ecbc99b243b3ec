from __future__ import annotations

from typing import Set

from flask import current_app, request, session

from quotedesk.domain.contracts import ActorIdentity
from quotedesk.errors import AuthRequired, PermissionDenied


VALID_ROLES: Set[str] = {"customer", "vendor", "admin", "super_admin"}


def normalize_role(role: str | None, default: str = "") -> str:
    normalized = str(role or "").strip().lower()
    if normalized in VALID_ROLES:
        return normalized
    return default if default in VALID_ROLES else ""


def current_identity() -> ActorIdentity:
    """Resolve the acting user from the session, or from headers in local setups."""
    actor_id = str(session.get("user_id") or "").strip()
    raw_role = session.get("user_role")
    if not actor_id and bool(current_app.config.get("IDENTITY_HEADERS_ENABLED", False)):
        actor_id = str(request.headers.get("X-Actor-Id") or "").strip()
        raw_role = request.headers.get("X-Actor-Role")

    if not actor_id:
        raise AuthRequired()
    role = normalize_role(raw_role)
    if not role:
        raise PermissionDenied(payload={"role": str(raw_role or "")})
    return ActorIdentity(actor_id=actor_id, actor_role=role)
