"""Role and ownership checks applied before any teacher-only operation."""

from __future__ import annotations

from exam_app.core.errors import AuthRequired, PermissionDenied
from exam_app.core.models import Principal, Role


def require_principal(principal: Principal | None) -> Principal:
    if principal is None:
        raise AuthRequired("You must be signed in.")
    return principal


def require_role(principal: Principal | None, role: Role) -> Principal:
    principal = require_principal(principal)
    if principal.role is not role:
        raise PermissionDenied(f"Only {role.value}s may do this.")
    return principal


def require_owner(principal: Principal | None, owner_id: str) -> Principal:
    principal = require_role(principal, Role.TEACHER)
    if principal.user_id != owner_id:
        raise PermissionDenied("You do not own this resource.")
    return principal
