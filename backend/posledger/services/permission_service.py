# Overview: Centralized capability check; the single place a role is turned into a yes/no.

"""
Capability Check

One decision point keyed by (role, action, resource scope):

    check_capability(role, permission_code, actor_org_id, resource_org_id)

DESIGN PRINCIPLES:
- Fail closed: unknown roles and unknown permission codes are denied
- A role grant never crosses a tenant boundary: an actor may only act on
  resources of its own organization, whatever its role
- Denials are logged; grants are not
"""

from __future__ import annotations

from flask import current_app

from ..permissions import get_role_permissions, validate_permission_code


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""
    pass


def check_capability(
    role: str | None,
    permission_code: str,
    actor_org_id: int | None,
    resource_org_id: int | None = None,
) -> bool:
    """
    True if a user with role, acting within actor_org_id, may perform
    permission_code on a resource owned by resource_org_id.

    resource_org_id=None means the resource is the actor's own tenant scope
    (e.g. creating a new sale).
    """
    if not role or actor_org_id is None:
        return False
    if not validate_permission_code(permission_code):
        return False
    if resource_org_id is not None and resource_org_id != actor_org_id:
        return False
    return permission_code in get_role_permissions(role)


def require_capability(
    user,
    permission_code: str,
    *,
    actor_org_id: int | None,
    resource_org_id: int | None = None,
    resource: str | None = None,
) -> None:
    """
    Raise PermissionDeniedError unless check_capability allows the action.

    Usage:
        require_capability(g.current_user, "VOID_TRANSACTION", actor_org_id=g.org_id)
    """
    role = getattr(user, "role", None)
    if check_capability(role, permission_code, actor_org_id, resource_org_id):
        return

    current_app.logger.warning(
        "Permission denied: user=%s role=%s permission=%s org=%s resource=%s",
        getattr(user, "id", None),
        role,
        permission_code,
        actor_org_id,
        resource,
    )
    raise PermissionDeniedError(f"Permission denied: {permission_code}")
