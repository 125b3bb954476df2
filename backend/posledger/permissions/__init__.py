# Overview: Permission system package.
# Re-exports all public APIs.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    TRANSACTION_PERMISSIONS,
    PAYMENT_PERMISSIONS,
    REVERSAL_PERMISSIONS,
)
from .roles import (
    DEFAULT_ROLE_PERMISSIONS,
    ROLE_OWNER,
    ROLE_MANAGER,
    ROLE_CASHIER,
    VALID_ROLES,
)
from .helpers import (
    get_all_permission_codes,
    get_permissions_by_category,
    get_permission_definition,
    validate_permission_code,
    get_role_permissions,
)

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "TRANSACTION_PERMISSIONS",
    "PAYMENT_PERMISSIONS",
    "REVERSAL_PERMISSIONS",
    "DEFAULT_ROLE_PERMISSIONS",
    "ROLE_OWNER",
    "ROLE_MANAGER",
    "ROLE_CASHIER",
    "VALID_ROLES",
    "get_all_permission_codes",
    "get_permissions_by_category",
    "get_permission_definition",
    "validate_permission_code",
    "get_role_permissions",
]
