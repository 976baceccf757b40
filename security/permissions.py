"""
Shop Roles and Capabilities

Two roles, one fixed capability table:

    mechanic  staff / administrator: everything
    customer  own repairs, own profile, quote downloads, service list

Roles live on the account record (see security.auth.AccountStore). The
bootstrap admin emails in config only decide the role an account starts
with; after that, mechanics are added through grant_role().

Usage:
    from security.permissions import require, has_capability

    has_capability("customer", "manage_repairs")   # False
    require(account, "manage_clients")             # raises PermissionDenied
"""

import logging
from typing import Any

from core.errors import PermissionDenied, ValidationError

logger = logging.getLogger("shop.permissions")

ROLE_MECHANIC = "mechanic"
ROLE_CUSTOMER = "customer"
ROLES = (ROLE_MECHANIC, ROLE_CUSTOMER)

CAPABILITIES = (
    "manage_clients",
    "manage_services",
    "manage_repairs",
    "view_all_repairs",
    "view_own_repairs",
    "view_services",
    "edit_own_profile",
    "manage_accounts",
    "download_quote",
    "view_events",
)

ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    ROLE_MECHANIC: frozenset(CAPABILITIES),
    ROLE_CUSTOMER: frozenset({
        "view_own_repairs",
        "view_services",
        "edit_own_profile",
        "download_quote",
    }),
}


def validate_role(role: str) -> str:
    if role not in ROLES:
        raise ValidationError(f"Unknown role '{role}'", field="role")
    return role


def has_capability(role: str | None, capability: str) -> bool:
    """True if ``role`` grants ``capability``. Unknown roles grant nothing."""
    return capability in ROLE_CAPABILITIES.get(role or "", frozenset())


def is_admin(account: Any) -> bool:
    """True for staff accounts. Takes the account, not a role string."""
    return getattr(account, "role", None) == ROLE_MECHANIC


def require(account: Any, capability: str) -> None:
    """Raise PermissionDenied unless ``account`` may perform ``capability``.

    ``account`` is anything with ``email`` and ``role`` attributes; None
    means an anonymous caller.
    """
    role = getattr(account, "role", None)
    if has_capability(role, capability):
        return
    email = getattr(account, "email", "anonymous")
    logger.warning("Denied %s for %s (role=%s)", capability, email, role)
    raise PermissionDenied(f"'{capability}' is not allowed for role '{role or 'anonymous'}'")
