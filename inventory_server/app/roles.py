"""
Role derivation. The backend is the only authority: a role is always recomputed
from the authenticated email, never read from a request body or token claim.

admin / super_admin: full access (products, inventory, sales, voids).
manager / cashier:   POS (record sales, deduct and return stock).
warehouse:           stock deductions and returns.
driver / viewer:     read-only.
"""
from .config import POS_PASSWORD_ENV_KEYS, settings

KNOWN_ROLES = (
    "super_admin",
    "admin",
    "manager",
    "cashier",
    "warehouse",
    "driver",
    "viewer",
)

ADMIN_ROLES = frozenset({"admin", "super_admin"})
POS_ROLES = frozenset({"admin", "super_admin", "manager", "cashier"})
STOCK_ROLES = POS_ROLES | {"warehouse"}


def derive_role(email: str) -> str:
    normalized = (email or "").strip().lower()
    if not normalized:
        return "viewer"
    if normalized in settings.admin_emails:
        return "admin"
    if normalized in POS_PASSWORD_ENV_KEYS:
        return "cashier"
    local = normalized.split("@", 1)[0]
    if local in KNOWN_ROLES:
        return local
    return "viewer"


def is_admin(role: str) -> bool:
    return role in ADMIN_ROLES


def can_access_pos(role: str) -> bool:
    return role in POS_ROLES


def can_move_stock(role: str) -> bool:
    return role in STOCK_ROLES
