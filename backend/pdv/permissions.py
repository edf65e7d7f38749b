"""
Role -> permission lookup.

WHY: Centralized permission definitions ensure consistency across the
application. Routes ask for a permission code; the role carried by the
authenticated operator decides.

DESIGN PRINCIPLES:
- Permissions are coarse areas of the store (sales counter, stock room,
  reports, settings)
- Admin has all permissions
- Unknown roles have none (fail closed)
"""

# =============================================================================
# PERMISSION CODES
# =============================================================================

PERMISSION_SALES = "SALES"
PERMISSION_STOCK = "STOCK"
PERMISSION_REPORTS = "REPORTS"
PERMISSION_SETTINGS = "SETTINGS"

ALL_PERMISSIONS = frozenset({
    PERMISSION_SALES,
    PERMISSION_STOCK,
    PERMISSION_REPORTS,
    PERMISSION_SETTINGS,
})


# =============================================================================
# ROLES
# =============================================================================

ROLE_ADMIN = "admin"
ROLE_SELLER = "seller"
ROLE_TRAINEE = "trainee"
ROLE_STOCK_CLERK = "stock_clerk"

ROLES = (ROLE_ADMIN, ROLE_SELLER, ROLE_TRAINEE, ROLE_STOCK_CLERK)

DEFAULT_ROLE_PERMISSIONS = {
    ROLE_ADMIN: ALL_PERMISSIONS,
    # Sellers work the counter and read reports
    ROLE_SELLER: frozenset({PERMISSION_SALES, PERMISSION_REPORTS}),
    # Trainees may only sell
    ROLE_TRAINEE: frozenset({PERMISSION_SALES}),
    ROLE_STOCK_CLERK: frozenset({PERMISSION_STOCK}),
}


def get_role_permissions(role: str | None) -> frozenset[str]:
    return DEFAULT_ROLE_PERMISSIONS.get(role or "", frozenset())


def has_permission(role: str | None, permission_code: str) -> bool:
    return permission_code in get_role_permissions(role)
