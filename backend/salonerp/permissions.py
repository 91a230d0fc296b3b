# Overview: Permission codes and the static role -> permission mapping.

from .models.auth import ROLE_SUPER_ADMIN, ROLE_SALON_ADMIN, ROLE_STAFF

# Each permission is defined as: (code, description)
PERMISSION_DEFINITIONS = [
    ("VIEW_INVENTORY", "View products, stock levels and stock movements"),
    ("MANAGE_INVENTORY", "Create products and run stock consistency checks"),
    ("ADJUST_STOCK", "Apply, reserve, release and reverse stock movements"),
    ("CREATE_BILL", "Create bills for customers"),
    ("VIEW_BILLS", "View bills and payments"),
    ("OVERRIDE_BILL_PAYMENT", "Override bill payment fields and void bills"),
    ("RECORD_PAYMENT", "Record payments against bills"),
    ("VERIFY_PAYMENT", "Verify or fail pending payments"),
    ("MANAGE_EXPENSES", "Record, list and cancel expenses"),
    ("VIEW_FINANCIALS", "View financial dashboards and expense statistics"),
]

ALL_PERMISSIONS = frozenset(code for code, _ in PERMISSION_DEFINITIONS)

ROLE_PERMISSIONS = {
    ROLE_SUPER_ADMIN: ALL_PERMISSIONS,
    ROLE_SALON_ADMIN: ALL_PERMISSIONS,
    ROLE_STAFF: frozenset({
        "VIEW_INVENTORY",
        "ADJUST_STOCK",
        "CREATE_BILL",
        "VIEW_BILLS",
        "RECORD_PAYMENT",
    }),
}


def permissions_for_role(role: str) -> frozenset[str]:
    return ROLE_PERMISSIONS.get(role, frozenset())
