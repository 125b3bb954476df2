# Overview: Default permission sets per role.

# - OWNER / MANAGER: everything, including manual completion and reversals
# - CASHIER: sell and look up transactions only

ROLE_OWNER = "owner"
ROLE_MANAGER = "manager"
ROLE_CASHIER = "cashier"

VALID_ROLES = (ROLE_OWNER, ROLE_MANAGER, ROLE_CASHIER)

DEFAULT_ROLE_PERMISSIONS = {
    ROLE_OWNER: [
        "VIEW_TRANSACTIONS",
        "CHECKOUT",
        "COMPLETE_PAYMENT",
        "VOID_TRANSACTION",
        "REFUND_TRANSACTION",
    ],

    ROLE_MANAGER: [
        "VIEW_TRANSACTIONS",
        "CHECKOUT",
        "COMPLETE_PAYMENT",
        "VOID_TRANSACTION",
        "REFUND_TRANSACTION",
    ],

    ROLE_CASHIER: [
        "VIEW_TRANSACTIONS",
        "CHECKOUT",
    ],
}
