# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- TRANSACTIONS --

TRANSACTION_PERMISSIONS = [
    (
        "VIEW_TRANSACTIONS",
        "View Transactions",
        "View transaction history and details",
        PermissionCategory.TRANSACTIONS,
    ),
    (
        "CHECKOUT",
        "Checkout",
        "Create sales from a cart (POS access)",
        PermissionCategory.TRANSACTIONS,
    ),
]


# -- PAYMENTS --

PAYMENT_PERMISSIONS = [
    (
        "COMPLETE_PAYMENT",
        "Complete Payment",
        "Manually complete a pending mobile payment without provider confirmation",
        PermissionCategory.PAYMENTS,
    ),
]


# -- REVERSALS --

REVERSAL_PERMISSIONS = [
    (
        "VOID_TRANSACTION",
        "Void Transaction",
        "Void completed sales (restores stock)",
        PermissionCategory.REVERSALS,
    ),
    (
        "REFUND_TRANSACTION",
        "Refund Transaction",
        "Refund completed sales (restores stock)",
        PermissionCategory.REVERSALS,
    ),
]


PERMISSION_DEFINITIONS = (
    TRANSACTION_PERMISSIONS
    + PAYMENT_PERMISSIONS
    + REVERSAL_PERMISSIONS
)
