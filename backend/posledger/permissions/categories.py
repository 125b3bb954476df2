# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    TRANSACTIONS = "TRANSACTIONS"
    PAYMENTS = "PAYMENTS"
    REVERSALS = "REVERSALS"
