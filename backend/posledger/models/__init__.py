from .tenancy import Organization
from .auth import User, SessionToken
from .catalog import Product
from .transactions import Transaction, TransactionItem
from .audit import AuditLog

__all__ = [
    'Organization',
    'User', 'SessionToken',
    'Product',
    'Transaction', 'TransactionItem',
    'AuditLog',
]
