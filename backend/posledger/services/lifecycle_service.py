# Overview: Guarded status transitions for transactions.

"""
Transaction Lifecycle

================================================================================
STATE MACHINE
================================================================================

    sale:   PENDING ---> COMPLETED ---> VOIDED
               |                  \---> REFUNDED
               \------> FAILED

    void / refund rows are created COMPLETED and never change.

Every transition is a conditional UPDATE (WHERE status = <from>), so two
requests racing for the same transition cannot both win: the loser sees
rowcount == 0 and treats the transition as already taken.
================================================================================
"""

from __future__ import annotations

from sqlalchemy import update

from ..models import Transaction
from ..models.transactions import (
    STATUS_PENDING,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_VOIDED,
    STATUS_REFUNDED,
)


ALLOWED_TRANSITIONS = {
    (STATUS_PENDING, STATUS_COMPLETED),
    (STATUS_PENDING, STATUS_FAILED),
    (STATUS_COMPLETED, STATUS_VOIDED),
    (STATUS_COMPLETED, STATUS_REFUNDED),
}


class LifecycleError(ValueError):
    """Raised when an invalid lifecycle transition is requested."""


def transition_status(session, transaction_id: int, *, from_status: str, to_status: str, **values) -> bool:
    """
    Move one transaction from from_status to to_status, setting any extra
    column values in the same statement.

    Returns True if this call performed the transition, False if the row was
    no longer in from_status. Does not commit.
    """
    if (from_status, to_status) not in ALLOWED_TRANSITIONS:
        raise LifecycleError(f"Transition {from_status} -> {to_status} is not allowed")

    stmt = (
        update(Transaction)
        .where(Transaction.id == transaction_id, Transaction.status == from_status)
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    return bool(result.rowcount)
