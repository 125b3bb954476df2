# Overview: Void and refund of completed sales via compensating reversal transactions.

"""
Reversal Engine

A completed sale is never edited or deleted. Reversing it creates a new
COMPLETED transaction of type void/refund that mirrors the sale with
negated amounts and quantities, restores stock for every item and seals
the original as VOIDED/REFUNDED with a link to its reversal.

INVARIANTS:
- A sale is reversed at most once. Guarded three ways:
  1. row lock on the original (where the backend supports it)
  2. conditional status UPDATE (completed -> voided/refunded)
  3. unique constraint on the reversal's parent_transaction_id
- Reversal row, item copies, stock restoration and the seal commit together
  or not at all.
- Void and refund differ only in the resulting status, the transaction
  type and the code prefix.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Transaction, TransactionItem
from ..models.transactions import (
    STATUS_COMPLETED,
    TYPE_SALE,
    TYPE_VOID,
    TYPE_REFUND,
    REVERSAL_STATUS,
)
from ..time_utils import utcnow
from ..validation import ValidationError, NotFoundError, ConflictError
from .audit_service import emit_audit_event
from .concurrency import atomic, lock_for_update
from .document_service import VOID_PREFIX, REFUND_PREFIX, generate_transaction_code
from .lifecycle_service import transition_status
from .stock_ledger import increment_stock


# approval_reason and audit_logs.reason are String(255)
MAX_REASON_LENGTH = 255

REVERSAL_PREFIXES = {
    TYPE_VOID: VOID_PREFIX,
    TYPE_REFUND: REFUND_PREFIX,
}


def _validate_mode(mode) -> str:
    value = str(mode or "").strip().lower()
    if value not in REVERSAL_PREFIXES:
        raise ValidationError("mode must be one of void, refund", details={"mode": mode})
    return value


def reverse_transaction(
    transaction_id: int,
    *,
    org_id: int,
    user_id: int | None,
    reason,
    mode,
    session=None,
) -> Transaction:
    """
    Void or refund a completed sale. Returns the reversal transaction.

    Raises:
        ValidationError: missing or over-long reason, unknown mode
        NotFoundError: no sale with that id in the caller's tenant
        ConflictError: sale already reversed or not completed
    """
    session = session if session is not None else db.session
    mode = _validate_mode(mode)
    reason = str(reason or "").strip()
    if not reason:
        raise ValidationError(f"A reason is required to {mode} a transaction")
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(
            f"reason must be at most {MAX_REASON_LENGTH} characters",
            details={"length": len(reason)},
        )

    to_status = REVERSAL_STATUS[mode]

    try:
        with atomic(session):
            original = lock_for_update(
                session.query(Transaction).filter_by(
                    id=transaction_id,
                    org_id=org_id,
                    transaction_type=TYPE_SALE,
                )
            ).first()
            if original is None:
                raise NotFoundError("Transaction not found")
            if original.reversed_by_transaction_id is not None:
                raise ConflictError(
                    "Transaction already reversed",
                    details={"reversed_by_transaction_id": original.reversed_by_transaction_id},
                )
            if original.status != STATUS_COMPLETED:
                raise ConflictError(
                    "Only completed sales can be reversed",
                    details={"status": original.status},
                )

            reversal = Transaction(
                org_id=original.org_id,
                transaction_code=generate_transaction_code(REVERSAL_PREFIXES[mode]),
                customer_phone=original.customer_phone,
                total_amount_cents=-original.total_amount_cents,
                discount_amount_cents=0,
                status=STATUS_COMPLETED,
                transaction_type=mode,
                payment_method=original.payment_method,
                receipt_number=original.receipt_number,
                parent_transaction_id=original.id,
                approval_reason=reason,
                approved_by_user_id=user_id,
                created_by_user_id=user_id,
                completed_at=utcnow(),
            )
            session.add(reversal)
            session.flush()

            for item in original.items:
                session.add(TransactionItem(
                    transaction_id=reversal.id,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    unit=item.unit,
                    quantity=-item.quantity,
                    unit_price_cents=item.unit_price_cents,
                    subtotal_cents=-item.subtotal_cents,
                ))
                increment_stock(session, item.product_id, item.quantity)

            sealed = transition_status(
                session,
                original.id,
                from_status=STATUS_COMPLETED,
                to_status=to_status,
                reversed_by_transaction_id=reversal.id,
            )
            if not sealed:
                raise ConflictError("Transaction already reversed")
    except IntegrityError:
        current_app.logger.warning("Concurrent reversal of transaction %s rejected", transaction_id)
        raise ConflictError("Transaction already reversed")

    current_app.logger.info(
        "Transaction %s %s by %s (reversal %s)",
        original.transaction_code,
        to_status,
        reversal.transaction_code,
        reversal.id,
    )

    emit_audit_event(
        actor_user_id=user_id,
        org_id=org_id,
        action=mode,
        entity_type="transaction",
        entity_id=original.id,
        old_values={"status": STATUS_COMPLETED},
        new_values={
            "status": to_status,
            "reversed_by_transaction_id": reversal.id,
            "reversal_code": reversal.transaction_code,
        },
        reason=reason,
    )
    return reversal


def void_transaction(transaction_id: int, **kwargs) -> Transaction:
    return reverse_transaction(transaction_id, mode=TYPE_VOID, **kwargs)


def refund_transaction(transaction_id: int, **kwargs) -> Transaction:
    return reverse_transaction(transaction_id, mode=TYPE_REFUND, **kwargs)
