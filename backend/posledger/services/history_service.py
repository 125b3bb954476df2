# Overview: Read-side queries for transaction history and detail (tenant scoped).

from __future__ import annotations

from datetime import datetime, time, timedelta

from ..extensions import db
from ..models import Transaction
from ..models.transactions import (
    STATUS_PENDING,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_VOIDED,
    STATUS_REFUNDED,
    TYPE_SALE,
    TYPE_VOID,
    TYPE_REFUND,
    METHOD_MOBILE,
    VALID_PAYMENT_METHODS,
)
from ..time_utils import parse_iso_datetime, to_utc_z, utcnow
from ..validation import ValidationError, NotFoundError

HISTORY_LIMIT = 200
RECEIPT_DEFAULT_CASHIER = "system"

VALID_STATUSES = (STATUS_PENDING, STATUS_COMPLETED, STATUS_FAILED, STATUS_VOIDED, STATUS_REFUNDED)
VALID_TYPES = (TYPE_SALE, TYPE_VOID, TYPE_REFUND)


def _choice(value, allowed, field):
    if value in (None, ""):
        return None
    if value not in allowed:
        raise ValidationError(f"{field} must be one of {', '.join(allowed)}", details={field: value})
    return value


def _parse_bound(value, field) -> datetime | None:
    try:
        parsed = parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date", details={field: value})
    return parsed


def _is_date_only(value) -> bool:
    return isinstance(value, str) and len(value.strip()) == 10


def list_transactions(
    org_id: int,
    *,
    payment_method=None,
    status=None,
    transaction_type=None,
    date_from=None,
    date_to=None,
    limit: int = HISTORY_LIMIT,
    session=None,
) -> list[Transaction]:
    """Newest first, at most HISTORY_LIMIT rows."""
    session = session if session is not None else db.session

    payment_method = _choice(payment_method, VALID_PAYMENT_METHODS, "payment_method")
    status = _choice(status, VALID_STATUSES, "status")
    transaction_type = _choice(transaction_type, VALID_TYPES, "transaction_type")
    start = _parse_bound(date_from, "date_from")
    end = _parse_bound(date_to, "date_to")

    query = session.query(Transaction).filter(Transaction.org_id == org_id)
    if payment_method:
        query = query.filter(Transaction.payment_method == payment_method)
    if status:
        query = query.filter(Transaction.status == status)
    if transaction_type:
        query = query.filter(Transaction.transaction_type == transaction_type)
    if start is not None:
        query = query.filter(Transaction.created_at >= start)
    if end is not None:
        # A bare date includes the whole day
        if _is_date_only(date_to):
            query = query.filter(Transaction.created_at < datetime.combine(end.date(), time.min) + timedelta(days=1))
        else:
            query = query.filter(Transaction.created_at <= end)

    return (
        query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(min(limit, HISTORY_LIMIT))
        .all()
    )


def get_transaction(transaction_id: int, org_id: int, session=None) -> Transaction:
    session = session if session is not None else db.session
    txn = session.query(Transaction).filter_by(id=transaction_id, org_id=org_id).first()
    if txn is None:
        raise NotFoundError("Transaction not found")
    return txn


def build_receipt(transaction_id: int, org_id: int, session=None) -> dict:
    """
    Receipt data for printing or reprinting a transaction (tenant scoped).

    receipt_date is the completion time, or the creation time for a
    transaction that never completed. Sales without a recorded cashier
    print as "system".
    """
    txn = get_transaction(transaction_id, org_id, session=session)
    receipt_timestamp = txn.completed_at or txn.created_at

    return {
        "transaction_id": txn.id,
        "transaction_code": txn.transaction_code,
        "receipt_date": to_utc_z(receipt_timestamp),
        "status": txn.status,
        "transaction_type": txn.transaction_type,
        "payment_method": txn.payment_method,
        "customer_phone": txn.customer_phone,
        "receipt_number": txn.receipt_number,
        "cashier_name": txn.cashier_name or RECEIPT_DEFAULT_CASHIER,
        "total_amount_cents": txn.total_amount_cents,
        "discount_amount_cents": txn.discount_amount_cents,
        "items": [
            {
                "product_name": item.product_name,
                "quantity": item.quantity,
                "unit_price_cents": item.unit_price_cents,
                "subtotal_cents": item.subtotal_cents,
                "unit": item.unit,
            }
            for item in txn.items
        ],
    }


def list_stuck_pending(older_than: timedelta, session=None) -> list[Transaction]:
    """Pending mobile payments created before now - older_than, oldest first (all tenants)."""
    session = session if session is not None else db.session
    cutoff = utcnow() - older_than
    return (
        session.query(Transaction)
        .filter(
            Transaction.status == STATUS_PENDING,
            Transaction.payment_method == METHOD_MOBILE,
            Transaction.created_at <= cutoff,
        )
        .order_by(Transaction.created_at.asc(), Transaction.id.asc())
        .all()
    )
