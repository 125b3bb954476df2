# Overview: Reconciliation of asynchronous payment callbacks (and the manual completion escape hatch).

"""
Reconciliation Listener

A provider callback is matched to the still-PENDING mobile-payment sale it
belongs to by correlation id: the transaction code sent as the account
reference at initiation, or the checkout request id the provider returned.

- result_code == 0: PENDING -> COMPLETED, receipt number stamped, stock
  decremented for every item, all in one atomic scope.
- result_code != 0: PENDING -> FAILED, no stock change.
- No pending match (duplicate delivery, unknown reference, transaction
  already failed): nothing changes and the callback is still acknowledged.

Only a malformed payload is rejected (ValidationError). The status
transition is a conditional UPDATE, so concurrent duplicate deliveries
produce exactly one completion and one stock decrement.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import Transaction
from ..models.transactions import (
    STATUS_PENDING,
    STATUS_COMPLETED,
    STATUS_FAILED,
    TYPE_SALE,
    METHOD_MOBILE,
)
from ..time_utils import utcnow
from ..validation import ValidationError, NotFoundError, ConflictError, parse_int
from .audit_service import emit_audit_event
from .concurrency import atomic, lock_for_update, run_with_retry
from .gateway_service import amount_to_units
from .lifecycle_service import transition_status
from .stock_ledger import decrement_stock


RESULT_SUCCESS = 0

# Metadata names are compared lower-cased with underscores removed
_RECEIPT_KEYS = {"mpesareceiptnumber", "receiptnumber"}
_PHONE_KEYS = {"phonenumber", "phone"}
_REFERENCE_KEYS = {"accountreference", "reference", "transactioncode"}
_AMOUNT_KEYS = {"amount"}


@dataclass
class PaymentCallback:
    result_code: int
    result_description: str | None = None
    reference: str | None = None
    checkout_request_id: str | None = None
    receipt_number: str | None = None
    phone_number: str | None = None
    amount: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.result_code == RESULT_SUCCESS


@dataclass
class ReconciliationOutcome:
    matched: bool
    transaction_id: int | None = None
    status: str | None = None

    def to_dict(self) -> dict:
        return {
            "matched": self.matched,
            "transaction_id": self.transaction_id,
            "status": self.status,
        }


# =============================================================================
# PAYLOAD PARSING
# =============================================================================

def _metadata_key(name) -> str:
    return str(name or "").replace("_", "").lower()


def _read_metadata(items, name_key: str, value_key: str) -> dict[str, str]:
    if items is None:
        return {}
    if not isinstance(items, list):
        raise ValidationError("Invalid callback data: metadata must be a list")

    values = {}
    for item in items:
        if not isinstance(item, dict) or name_key not in item:
            raise ValidationError("Invalid callback data: malformed metadata item")
        value = item.get(value_key)
        if value is not None:
            values[_metadata_key(item[name_key])] = str(value)
    return values


def _pick(metadata: dict[str, str], keys: set[str]) -> str | None:
    for key in keys:
        if metadata.get(key):
            return metadata[key]
    return None


def parse_callback(payload) -> PaymentCallback:
    """
    Accepts the flat shape

        {"result_code": 0, "result_description": "...", "reference": "TXN...",
         "metadata": [{"name": "receipt_number", "value": "..."}, ...]}

    and the provider envelope

        {"Body": {"stkCallback": {"ResultCode": 0, "ResultDesc": "...",
         "CheckoutRequestID": "...",
         "CallbackMetadata": {"Item": [{"Name": "MpesaReceiptNumber", "Value": "..."}]}}}}
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid callback data")

    if "Body" in payload:
        body = payload.get("Body")
        stk = body.get("stkCallback") if isinstance(body, dict) else None
        if not isinstance(stk, dict) or "ResultCode" not in stk:
            raise ValidationError("Invalid callback data")
        raw_code = stk.get("ResultCode")
        description = stk.get("ResultDesc")
        checkout_request_id = stk.get("CheckoutRequestID")
        reference = stk.get("AccountReference")
        callback_metadata = stk.get("CallbackMetadata") or {}
        if not isinstance(callback_metadata, dict):
            raise ValidationError("Invalid callback data: malformed metadata")
        metadata = _read_metadata(callback_metadata.get("Item"), "Name", "Value")
    else:
        if "result_code" not in payload:
            raise ValidationError("Invalid callback data: result_code is required")
        raw_code = payload.get("result_code")
        description = payload.get("result_description")
        checkout_request_id = payload.get("checkout_request_id")
        reference = payload.get("reference")
        metadata = _read_metadata(payload.get("metadata"), "name", "value")

    try:
        result_code = parse_int(raw_code, "result_code")
    except ValidationError:
        raise ValidationError("Invalid callback data: result_code must be an integer")

    callback = PaymentCallback(
        result_code=result_code,
        result_description=description,
        reference=reference or _pick(metadata, _REFERENCE_KEYS),
        checkout_request_id=checkout_request_id,
        receipt_number=_pick(metadata, _RECEIPT_KEYS),
        phone_number=_pick(metadata, _PHONE_KEYS),
        amount=_pick(metadata, _AMOUNT_KEYS),
    )

    if not callback.reference and not callback.checkout_request_id:
        raise ValidationError("Invalid callback data: no payment reference")

    return callback


# =============================================================================
# MATCHING
# =============================================================================

def _correlation_filter(callback: PaymentCallback):
    conditions = []
    if callback.reference:
        conditions.append(Transaction.transaction_code == callback.reference)
    if callback.checkout_request_id:
        conditions.append(Transaction.gateway_checkout_id == callback.checkout_request_id)
    return or_(*conditions)


def find_pending_for_callback(session, callback: PaymentCallback) -> Transaction | None:
    query = session.query(Transaction).filter(
        _correlation_filter(callback),
        Transaction.status == STATUS_PENDING,
        Transaction.transaction_type == TYPE_SALE,
        Transaction.payment_method == METHOD_MOBILE,
    )
    return lock_for_update(query).first()


def _log_unmatched(session, callback: PaymentCallback) -> None:
    existing = session.query(Transaction).filter(_correlation_filter(callback)).first()
    if existing is None:
        # A paid callback may race the checkout id commit; keep the receipt for manual completion
        current_app.logger.warning(
            "Payment callback with unknown reference=%s checkout_id=%s ignored (result_code=%s receipt=%s)",
            callback.reference,
            callback.checkout_request_id,
            callback.result_code,
            callback.receipt_number,
        )
    else:
        current_app.logger.warning(
            "Payment callback (result_code=%s receipt=%s) for %s ignored; transaction is %s",
            callback.result_code,
            callback.receipt_number,
            existing.transaction_code,
            existing.status,
        )


def _check_amount(txn: Transaction, callback: PaymentCallback) -> None:
    if callback.amount is None:
        return
    expected = amount_to_units(txn.total_amount_cents + txn.discount_amount_cents)
    try:
        paid = float(callback.amount)
    except ValueError:
        paid = None
    if paid is None or paid != expected:
        current_app.logger.warning(
            "Payment callback amount %s differs from expected %s for %s",
            callback.amount,
            expected,
            txn.transaction_code,
        )


# =============================================================================
# CALLBACK HANDLING
# =============================================================================

def handle_callback(payload, session=None) -> ReconciliationOutcome:
    """
    Apply one provider callback. Idempotent under redelivery.

    Raises ValidationError only for malformed payloads.
    """
    session = session if session is not None else db.session
    callback = payload if isinstance(payload, PaymentCallback) else parse_callback(payload)

    def _apply() -> Transaction | None:
        with atomic(session):
            txn = find_pending_for_callback(session, callback)
            if txn is None:
                return None

            if callback.succeeded:
                applied = transition_status(
                    session,
                    txn.id,
                    from_status=STATUS_PENDING,
                    to_status=STATUS_COMPLETED,
                    receipt_number=callback.receipt_number,
                    completed_at=utcnow(),
                )
                if not applied:
                    return None
                for item in txn.items:
                    decrement_stock(session, item.product_id, item.quantity, allow_negative=True)
                _check_amount(txn, callback)
            else:
                applied = transition_status(
                    session,
                    txn.id,
                    from_status=STATUS_PENDING,
                    to_status=STATUS_FAILED,
                )
                if not applied:
                    return None
            return txn

    txn = run_with_retry(session, _apply)

    if txn is None:
        _log_unmatched(session, callback)
        return ReconciliationOutcome(matched=False)

    if callback.succeeded:
        current_app.logger.info(
            "Payment confirmed for %s (receipt=%s)", txn.transaction_code, callback.receipt_number
        )
        emit_audit_event(
            actor_user_id=None,
            org_id=txn.org_id,
            action="complete",
            entity_type="transaction",
            entity_id=txn.id,
            old_values={"status": STATUS_PENDING},
            new_values={"status": STATUS_COMPLETED, "receipt_number": callback.receipt_number},
        )
    else:
        current_app.logger.info(
            "Payment failed for %s (result_code=%s: %s)",
            txn.transaction_code,
            callback.result_code,
            callback.result_description,
        )
        emit_audit_event(
            actor_user_id=None,
            org_id=txn.org_id,
            action="fail",
            entity_type="transaction",
            entity_id=txn.id,
            old_values={"status": STATUS_PENDING},
            new_values={"status": STATUS_FAILED},
            reason=callback.result_description,
        )

    return ReconciliationOutcome(matched=True, transaction_id=txn.id, status=txn.status)


# =============================================================================
# MANUAL COMPLETION
# =============================================================================

def complete_manually(transaction_id: int, *, org_id: int, user_id: int | None, session=None) -> Transaction:
    """
    Trusted-operator shortcut: force a pending mobile payment to COMPLETED
    and decrement stock exactly as a confirmed callback would.

    Not validated against any real payment confirmation. Stock is checked
    (conditional decrement), unlike the callback path.
    """
    session = session if session is not None else db.session

    def _op() -> Transaction:
        with atomic(session):
            txn = lock_for_update(
                session.query(Transaction).filter_by(
                    id=transaction_id,
                    org_id=org_id,
                    transaction_type=TYPE_SALE,
                )
            ).first()
            if txn is None:
                raise NotFoundError("Transaction not found")
            if txn.payment_method != METHOD_MOBILE or txn.status != STATUS_PENDING:
                raise ConflictError(
                    "Only pending mobile payments can be completed manually",
                    details={"status": txn.status, "payment_method": txn.payment_method},
                )

            receipt_number = f"MANUAL_{int(time.time() * 1000)}"
            applied = transition_status(
                session,
                txn.id,
                from_status=STATUS_PENDING,
                to_status=STATUS_COMPLETED,
                receipt_number=receipt_number,
                completed_at=utcnow(),
            )
            if not applied:
                raise ConflictError("Transaction is no longer pending")

            for item in txn.items:
                decrement_stock(session, item.product_id, item.quantity)
            return txn

    txn = run_with_retry(session, _op)

    emit_audit_event(
        actor_user_id=user_id,
        org_id=org_id,
        action="complete",
        entity_type="transaction",
        entity_id=txn.id,
        old_values={"status": STATUS_PENDING},
        new_values={"status": STATUS_COMPLETED, "receipt_number": txn.receipt_number},
        reason="Manual completion",
    )
    return txn
