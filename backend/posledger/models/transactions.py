from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from posledger.time_utils import to_utc_z


# =============================================================================
# LIFECYCLE CONSTANTS
# =============================================================================

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_VOIDED = "voided"
STATUS_REFUNDED = "refunded"

TYPE_SALE = "sale"
TYPE_VOID = "void"
TYPE_REFUND = "refund"

METHOD_CASH = "cash"
METHOD_MOBILE = "mobile_payment"

VALID_PAYMENT_METHODS = (METHOD_CASH, METHOD_MOBILE)

# Reversal mode -> status given to the original sale
REVERSAL_STATUS = {
    TYPE_VOID: STATUS_VOIDED,
    TYPE_REFUND: STATUS_REFUNDED,
}

CASH_CUSTOMER = "CASH"


class Transaction(db.Model):
    """
    A financial event: a sale, or the void/refund that reverses one.

    LIFECYCLE:
    - sale/cash:   created COMPLETED by checkout
    - sale/mobile: created PENDING by checkout -> COMPLETED or FAILED by
                   reconciliation (or FAILED when the gateway call fails)
    - COMPLETED sale -> VOIDED / REFUNDED by the reversal engine, which
                   creates the void/refund row in the same DB transaction

    INVARIANTS:
    - total_amount_cents == sum(item.subtotal_cents) - discount_amount_cents
    - parent_transaction_id (on a reversal) and reversed_by_transaction_id
      (on a sale) are mutually exclusive and each is set exactly once
    - completed_at is set iff status is completed, voided or refunded
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("transaction_code", name="uq_transactions_code"),
        # One reversal per sale
        db.UniqueConstraint("parent_transaction_id", name="uq_transactions_parent"),
        db.CheckConstraint(
            "parent_transaction_id IS NULL OR reversed_by_transaction_id IS NULL",
            name="ck_transactions_single_link",
        ),
        db.CheckConstraint("discount_amount_cents >= 0", name="ck_transactions_discount_non_negative"),
        db.Index("ix_transactions_org_status_created", "org_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    # Human-readable, unguessable code; doubles as the gateway account reference
    transaction_code = db.Column(db.String(64), nullable=False)

    customer_phone = db.Column(db.String(32), nullable=False, default=CASH_CUSTOMER)

    # Money (signed, in cents)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING, index=True)
    transaction_type = db.Column(db.String(16), nullable=False, default=TYPE_SALE, index=True)
    payment_method = db.Column(db.String(32), nullable=False, index=True)

    # Provider references
    receipt_number = db.Column(db.String(64), nullable=True)
    gateway_checkout_id = db.Column(db.String(128), nullable=True, index=True)

    # Reversal links
    parent_transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True)
    reversed_by_transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True)
    approval_reason = db.Column(db.String(255), nullable=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    items = db.relationship(
        "TransactionItem",
        backref=db.backref("transaction", lazy=True),
        lazy=True,
        order_by="TransactionItem.id",
    )
    created_by = db.relationship("User", foreign_keys=[created_by_user_id], lazy=True)

    @validates("parent_transaction_id", "reversed_by_transaction_id")
    def _validate_link(self, key, value):
        current = getattr(self, key)
        if current is not None and current != value:
            raise ValueError(f"{key} is already set")
        other = "reversed_by_transaction_id" if key == "parent_transaction_id" else "parent_transaction_id"
        if value is not None and getattr(self, other) is not None:
            raise ValueError("A transaction cannot both reverse and be reversed")
        return value

    @property
    def cashier_name(self) -> str | None:
        return self.created_by.username if self.created_by else None

    @property
    def subtotal_cents(self) -> int:
        return sum(item.subtotal_cents for item in self.items)

    def __repr__(self) -> str:
        return (
            f"<Transaction id={self.id} code={self.transaction_code!r} "
            f"type={self.transaction_type} status={self.status}>"
        )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "transaction_code": self.transaction_code,
            "customer_phone": self.customer_phone,
            "total_amount_cents": self.total_amount_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "status": self.status,
            "transaction_type": self.transaction_type,
            "payment_method": self.payment_method,
            "receipt_number": self.receipt_number,
            "gateway_checkout_id": self.gateway_checkout_id,
            "parent_transaction_id": self.parent_transaction_id,
            "reversed_by_transaction_id": self.reversed_by_transaction_id,
            "approval_reason": self.approval_reason,
            "approved_by_user_id": self.approved_by_user_id,
            "created_by_user_id": self.created_by_user_id,
            "cashier_name": self.cashier_name,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class TransactionItem(db.Model):
    """
    Line of a transaction. Written once with its parent and never updated;
    reversals copy it with quantity and subtotal negated.
    """
    __tablename__ = "transaction_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Denormalized at time of sale
    product_name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(32), nullable=False, default="item")

    quantity = db.Column(db.Integer, nullable=False)  # negative on reversals
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "unit": self.unit,
        }
