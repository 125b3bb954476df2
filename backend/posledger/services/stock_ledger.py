# Overview: Atomic stock mutations; the only code that writes Product.stock_quantity.

"""
Stock Ledger

Every change to a product's on-hand quantity is a single UPDATE of the form

    UPDATE products SET stock_quantity = stock_quantity - :n
    WHERE id = :product_id [AND stock_quantity >= :n]

so two concurrent checkouts on the same product can never lose an update,
and the conditional form can never take stock below zero. Any pre-check done
by a caller is advisory; the rowcount of this statement is authoritative.

INVARIANTS:
- Callers pass their own session; nothing here commits or rolls back.
- Quantities passed in are always positive; direction is the function name.
- ORM Product instances already loaded in the session are NOT refreshed
  (synchronize_session=False); they expire on the caller's commit.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..models import Product
from ..validation import ValidationError


class InsufficientStockError(ValidationError):
    """Raised when a conditional decrement matches no row."""


def _require_positive(quantity: int) -> None:
    if quantity <= 0:
        raise ValidationError("Stock mutation quantity must be positive", details={"quantity": quantity})


def decrement_stock(session, product_id: int, quantity: int, *, allow_negative: bool = False) -> None:
    """
    Take quantity units of product_id out of stock.

    allow_negative=False (cash checkout, manual completion): the update only
    applies while stock_quantity >= quantity, otherwise InsufficientStockError.

    allow_negative=True (confirmed mobile payment): the conditional update is
    tried first; if stock ran out since checkout the unconditional update is
    applied and the oversell is logged.
    """
    _require_positive(quantity)

    conditional = (
        update(Product)
        .where(Product.id == product_id, Product.stock_quantity >= quantity)
        .values(stock_quantity=Product.stock_quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(conditional)
    if result.rowcount:
        return

    if not allow_negative:
        raise InsufficientStockError(
            "Insufficient stock",
            details={"product_id": product_id, "requested_quantity": quantity},
        )

    unconditional = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock_quantity=Product.stock_quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(unconditional)
    if not result.rowcount:
        raise ValidationError("Product not found for stock update", details={"product_id": product_id})

    current_app.logger.warning(
        "Stock for product %s driven below zero by confirmed payment (quantity=%s)",
        product_id,
        quantity,
    )


def increment_stock(session, product_id: int, quantity: int) -> None:
    """Return quantity units of product_id to stock."""
    _require_positive(quantity)

    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock_quantity=Product.stock_quantity + quantity)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if not result.rowcount:
        raise ValidationError("Product not found for stock update", details={"product_id": product_id})


def get_stock_quantity(session, product_id: int) -> int | None:
    """Current on-hand quantity straight from the database (None if unknown product)."""
    return session.query(Product.stock_quantity).filter(Product.id == product_id).scalar()
