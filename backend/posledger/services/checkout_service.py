# Overview: Checkout orchestration; turns a cart into a persisted transaction.

"""
Checkout Orchestrator

FLOW:
1. Validate input (non-empty cart, payment method, phone for mobile payments)
2. Load each product in the caller's tenant and price the cart
3. Clamp the discount to [0, total]; final amount = total - discount
4. Persist transaction + items in one atomic scope
5. Cash: in that same scope, decrement stock and mark COMPLETED
6. Mobile payment: commit PENDING first, then send the payment prompt for
   the pre-discount amount with the transaction code as reference. A
   failed prompt flips the transaction to FAILED (separate update) and the
   gateway error is raised to the caller.

The gateway call happens outside any open DB transaction.

The provider checkout id is stored by a second commit after initiate()
returns. A callback that carries only that id and arrives before the
commit (or after the commit failed) finds no match; it is acknowledged and
logged with its receipt number so an operator can complete the sale by hand.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Product, Transaction, TransactionItem
from ..models.transactions import (
    STATUS_PENDING,
    STATUS_COMPLETED,
    STATUS_FAILED,
    TYPE_SALE,
    METHOD_CASH,
    METHOD_MOBILE,
    VALID_PAYMENT_METHODS,
    CASH_CUSTOMER,
)
from ..time_utils import utcnow
from ..validation import (
    ValidationError,
    NotFoundError,
    parse_int,
    parse_amount_cents,
    validate_customer_phone,
)
from .audit_service import emit_audit_event
from .concurrency import atomic, run_with_retry
from .document_service import generate_transaction_code
from .gateway_service import get_gateway, checkout_id_from_response
from .lifecycle_service import transition_status
from .stock_ledger import decrement_stock


PAYMENT_DESCRIPTION = "Payment for purchase"


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int


@dataclass
class PricedLine:
    product_id: int
    product_name: str
    unit: str
    quantity: int
    unit_price_cents: int
    subtotal_cents: int


@dataclass
class CheckoutResult:
    transaction: Transaction
    gateway_response: dict | None = None

    def to_dict(self) -> dict:
        txn = self.transaction
        data = {
            "transaction_id": txn.id,
            "transaction_code": txn.transaction_code,
            "total_amount": txn.total_amount_cents,
            "discount_amount": txn.discount_amount_cents,
            "total_amount_cents": txn.total_amount_cents,
            "discount_amount_cents": txn.discount_amount_cents,
            "payment_method": txn.payment_method,
            "status": txn.status,
            "transaction": txn.to_dict(),
        }
        if txn.payment_method == METHOD_MOBILE:
            data["gateway_response"] = self.gateway_response
            data["message"] = "Payment prompt sent to customer phone"
        else:
            data["message"] = "Cash sale completed"
        return data


# =============================================================================
# INPUT VALIDATION
# =============================================================================

def normalize_payment_method(value) -> str:
    method = str(value or "").strip().lower()
    if method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of {', '.join(VALID_PAYMENT_METHODS)}",
            details={"payment_method": value},
        )
    return method


def parse_cart(items) -> list[CartLine]:
    if not items or not isinstance(items, list):
        raise ValidationError("Items are required")

    cart = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        if item.get("product_id") is None:
            raise ValidationError(f"items[{index}].product_id is required")
        product_id = parse_int(item.get("product_id"), f"items[{index}].product_id")
        quantity = parse_int(item.get("quantity"), f"items[{index}].quantity")
        if quantity <= 0:
            raise ValidationError(
                f"Invalid quantity for product {product_id}",
                details={"product_id": product_id, "quantity": quantity},
            )
        cart.append(CartLine(product_id=product_id, quantity=quantity))
    return cart


def discount_from_request(data: dict):
    """
    Requested discount from a checkout body.

    discount_amount is the request field; discount_amount_cents is accepted
    as an alias. Both are integer minor units like every other amount. A
    body carrying both with different values is rejected.
    """
    amount = data.get("discount_amount")
    alias = data.get("discount_amount_cents")
    if amount in (None, ""):
        return alias
    if alias not in (None, ""):
        if parse_int(alias, "discount_amount_cents") != parse_int(amount, "discount_amount"):
            raise ValidationError(
                "discount_amount and discount_amount_cents disagree",
                details={"discount_amount": amount, "discount_amount_cents": alias},
            )
    return amount


def clamp_discount(discount_cents: int, total_cents: int) -> int:
    return max(0, min(discount_cents, total_cents))


# =============================================================================
# PRICING
# =============================================================================

def price_cart(session, org_id: int, cart: list[CartLine]) -> list[PricedLine]:
    """
    Load every product under the tenant and price the lines.

    The stock comparison here is advisory (aggregated per product); the
    Stock Ledger's conditional update is the source of truth.
    """
    products: dict[int, Product] = {}
    for line in cart:
        if line.product_id in products:
            continue
        product = (
            session.query(Product)
            .filter_by(id=line.product_id, org_id=org_id)
            .first()
        )
        if product is None or not product.is_active:
            raise NotFoundError(f"Product {line.product_id} not found", details={"product_id": line.product_id})
        products[line.product_id] = product

    requested: dict[int, int] = {}
    for line in cart:
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

    for product_id, quantity in requested.items():
        product = products[product_id]
        if product.stock_quantity < quantity:
            raise ValidationError(
                f"Insufficient stock for {product.name}. "
                f"Available: {product.stock_quantity}, Requested: {quantity}",
                details={
                    "product_id": product_id,
                    "available": product.stock_quantity,
                    "requested_quantity": quantity,
                },
            )

    priced = []
    for line in cart:
        product = products[line.product_id]
        priced.append(PricedLine(
            product_id=product.id,
            product_name=product.name,
            unit=product.unit or "item",
            quantity=line.quantity,
            unit_price_cents=product.price_cents,
            subtotal_cents=product.price_cents * line.quantity,
        ))
    return priced


# =============================================================================
# CHECKOUT
# =============================================================================

def checkout(
    *,
    org_id: int,
    user_id: int | None,
    items,
    payment_method,
    customer_phone=None,
    discount_amount_cents=None,
    session=None,
    gateway=None,
) -> CheckoutResult:
    """
    Create a sale from a cart.

    Raises:
        ValidationError: bad input, non-positive quantity, insufficient stock
        NotFoundError: product not in the caller's tenant
        GatewayError: mobile payment prompt failed (transaction is FAILED)
    """
    session = session if session is not None else db.session

    method = normalize_payment_method(payment_method)
    cart = parse_cart(items)
    phone = validate_customer_phone(customer_phone) if method == METHOD_MOBILE else CASH_CUSTOMER
    requested_discount = 0
    if discount_amount_cents not in (None, ""):
        requested_discount = parse_amount_cents(discount_amount_cents, "discount_amount")

    def _create() -> Transaction:
        with atomic(session):
            lines = price_cart(session, org_id, cart)
            total_cents = sum(line.subtotal_cents for line in lines)
            discount_cents = clamp_discount(requested_discount, total_cents)

            is_cash = method == METHOD_CASH
            txn = Transaction(
                org_id=org_id,
                transaction_code=generate_transaction_code(),
                customer_phone=phone,
                total_amount_cents=total_cents - discount_cents,
                discount_amount_cents=discount_cents,
                status=STATUS_COMPLETED if is_cash else STATUS_PENDING,
                transaction_type=TYPE_SALE,
                payment_method=method,
                created_by_user_id=user_id,
                completed_at=utcnow() if is_cash else None,
            )
            session.add(txn)
            session.flush()

            for line in lines:
                session.add(TransactionItem(
                    transaction_id=txn.id,
                    product_id=line.product_id,
                    product_name=line.product_name,
                    unit=line.unit,
                    quantity=line.quantity,
                    unit_price_cents=line.unit_price_cents,
                    subtotal_cents=line.subtotal_cents,
                ))

            if is_cash:
                for line in lines:
                    decrement_stock(session, line.product_id, line.quantity)

            return txn

    txn = run_with_retry(session, _create)

    emit_audit_event(
        actor_user_id=user_id,
        org_id=org_id,
        action="create",
        entity_type="transaction",
        entity_id=txn.id,
        new_values={
            "transaction_code": txn.transaction_code,
            "status": txn.status,
            "total_amount_cents": txn.total_amount_cents,
            "discount_amount_cents": txn.discount_amount_cents,
            "transaction_type": txn.transaction_type,
            "payment_method": txn.payment_method,
        },
    )

    if method == METHOD_CASH:
        current_app.logger.info("Cash sale %s completed (total=%s)", txn.transaction_code, txn.total_amount_cents)
        return CheckoutResult(transaction=txn)

    # The prompt is for the pre-discount amount
    gross_cents = txn.total_amount_cents + txn.discount_amount_cents
    return _request_mobile_payment(session, txn, gross_cents, gateway or get_gateway(), user_id)


def _request_mobile_payment(session, txn: Transaction, amount_cents: int, gateway, user_id: int | None) -> CheckoutResult:
    transaction_id = txn.id
    try:
        response = gateway.initiate(
            txn.customer_phone,
            amount_cents,
            txn.transaction_code,
            PAYMENT_DESCRIPTION,
        )
    except Exception as exc:
        with atomic(session):
            transition_status(session, transaction_id, from_status=STATUS_PENDING, to_status=STATUS_FAILED)
        current_app.logger.warning("Payment prompt for %s failed; transaction marked failed", txn.transaction_code)
        emit_audit_event(
            actor_user_id=user_id,
            org_id=txn.org_id,
            action="fail",
            entity_type="transaction",
            entity_id=transaction_id,
            old_values={"status": STATUS_PENDING},
            new_values={"status": STATUS_FAILED},
            reason=str(exc) or "Payment gateway error",
        )
        if hasattr(exc, "transaction_id"):
            exc.transaction_id = transaction_id
        raise

    checkout_id = checkout_id_from_response(response)
    if checkout_id:
        with atomic(session):
            session.execute(
                update(Transaction)
                .where(Transaction.id == transaction_id)
                .values(gateway_checkout_id=checkout_id)
                .execution_options(synchronize_session=False)
            )

    current_app.logger.info("Payment prompt sent for %s", txn.transaction_code)
    return CheckoutResult(transaction=txn, gateway_response=response)
