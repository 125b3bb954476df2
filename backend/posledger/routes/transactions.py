# Overview: Flask API routes for the transaction lifecycle; parses input and returns JSON responses.

# backend/posledger/routes/transactions.py
"""
Transaction API routes with permission enforcement

- POST /api/transactions/checkout          CHECKOUT
- POST /api/transactions/payment-callback  public (provider-initiated)
- POST /api/transactions/<id>/complete     COMPLETE_PAYMENT
- POST /api/transactions/<id>/void         VOID_TRANSACTION
- POST /api/transactions/<id>/refund       REFUND_TRANSACTION
- GET  /api/transactions/                  VIEW_TRANSACTIONS
- GET  /api/transactions/<id>              VIEW_TRANSACTIONS
- GET  /api/transactions/<id>/receipt      VIEW_TRANSACTIONS
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..models.transactions import TYPE_VOID, TYPE_REFUND
from ..services import checkout_service
from ..services import history_service
from ..services import reconciliation_service
from ..services import reversal_service
from ..services.gateway_service import GatewayError
from ..validation import TransactionError


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


def _error_response(e: TransactionError):
    return jsonify(e.to_dict()), e.http_status


@transactions_bp.post("/checkout")
@require_auth
@require_permission("CHECKOUT")
def checkout_route():
    """
    Create a sale from a cart.

    Body: {items: [{product_id, quantity}], payment_method,
           customer_phone?, discount_amount?}

    Amounts are integer cents; discount_amount_cents is accepted as an alias.

    Returns 201 with the transaction. A failed payment prompt returns 502
    with the id of the transaction that was marked failed.
    """
    try:
        data = request.get_json(silent=True) or {}

        result = checkout_service.checkout(
            org_id=g.org_id,
            user_id=g.current_user.id,
            items=data.get("items"),
            payment_method=data.get("payment_method"),
            customer_phone=data.get("customer_phone"),
            discount_amount_cents=checkout_service.discount_from_request(data),
        )
        return jsonify(result.to_dict()), 201

    except GatewayError as e:
        body = e.to_dict()
        body["transaction_id"] = e.transaction_id
        return jsonify(body), e.http_status
    except TransactionError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to checkout")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/payment-callback")
def payment_callback_route():
    """
    Provider callback. Always acknowledged unless the payload is malformed,
    so the provider does not retry business-level non-matches.
    """
    try:
        data = request.get_json(silent=True)
        outcome = reconciliation_service.handle_callback(data)
        current_app.logger.info(
            "Payment callback processed (matched=%s, transaction=%s)",
            outcome.matched,
            outcome.transaction_id,
        )
        return jsonify({"result_code": 0, "result_description": "Callback received"}), 200

    except TransactionError as e:
        current_app.logger.warning("Rejected payment callback: %s", e)
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process payment callback")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/complete")
@require_auth
@require_permission("COMPLETE_PAYMENT")
def complete_route(transaction_id: int):
    """
    Manually complete a pending mobile payment.

    Trusted-operator escape hatch; not validated against any provider
    confirmation.
    """
    try:
        txn = reconciliation_service.complete_manually(
            transaction_id,
            org_id=g.org_id,
            user_id=g.current_user.id,
        )
        return jsonify({
            "transaction": txn.to_dict(),
            "message": "Transaction completed manually",
        }), 200

    except TransactionError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete transaction %s", transaction_id)
        return jsonify({"error": "Internal server error"}), 500


def _reverse(transaction_id: int, mode: str):
    try:
        data = request.get_json(silent=True) or {}
        reversal = reversal_service.reverse_transaction(
            transaction_id,
            org_id=g.org_id,
            user_id=g.current_user.id,
            reason=data.get("reason"),
            mode=mode,
        )
        return jsonify({
            "reversal_transaction": reversal.to_dict(),
            "message": f"Transaction {mode} recorded",
        }), 201

    except TransactionError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to %s transaction %s", mode, transaction_id)
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/void")
@require_auth
@require_permission("VOID_TRANSACTION")
def void_route(transaction_id: int):
    """Body: {reason}. Available to: owner, manager"""
    return _reverse(transaction_id, TYPE_VOID)


@transactions_bp.post("/<int:transaction_id>/refund")
@require_auth
@require_permission("REFUND_TRANSACTION")
def refund_route(transaction_id: int):
    """Body: {reason}. Available to: owner, manager"""
    return _reverse(transaction_id, TYPE_REFUND)


@transactions_bp.get("/")
@require_auth
@require_permission("VIEW_TRANSACTIONS")
def list_route():
    """
    Transaction history, newest first (max 200).

    Query params: payment_method, status, transaction_type, date_from, date_to
    """
    try:
        transactions = history_service.list_transactions(
            g.org_id,
            payment_method=request.args.get("payment_method"),
            status=request.args.get("status"),
            transaction_type=request.args.get("transaction_type"),
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
        )
        return jsonify({
            "transactions": [txn.to_dict() for txn in transactions],
            "count": len(transactions),
        }), 200

    except TransactionError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/<int:transaction_id>")
@require_auth
@require_permission("VIEW_TRANSACTIONS")
def get_route(transaction_id: int):
    try:
        txn = history_service.get_transaction(transaction_id, g.org_id)
        return jsonify({"transaction": txn.to_dict()}), 200

    except TransactionError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get transaction %s", transaction_id)
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/<int:transaction_id>/receipt")
@require_auth
@require_permission("VIEW_TRANSACTIONS")
def receipt_route(transaction_id: int):
    """Receipt data for printing or reprinting."""
    try:
        return jsonify(history_service.build_receipt(transaction_id, g.org_id)), 200

    except TransactionError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build receipt for transaction %s", transaction_id)
        return jsonify({"error": "Internal server error"}), 500
