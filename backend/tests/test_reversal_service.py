# Overview: Pytest coverage for void/refund reversals.

import pytest

from posledger.models import Transaction, TransactionItem, AuditLog
from posledger.services import checkout_service
from posledger.services import reversal_service
from posledger.services.reversal_service import reverse_transaction
from posledger.validation import ValidationError, NotFoundError, ConflictError

from conftest import stock_of


def _cash_sale(org, user, items, discount=None):
    return checkout_service.checkout(
        org_id=org.id,
        user_id=user.id,
        items=items,
        payment_method="cash",
        discount_amount_cents=discount,
    ).transaction


@pytest.fixture
def sale(db_session, org_a, cashier_a, product_x, product_y):
    """Completed cash sale: 2 x Product X + 1 x Product Y, 20 discount (total 230)."""
    return _cash_sale(org_a, cashier_a, [
        {"product_id": product_x.id, "quantity": 2},
        {"product_id": product_y.id, "quantity": 1},
    ], discount=20)


class TestVoid:

    def test_void_creates_negated_reversal(self, db_session, org_a, manager_a, sale):
        reversal = reverse_transaction(
            sale.id, org_id=org_a.id, user_id=manager_a.id, reason="customer return", mode="void",
        )

        assert reversal.transaction_type == "void"
        assert reversal.status == "completed"
        assert reversal.completed_at is not None
        assert reversal.total_amount_cents == -230
        assert reversal.discount_amount_cents == 0
        assert reversal.parent_transaction_id == sale.id
        assert reversal.approval_reason == "customer return"
        assert reversal.approved_by_user_id == manager_a.id
        assert reversal.payment_method == "cash"
        assert reversal.customer_phone == "CASH"
        assert reversal.transaction_code.startswith("VOID")

        original_items = [(i.product_id, i.quantity, i.subtotal_cents, i.unit_price_cents) for i in sale.items]
        reversal_items = [(i.product_id, -i.quantity, -i.subtotal_cents, i.unit_price_cents) for i in reversal.items]
        assert reversal_items == original_items

    def test_void_seals_original(self, db_session, org_a, manager_a, sale):
        reversal = reverse_transaction(
            sale.id, org_id=org_a.id, user_id=manager_a.id, reason="customer return", mode="void",
        )

        db_session.refresh(sale)
        assert sale.status == "voided"
        assert sale.reversed_by_transaction_id == reversal.id
        assert sale.parent_transaction_id is None

    def test_void_restores_stock_to_pre_sale_level(self, db_session, org_a, manager_a, product_x, product_y, sale):
        assert stock_of(product_x.id) == 8
        assert stock_of(product_y.id) == 4

        reverse_transaction(sale.id, org_id=org_a.id, user_id=manager_a.id, reason="wrong item", mode="void")

        assert stock_of(product_x.id) == 10
        assert stock_of(product_y.id) == 5

    def test_void_emits_audit(self, db_session, org_a, manager_a, sale):
        reversal = reverse_transaction(
            sale.id, org_id=org_a.id, user_id=manager_a.id, reason="customer return", mode="void",
        )

        audit = db_session.query(AuditLog).filter_by(action="void").one()
        assert audit.entity_id == sale.id
        assert audit.actor_user_id == manager_a.id
        assert audit.reason == "customer return"
        assert audit.old_values == {"status": "completed"}
        assert audit.new_values["status"] == "voided"
        assert audit.new_values["reversed_by_transaction_id"] == reversal.id


class TestRefund:

    def test_refund_marks_original_refunded(self, db_session, org_a, owner_a, product_x, sale):
        reversal = reversal_service.refund_transaction(
            sale.id, org_id=org_a.id, user_id=owner_a.id, reason="damaged",
        )

        assert reversal.transaction_type == "refund"
        assert reversal.transaction_code.startswith("RFND")
        assert reversal.total_amount_cents == -230
        db_session.refresh(sale)
        assert sale.status == "refunded"
        assert stock_of(product_x.id) == 10
        assert db_session.query(AuditLog).filter_by(action="refund").count() == 1


class TestGuards:

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reason_is_required(self, db_session, org_a, manager_a, sale, reason):
        with pytest.raises(ValidationError):
            reverse_transaction(sale.id, org_id=org_a.id, user_id=manager_a.id, reason=reason, mode="void")

        db_session.refresh(sale)
        assert sale.status == "completed"

    def test_over_long_reason_rejected(self, db_session, org_a, manager_a, product_x, sale):
        with pytest.raises(ValidationError, match="at most 255"):
            reverse_transaction(sale.id, org_id=org_a.id, user_id=manager_a.id, reason="x" * 256, mode="void")

        db_session.refresh(sale)
        assert sale.status == "completed"
        assert stock_of(product_x.id) == 8

    def test_reason_of_maximum_length_accepted(self, db_session, org_a, manager_a, sale):
        reversal = reverse_transaction(sale.id, org_id=org_a.id, user_id=manager_a.id, reason="x" * 255, mode="void")
        assert len(reversal.approval_reason) == 255

    def test_unknown_mode_rejected(self, db_session, org_a, manager_a, sale):
        with pytest.raises(ValidationError):
            reverse_transaction(sale.id, org_id=org_a.id, user_id=manager_a.id, reason="x", mode="cancel")

    def test_second_reversal_is_conflict(self, db_session, org_a, manager_a, product_x, sale):
        reversal_service.void_transaction(sale.id, org_id=org_a.id, user_id=manager_a.id, reason="first")

        with pytest.raises(ConflictError, match="already reversed"):
            reversal_service.refund_transaction(sale.id, org_id=org_a.id, user_id=manager_a.id, reason="second")

        assert db_session.query(Transaction).filter_by(parent_transaction_id=sale.id).count() == 1
        assert stock_of(product_x.id) == 10

    def test_pending_sale_cannot_be_reversed(self, db_session, org_a, cashier_a, manager_a, product_y):
        pending = checkout_service.checkout(
            org_id=org_a.id,
            user_id=cashier_a.id,
            items=[{"product_id": product_y.id, "quantity": 1}],
            payment_method="mobile_payment",
            customer_phone="0712345678",
        ).transaction

        with pytest.raises(ConflictError, match="Only completed sales"):
            reverse_transaction(pending.id, org_id=org_a.id, user_id=manager_a.id, reason="x", mode="void")

        assert stock_of(product_y.id) == 5

    def test_reversal_row_cannot_be_reversed(self, db_session, org_a, manager_a, sale):
        reversal = reversal_service.void_transaction(sale.id, org_id=org_a.id, user_id=manager_a.id, reason="x")

        with pytest.raises(NotFoundError):
            reversal_service.void_transaction(reversal.id, org_id=org_a.id, user_id=manager_a.id, reason="y")

    def test_unknown_transaction_is_not_found(self, db_session, org_a, manager_a):
        with pytest.raises(NotFoundError):
            reverse_transaction(55555, org_id=org_a.id, user_id=manager_a.id, reason="x", mode="void")

    def test_other_tenant_is_not_found(self, db_session, org_b, owner_b, product_x, sale):
        with pytest.raises(NotFoundError):
            reverse_transaction(sale.id, org_id=org_b.id, user_id=owner_b.id, reason="x", mode="void")

        db_session.refresh(sale)
        assert sale.status == "completed"
        assert stock_of(product_x.id) == 8


class TestAtomicity:

    def test_failure_mid_reversal_rolls_back_everything(
        self, db_session, org_a, manager_a, product_x, product_y, sale, monkeypatch
    ):
        real_increment = reversal_service.increment_stock
        calls = []

        def flaky_increment(session, product_id, quantity):
            calls.append(product_id)
            if len(calls) == 2:
                raise RuntimeError("disk full")
            real_increment(session, product_id, quantity)

        monkeypatch.setattr(reversal_service, "increment_stock", flaky_increment)

        with pytest.raises(RuntimeError):
            reverse_transaction(sale.id, org_id=org_a.id, user_id=manager_a.id, reason="x", mode="void")

        assert len(calls) == 2
        assert db_session.query(Transaction).filter_by(transaction_type="void").count() == 0
        assert db_session.query(TransactionItem).filter(TransactionItem.quantity < 0).count() == 0
        db_session.refresh(sale)
        assert sale.status == "completed"
        assert sale.reversed_by_transaction_id is None
        assert stock_of(product_x.id) == 8
        assert stock_of(product_y.id) == 4
        assert db_session.query(AuditLog).filter_by(action="void").count() == 0
