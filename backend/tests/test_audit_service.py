# Overview: Pytest coverage for audit emission and sink failure handling.

import logging

from posledger.models import AuditLog, Transaction
from posledger.services import checkout_service
from posledger.services.audit_service import emit_audit_event


def test_emit_writes_audit_row(db_session, org_a, manager_a):
    ok = emit_audit_event(
        actor_user_id=manager_a.id,
        org_id=org_a.id,
        action="void",
        entity_type="transaction",
        entity_id=42,
        old_values={"status": "completed"},
        new_values={"status": "voided"},
        reason="customer return",
    )

    assert ok is True
    row = db_session.query(AuditLog).one()
    assert row.actor_user_id == manager_a.id
    assert row.org_id == org_a.id
    assert row.action == "void"
    assert row.entity_id == 42
    assert row.old_values == {"status": "completed"}
    assert row.new_values == {"status": "voided"}
    assert row.reason == "customer return"
    assert row.created_at is not None


def test_sink_failure_is_logged_not_raised(db_session, failing_audit_sink, caplog):
    with caplog.at_level(logging.ERROR):
        ok = emit_audit_event(
            actor_user_id=None,
            org_id=None,
            action="complete",
            entity_type="transaction",
            entity_id=7,
        )

    assert ok is False
    assert failing_audit_sink.attempts == 1
    assert "Audit log failure" in caplog.text
    assert db_session.query(AuditLog).count() == 0


def test_sink_failure_does_not_undo_the_sale(db_session, org_a, cashier_a, product_x, failing_audit_sink):
    result = checkout_service.checkout(
        org_id=org_a.id,
        user_id=cashier_a.id,
        items=[{"product_id": product_x.id, "quantity": 1}],
        payment_method="cash",
    )

    assert failing_audit_sink.attempts == 1
    stored = db_session.query(Transaction).filter_by(id=result.transaction.id).one()
    assert stored.status == "completed"
