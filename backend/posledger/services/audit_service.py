# Overview: Audit event emission to a pluggable sink; failures are logged, never raised.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from flask import current_app

from ..extensions import db
from ..models import AuditLog


@dataclass
class AuditEvent:
    actor_user_id: int | None
    org_id: int | None
    action: str
    entity_type: str
    entity_id: int | None
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    reason: str | None = None


class DatabaseAuditSink:
    """Default sink: one AuditLog row per event, committed on its own."""

    def write(self, event: AuditEvent) -> None:
        try:
            db.session.add(AuditLog(
                actor_user_id=event.actor_user_id,
                org_id=event.org_id,
                action=event.action,
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                old_values=event.old_values,
                new_values=event.new_values,
                reason=event.reason,
            ))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise


def init_audit_sink(app) -> None:
    app.extensions["audit_sink"] = DatabaseAuditSink()


def emit_audit_event(
    *,
    actor_user_id: int | None,
    org_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int | None,
    old_values: dict | None = None,
    new_values: dict | None = None,
    reason: str | None = None,
) -> bool:
    """
    Hand one audit event to the configured sink.

    Must be called after the audited operation has committed. Returns False
    if the sink failed; the failure is logged and the caller carries on.
    """
    event = AuditEvent(
        actor_user_id=actor_user_id,
        org_id=org_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values=old_values,
        new_values=new_values,
        reason=reason,
    )
    try:
        current_app.extensions["audit_sink"].write(event)
    except Exception:
        current_app.logger.exception(
            "Audit log failure: action=%s entity=%s/%s", action, entity_type, entity_id
        )
        return False
    return True
