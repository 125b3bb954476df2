"""
Authorization tests for posledger.

Verifies:
- Unauthenticated requests return 401
- Cashier role denied manual completion and reversals (403)
- Owner and manager roles can perform privileged operations
- Capability checks fail closed and never cross a tenant boundary
- Session tokens: login, logout, idle timeout, deactivation
"""

from datetime import timedelta

import pytest

from posledger.models import SessionToken
from posledger.permissions import (
    get_all_permission_codes,
    get_permission_definition,
    get_permissions_by_category,
    get_role_permissions,
    PermissionCategory,
)
from posledger.services.auth_service import create_user, PasswordValidationError
from posledger.services.permission_service import (
    check_capability,
    require_capability,
    PermissionDeniedError,
)
from posledger.services.session_service import validate_session, hash_token
from posledger.time_utils import utcnow

from conftest import get_auth_token, auth_headers


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/transactions/checkout"),
            ("POST", "/api/transactions/1/complete"),
            ("POST", "/api/transactions/1/void"),
            ("POST", "/api/transactions/1/refund"),
            ("GET", "/api/transactions/"),
            ("GET", "/api/transactions/1"),
            ("GET", "/api/auth/me"),
            ("POST", "/api/auth/logout"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token_rejected(self, client, db_session):
        resp = client.get("/api/transactions/", headers=auth_headers("not-a-token"))
        assert resp.status_code == 401
        assert resp.json["error"] == "Invalid or expired token"


# =============================================================================
# CASHIER DENIED HIGH-RISK OPERATIONS (403)
# =============================================================================


class TestCashierDeniedHighRisk:
    """Cashier role cannot complete payments by hand or reverse sales."""

    @pytest.mark.parametrize(
        "action,permission",
        [
            ("complete", "COMPLETE_PAYMENT"),
            ("void", "VOID_TRANSACTION"),
            ("refund", "REFUND_TRANSACTION"),
        ],
    )
    def test_denied(self, client, cashier_headers, action, permission):
        resp = client.post(
            f"/api/transactions/1/{action}",
            json={"reason": "x"},
            headers=cashier_headers,
        )
        assert resp.status_code == 403
        assert resp.json["error"] == "Permission denied"
        assert resp.json["required_permission"] == permission

    def test_cashier_can_view_history(self, client, cashier_headers):
        resp = client.get("/api/transactions/", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["count"] == 0


# =============================================================================
# CAPABILITY CHECK
# =============================================================================


class TestCapabilityCheck:

    @pytest.mark.parametrize("role", ["owner", "manager"])
    def test_privileged_roles_hold_every_permission(self, role):
        for code in get_all_permission_codes():
            assert check_capability(role, code, actor_org_id=1)

    def test_cashier_permissions(self):
        assert check_capability("cashier", "CHECKOUT", actor_org_id=1)
        assert check_capability("cashier", "VIEW_TRANSACTIONS", actor_org_id=1)
        assert not check_capability("cashier", "COMPLETE_PAYMENT", actor_org_id=1)
        assert not check_capability("cashier", "VOID_TRANSACTION", actor_org_id=1)
        assert not check_capability("cashier", "REFUND_TRANSACTION", actor_org_id=1)

    def test_cross_tenant_denied_even_for_owner(self):
        assert check_capability("owner", "VOID_TRANSACTION", actor_org_id=1, resource_org_id=1)
        assert not check_capability("owner", "VOID_TRANSACTION", actor_org_id=1, resource_org_id=2)

    @pytest.mark.parametrize(
        "role,code,org_id",
        [
            (None, "CHECKOUT", 1),
            ("", "CHECKOUT", 1),
            ("superuser", "CHECKOUT", 1),
            ("owner", "DELETE_EVERYTHING", 1),
            ("owner", "CHECKOUT", None),
        ],
    )
    def test_fails_closed(self, role, code, org_id):
        assert not check_capability(role, code, actor_org_id=org_id)

    def test_require_capability_raises(self, app, cashier_a):
        with pytest.raises(PermissionDeniedError, match="VOID_TRANSACTION"):
            require_capability(cashier_a, "VOID_TRANSACTION", actor_org_id=cashier_a.org_id)

        require_capability(cashier_a, "CHECKOUT", actor_org_id=cashier_a.org_id)

    def test_permission_catalog(self):
        assert get_role_permissions("nobody") == set()
        assert {p[0] for p in get_permissions_by_category(PermissionCategory.REVERSALS)} == {
            "VOID_TRANSACTION",
            "REFUND_TRANSACTION",
        }
        definition = get_permission_definition("CHECKOUT")
        assert definition["category"] == PermissionCategory.TRANSACTIONS
        assert get_permission_definition("NOPE") is None


# =============================================================================
# SESSIONS
# =============================================================================


class TestSessions:

    def test_login_returns_token_and_permissions(self, client, cashier_a):
        resp = client.post("/api/auth/login", json={
            "username": "cashier_a",
            "password": "Password123!",
        })
        assert resp.status_code == 200
        assert len(resp.json["token"]) == 64
        assert resp.json["org_id"] == cashier_a.org_id
        assert resp.json["permissions"] == ["CHECKOUT", "VIEW_TRANSACTIONS"]
        assert resp.json["expires_at"].endswith("Z")

    def test_only_token_hash_is_stored(self, client, db_session, cashier_a):
        token = get_auth_token(client, "cashier_a")
        stored = db_session.query(SessionToken).filter_by(user_id=cashier_a.id).one()
        assert stored.token_hash == hash_token(token)
        assert stored.token_hash != token

    def test_bad_credentials(self, client, cashier_a):
        resp = client.post("/api/auth/login", json={"username": "cashier_a", "password": "wrong-password"})
        assert resp.status_code == 401

        resp = client.post("/api/auth/login", json={"username": "cashier_a"})
        assert resp.status_code == 400

    def test_me(self, client, manager_headers, manager_a):
        resp = client.get("/api/auth/me", headers=manager_headers)
        assert resp.status_code == 200
        assert resp.json["user"]["username"] == "manager_a"
        assert resp.json["org_id"] == manager_a.org_id
        assert "VOID_TRANSACTION" in resp.json["permissions"]

    def test_logout_revokes_token(self, client, cashier_headers):
        resp = client.post("/api/auth/logout", headers=cashier_headers)
        assert resp.status_code == 200

        resp = client.get("/api/auth/me", headers=cashier_headers)
        assert resp.status_code == 401

    def test_idle_session_is_revoked(self, client, db_session, cashier_a):
        token = get_auth_token(client, "cashier_a")
        stored = db_session.query(SessionToken).filter_by(user_id=cashier_a.id).one()
        stored.last_used_at = utcnow() - timedelta(hours=3)
        db_session.commit()

        assert validate_session(token) is None
        db_session.refresh(stored)
        assert stored.is_revoked
        assert stored.revoked_reason == "Idle timeout"

    def test_deactivated_user_loses_session(self, client, db_session, cashier_a):
        token = get_auth_token(client, "cashier_a")
        cashier_a.is_active = False
        db_session.commit()

        resp = client.get("/api/auth/me", headers=auth_headers(token))
        assert resp.status_code == 401


class TestUserProvisioning:

    def test_create_user(self, db_session, org_a):
        user = create_user("till2", "LongEnough1", org_a.id, role="cashier")
        assert user.id is not None
        assert user.password_hash != "LongEnough1"

    def test_rejects_short_password(self, db_session, org_a):
        with pytest.raises(PasswordValidationError):
            create_user("till3", "short", org_a.id)

    def test_rejects_duplicate_and_unknown_role(self, db_session, org_a, cashier_a):
        with pytest.raises(ValueError, match="already exists"):
            create_user("cashier_a", "LongEnough1", org_a.id)
        with pytest.raises(ValueError, match="Role must be"):
            create_user("till4", "LongEnough1", org_a.id, role="admin")
