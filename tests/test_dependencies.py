"""Tests for auth/dependencies.py -- authorization decided from the access token alone."""

from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from auth.dependencies import get_current_principal, require_permission, require_role
from auth.models import Principal


@pytest.fixture
def guarded(issuer) -> TestClient:
    """A bare app with one route per dependency, sharing the fixture issuer."""
    app = FastAPI()
    app.state.token_issuer = issuer

    @app.get("/whoami")
    def whoami(principal: Principal = Depends(get_current_principal)) -> dict:
        return {"user_id": principal.user_id, "roles": list(principal.roles)}

    @app.get("/admin")
    def admin(_: Principal = Depends(require_role("Admin"))) -> dict:
        return {"ok": True}

    @app.get("/reports")
    def reports(_: Principal = Depends(require_permission("reports.read"))) -> dict:
        return {"ok": True}

    return TestClient(app)


def _bearer(issuer, roles=(), permissions=()) -> dict[str, str]:
    token, _expires = issuer.issue_access_token("u-1", "u1@example.com", roles, permissions)
    return {"Authorization": f"Bearer {token}"}


class TestCurrentPrincipal:
    def test_claims_come_from_the_token(self, guarded, issuer) -> None:
        resp = guarded.get("/whoami", headers=_bearer(issuer, roles=("User",)))
        assert resp.status_code == 200
        assert resp.json() == {"user_id": "u-1", "roles": ["User"]}

    @pytest.mark.parametrize("header", [None, "Bearer", "Basic abc", "Bearer not-a-jwt"])
    def test_missing_or_bad_header_is_401(self, guarded, header) -> None:
        headers = {"Authorization": header} if header is not None else {}
        resp = guarded.get("/whoami", headers=headers)
        assert resp.status_code == 401
        assert resp.json()["detail"]["code"] == "unauthorized"

    def test_expired_token_is_401(self, guarded, issuer, clock) -> None:
        headers = _bearer(issuer)
        clock.advance(days=1)
        assert guarded.get("/whoami", headers=headers).status_code == 401


class TestRequireRole:
    def test_role_present(self, guarded, issuer) -> None:
        assert guarded.get("/admin", headers=_bearer(issuer, roles=("Admin",))).status_code == 200

    def test_role_missing_is_403(self, guarded, issuer) -> None:
        resp = guarded.get("/admin", headers=_bearer(issuer, roles=("User",)))
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "forbidden"

    def test_anonymous_is_401_not_403(self, guarded) -> None:
        assert guarded.get("/admin").status_code == 401


class TestRequirePermission:
    def test_permission_present(self, guarded, issuer) -> None:
        resp = guarded.get("/reports", headers=_bearer(issuer, permissions=("reports.read",)))
        assert resp.status_code == 200

    def test_role_alone_does_not_grant_permission(self, guarded, issuer) -> None:
        resp = guarded.get("/reports", headers=_bearer(issuer, roles=("Admin",)))
        assert resp.status_code == 403
