"""
tests/test_api_routes.py -- Integration tests for the auth, user, and role routes.

These tests exercise the full stack: FastAPI routing -> auth dependency
injection -> services -> SQLite stores -> response model serialization ->
AuthError exception handler.

Coverage:
  - Auth flow: register 201, login 200, refresh rotation, replay 401, logout, logout-all
  - Error envelope: validation 422 with every field, conflict 409 with field,
    identical 401 payloads for unknown account vs wrong password
  - Token-bearing responses carry Cache-Control: no-store
  - Bearer-protected routes: /auth/me, /auth/sessions, /users/profile
  - Admin-only routes: 403 for a regular user, 200/201 for the admin

Fixtures used (from conftest.py):
  - api_client: (client, admin_token, admin_id). The admin is admin@example.com
    and holds the Admin role; a "User" role exists for registrations.

The client is module-scoped, so every test registers its own email/device.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

PASSWORD = "Passw0rd!"


def _register(client: TestClient, email: str, device_id: str = "d1", **extra) -> dict:
    body = {
        "email": email,
        "password": PASSWORD,
        "confirm_password": PASSWORD,
        "first_name": "Test",
        "last_name": "User",
        "device_id": device_id,
    }
    body.update(extra)
    resp = client.post("/api/v1/auth/register", json=body)
    assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
    return resp.json()


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestRegisterRoute:
    def test_register_returns_tokens_and_user(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _uid = api_client
        data = _register(client, "reg1@example.com")
        assert data["token_type"] == "bearer"
        assert data["access_token"]
        assert data["refresh_token"]
        assert data["user"]["email"] == "reg1@example.com"
        assert data["user"]["roles"] == ["User"]

    def test_register_sets_no_store(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={
                "email": "reg2@example.com",
                "password": PASSWORD,
                "confirm_password": PASSWORD,
                "first_name": "A",
                "last_name": "B",
                "device_id": "d1",
            },
        )
        assert resp.headers["cache-control"] == "no-store"

    def test_duplicate_email_is_409_naming_field(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _uid = api_client
        _register(client, "dup@example.com")
        resp = client.post(
            "/api/v1/auth/register",
            json={
                "email": "DUP@example.com",
                "password": PASSWORD,
                "confirm_password": PASSWORD,
                "first_name": "A",
                "last_name": "B",
                "device_id": "d9",
            },
        )
        assert resp.status_code == 409
        assert resp.json()["error"] == {"code": "conflict", "message": "Email already exists", "field": "email"}

    def test_validation_is_422_with_every_field(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/auth/register", json={"email": "bad", "password": "x"})
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert {"email", "password", "confirm_password", "first_name", "last_name", "device_id"} <= set(
            error["fields"]
        )

    def test_malformed_body_is_422(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/auth/register", json=["not", "an", "object"])
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestLoginRoute:
    def test_login_success(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _uid = api_client
        _register(client, "login1@example.com")
        resp = client.post(
            "/api/v1/auth/login",
            json={"email_or_phone": "login1@example.com", "password": PASSWORD, "device_id": "d2"},
        )
        assert resp.status_code == 200, resp.text
        assert resp.headers["cache-control"] == "no-store"
        assert resp.json()["user"]["email"] == "login1@example.com"

    def test_failures_are_indistinguishable(self, api_client: tuple[TestClient, str, str]) -> None:
        """Unknown account and wrong password produce byte-identical 401 bodies."""
        client, _token, _uid = api_client
        _register(client, "login2@example.com")
        unknown = client.post(
            "/api/v1/auth/login",
            json={"email_or_phone": "nobody@example.com", "password": PASSWORD, "device_id": "d1"},
        )
        wrong = client.post(
            "/api/v1/auth/login",
            json={"email_or_phone": "login2@example.com", "password": "Wrong0ne!", "device_id": "d1"},
        )
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.content == wrong.content
        assert unknown.json()["error"] == {"code": "unauthorized", "message": "Invalid credentials"}

    def test_missing_fields(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/auth/login", json={})
        assert resp.status_code == 422
        assert set(resp.json()["error"]["fields"]) == {"email_or_phone", "password", "device_id"}


class TestRefreshAndLogoutRoutes:
    def test_refresh_rotates_and_replay_fails(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _uid = api_client
        first = _register(client, "refresh1@example.com")

        resp = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": first["refresh_token"], "device_id": "d1"},
        )
        assert resp.status_code == 200, resp.text
        assert resp.headers["cache-control"] == "no-store"
        rotated = resp.json()
        assert rotated["refresh_token"] != first["refresh_token"]

        replay = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": first["refresh_token"], "device_id": "d1"},
        )
        assert replay.status_code == 401
        assert replay.json()["error"]["message"] == "Invalid refresh token"

    def test_refresh_wrong_device(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _uid = api_client
        first = _register(client, "refresh2@example.com")
        resp = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": first["refresh_token"], "device_id": "elsewhere"},
        )
        assert resp.status_code == 401

    def test_logout_is_always_200(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _uid = api_client
        first = _register(client, "logout1@example.com")
        for _ in range(2):
            resp = client.post("/api/v1/auth/logout", json={"refresh_token": first["refresh_token"]})
            assert resp.status_code == 200
        resp = client.post("/api/v1/auth/logout", json={"refresh_token": "never-issued"})
        assert resp.status_code == 200

        refresh = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": first["refresh_token"], "device_id": "d1"},
        )
        assert refresh.status_code == 401

    def test_logout_all(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _uid = api_client
        on_a = _register(client, "logout2@example.com", device_id="A")
        on_b = client.post(
            "/api/v1/auth/login",
            json={"email_or_phone": "logout2@example.com", "password": PASSWORD, "device_id": "B"},
        ).json()

        resp = client.post("/api/v1/auth/logout-all", json={"refresh_token": on_a["refresh_token"]})
        assert resp.status_code == 200

        for session, device in ((on_a, "A"), (on_b, "B")):
            refresh = client.post(
                "/api/v1/auth/refresh",
                json={"refresh_token": session["refresh_token"], "device_id": device},
            )
            assert refresh.status_code == 401

    def test_validate(self, api_client: tuple[TestClient, str, str]) -> None:
        client, token, _uid = api_client
        assert client.post("/api/v1/auth/validate", json={"access_token": token}).json() == {"valid": True}
        assert client.post("/api/v1/auth/validate", json={"access_token": "nope"}).json() == {"valid": False}


class TestBearerRoutes:
    def test_me_requires_token(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_rejects_garbage_token(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _uid = api_client
        assert client.get("/api/v1/auth/me", headers=_bearer("garbage")).status_code == 401

    def test_me(self, api_client: tuple[TestClient, str, str]) -> None:
        client, token, uid = api_client
        resp = client.get("/api/v1/auth/me", headers=_bearer(token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["user_id"] == uid
        assert data["email"] == "admin@example.com"
        assert data["roles"] == ["Admin"]

    def test_sessions(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _uid = api_client
        data = _register(client, "sessions@example.com", device_id="phone", device_name="Pixel")
        resp = client.get("/api/v1/auth/sessions", headers=_bearer(data["access_token"]))
        assert resp.status_code == 200
        sessions = resp.json()
        assert len(sessions) == 1
        assert sessions[0]["device_id"] == "phone"
        assert sessions[0]["device_name"] == "Pixel"
        assert sessions[0]["ip_address"] == "testclient"

    def test_profile_read_and_update(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _uid = api_client
        data = _register(client, "profile@example.com")
        headers = _bearer(data["access_token"])

        assert client.get("/api/v1/users/profile", headers=headers).json()["email"] == "profile@example.com"

        resp = client.put(
            "/api/v1/users/profile",
            json={"first_name": "Lan", "last_name": "Pham", "phone_number": "0987654321"},
            headers=headers,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["full_name"] == "Lan Pham"
        assert resp.json()["phone_number"] == "+84987654321"

    def test_change_password(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, _uid = api_client
        data = _register(client, "chpw@example.com")
        headers = _bearer(data["access_token"])

        wrong = client.post(
            "/api/v1/users/change-password",
            json={"current_password": "Wrong0ne!", "new_password": "N3w-Secret", "confirm_password": "N3w-Secret"},
            headers=headers,
        )
        assert wrong.status_code == 401

        ok = client.post(
            "/api/v1/users/change-password",
            json={"current_password": PASSWORD, "new_password": "N3w-Secret", "confirm_password": "N3w-Secret"},
            headers=headers,
        )
        assert ok.status_code == 200
        login = client.post(
            "/api/v1/auth/login",
            json={"email_or_phone": "chpw@example.com", "password": "N3w-Secret", "device_id": "d1"},
        )
        assert login.status_code == 200


class TestAdminRoutes:
    def test_regular_user_is_forbidden(self, api_client: tuple[TestClient, str, str]) -> None:
        client, _token, uid = api_client
        data = _register(client, "pleb@example.com")
        headers = _bearer(data["access_token"])
        assert client.get("/api/v1/roles", headers=headers).status_code == 403
        assert client.get(f"/api/v1/users/{uid}", headers=headers).status_code == 403

    def test_admin_reads_any_user(self, api_client: tuple[TestClient, str, str]) -> None:
        client, token, _uid = api_client
        data = _register(client, "target@example.com")
        resp = client.get(f"/api/v1/users/{data['user']['id']}", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json()["email"] == "target@example.com"

    def test_unknown_user_is_404(self, api_client: tuple[TestClient, str, str]) -> None:
        client, token, _uid = api_client
        resp = client.get("/api/v1/users/does-not-exist", headers=_bearer(token))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_deactivate_then_activate(self, api_client: tuple[TestClient, str, str]) -> None:
        client, token, _uid = api_client
        data = _register(client, "toggle@example.com")
        user_id = data["user"]["id"]

        assert client.post(f"/api/v1/users/{user_id}/deactivate", headers=_bearer(token)).status_code == 200
        refresh = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": data["refresh_token"], "device_id": "d1"},
        )
        assert refresh.status_code == 401
        assert refresh.json()["error"]["message"] == "User account is deactivated"

        assert client.post(f"/api/v1/users/{user_id}/activate", headers=_bearer(token)).status_code == 200
        login = client.post(
            "/api/v1/auth/login",
            json={"email_or_phone": "toggle@example.com", "password": PASSWORD, "device_id": "d1"},
        )
        assert login.status_code == 200

    def test_role_administration_reaches_tokens(self, api_client: tuple[TestClient, str, str]) -> None:
        """Create role + permission, grant, assign: the next refresh carries the new claims."""
        client, token, _uid = api_client
        headers = _bearer(token)
        data = _register(client, "editor@example.com")

        assert client.post("/api/v1/roles", json={"name": "Editor"}, headers=headers).status_code == 201
        assert client.post("/api/v1/roles", json={"name": "Editor"}, headers=headers).status_code == 409
        perm = client.post(
            "/api/v1/permissions",
            json={"name": "posts.write", "resource": "posts", "action": "write"},
            headers=headers,
        )
        assert perm.status_code == 201
        assert client.put("/api/v1/roles/Editor/permissions/posts.write", json={}, headers=headers).status_code == 200
        assert (
            client.put(f"/api/v1/users/{data['user']['id']}/roles/Editor", json={}, headers=headers).status_code
            == 200
        )

        names = [r["name"] for r in client.get("/api/v1/roles", headers=headers).json()]
        assert "Editor" in names

        rotated = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": data["refresh_token"], "device_id": "d1"},
        ).json()
        me = client.get("/api/v1/auth/me", headers=_bearer(rotated["access_token"])).json()
        assert me["roles"] == ["Editor", "User"]
        assert me["permissions"] == ["posts.write"]
