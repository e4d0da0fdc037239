"""
tests/test_api_routes.py -- Integration tests for the account REST routes.

These tests exercise the full stack: FastAPI routing -> auth dependency
injection -> AuthService -> CredentialStore -> response model serialization,
plus the AppError handler that turns service failures into the error envelope.

Fixtures used (from conftest.py):
  - api_client: (client, admin_token, admin_id, service)
    The admin account is admin@kindiyo.com / adminpass123.

Cookies set by one request would otherwise ride along on the next, so every
test starts from an empty cookie jar and uses explicit Bearer headers.
"""

from __future__ import annotations

import base64

import pytest
from fastapi.testclient import TestClient

from auth.sessions import SESSION_COOKIE


@pytest.fixture(autouse=True)
def _fresh_cookies(api_client) -> None:
    client, *_ = api_client
    client.cookies.clear()


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _register(client: TestClient, email: str, password: str = "Secret123", name: str = "Test Shopper") -> dict:
    resp = client.post("/api/v1/register", json={"name": name, "email": email, "password": password})
    assert resp.status_code == 201, resp.text
    client.cookies.clear()
    return resp.json()


class TestRegisterAndLogin:
    def test_register_sets_cookie_and_returns_user(self, api_client) -> None:
        client, *_ = api_client
        resp = client.post(
            "/api/v1/register",
            json={"name": "Alice Wonder", "email": "alice@example.com", "password": "Secret123"},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["success"] is True
        assert data["user"]["email"] == "alice@example.com"
        assert data["user"]["role"] == "user"
        assert "password" not in str(data["user"]).lower()
        assert resp.cookies.get(SESSION_COOKIE) == data["token"]
        assert resp.headers["Cache-Control"] == "no-store"

    def test_register_with_avatar(self, api_client) -> None:
        client, *_ = api_client
        avatar = "data:image/png;base64," + base64.b64encode(b"\x89PNGfake").decode()
        resp = client.post(
            "/api/v1/register",
            json={"name": "Avatar User", "email": "avatar@example.com", "password": "Secret123", "avatar": avatar},
        )
        assert resp.status_code == 201
        assert resp.json()["user"]["avatar"]["url"].startswith("/media/avatars/")

    def test_avatar_url_is_served(self, api_client) -> None:
        client, *_ = api_client
        content = b"\x89PNG\r\n\x1a\nserved-avatar"
        avatar = "data:image/png;base64," + base64.b64encode(content).decode()
        resp = client.post(
            "/api/v1/register",
            json={"name": "Served Avatar", "email": "served@example.com", "password": "Secret123", "avatar": avatar},
        )
        assert resp.status_code == 201

        image = client.get(resp.json()["user"]["avatar"]["url"])
        assert image.status_code == 200
        assert image.content == content

    def test_default_avatar_is_served(self, api_client) -> None:
        client, *_ = api_client
        data = _register(client, "noavatar@example.com")
        assert data["user"]["avatar"]["public_id"] == "default"

        image = client.get(data["user"]["avatar"]["url"])
        assert image.status_code == 200
        assert image.content.startswith(b"\x89PNG")

    def test_failed_registration_leaves_no_avatar_file(self, api_client) -> None:
        client, *_ = api_client
        upload_dir = client.app.state.avatar_host.upload_dir
        before = sorted(p.name for p in upload_dir.iterdir())
        avatar = "data:image/png;base64," + base64.b64encode(b"\x89PNGorphan").decode()

        resp = client.post(
            "/api/v1/register",
            json={"name": "Orphan Avatar", "email": "not-an-email", "password": "Secret123", "avatar": avatar},
        )
        assert resp.status_code == 400
        assert sorted(p.name for p in upload_dir.iterdir()) == before

    def test_oversized_avatar_rejected_before_decoding(self, api_client) -> None:
        client, *_ = api_client
        avatar = "data:image/png;base64," + "A" * (3 * 1024 * 1024)
        resp = client.post(
            "/api/v1/register",
            json={"name": "Huge Avatar", "email": "huge@example.com", "password": "Secret123", "avatar": avatar},
        )
        assert resp.status_code == 422

    def test_password_whitespace_is_kept(self, api_client) -> None:
        client, *_ = api_client
        _register(client, "spaces@example.com", password=" Secret123 ", name="  Spacey Shopper  ")

        resp = client.post("/api/v1/login", json={"email": "spaces@example.com", "password": " Secret123 "})
        assert resp.status_code == 200
        assert resp.json()["user"]["name"] == "Spacey Shopper"
        client.cookies.clear()

        resp = client.post("/api/v1/login", json={"email": "spaces@example.com", "password": "Secret123"})
        assert resp.status_code == 401

    def test_register_invalid_email(self, api_client) -> None:
        client, *_ = api_client
        resp = client.post("/api/v1/register", json={"name": "Bad Email", "email": "nope", "password": "Secret123"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_register_duplicate_email(self, api_client) -> None:
        client, *_ = api_client
        _register(client, "dupe@example.com")
        resp = client.post(
            "/api/v1/register", json={"name": "Dupe Again", "email": "dupe@example.com", "password": "Secret123"}
        )
        assert resp.status_code == 400

    def test_login_valid(self, api_client) -> None:
        client, *_ = api_client
        resp = client.post("/api/v1/login", json={"email": "admin@kindiyo.com", "password": "adminpass123"})
        assert resp.status_code == 200
        assert resp.json()["user"]["role"] == "admin"
        assert resp.cookies.get(SESSION_COOKIE)

    @pytest.mark.parametrize(
        "email, password",
        [("admin@kindiyo.com", "wrong"), ("nobody@example.com", "adminpass123")],
    )
    def test_login_failures_are_identical(self, api_client, email: str, password: str) -> None:
        client, *_ = api_client
        resp = client.post("/api/v1/login", json={"email": email, "password": password})
        assert resp.status_code == 401
        assert resp.json() == {
            "error": {"code": "bad_credentials", "message": "Invalid email or password", "detail": None}
        }

    def test_overlong_password_is_a_wrong_password(self, api_client) -> None:
        client, *_ = api_client
        resp = client.post("/api/v1/login", json={"email": "admin@kindiyo.com", "password": "x" * 200})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_login_missing_fields(self, api_client) -> None:
        client, *_ = api_client
        resp = client.post("/api/v1/login", json={"email": "admin@kindiyo.com"})
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Please Enter Email and Password"

    def test_logout_expires_cookie(self, api_client) -> None:
        client, *_ = api_client
        resp = client.get("/api/v1/logout")
        assert resp.status_code == 200
        assert resp.json()["message"] == "Logged Out Successfully"
        set_cookie = resp.headers["set-cookie"]
        assert set_cookie.startswith(f"{SESSION_COOKIE}=")
        assert "Max-Age=0" in set_cookie


class TestSessionAuth:
    def test_me_requires_auth(self, api_client) -> None:
        client, *_ = api_client
        resp = client.get("/api/v1/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_with_bearer(self, api_client) -> None:
        client, token, admin_id, _svc = api_client
        resp = client.get("/api/v1/me", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json()["user"]["id"] == admin_id

    def test_me_with_cookie(self, api_client) -> None:
        client, *_ = api_client
        data = _register(client, "cookie@example.com")
        client.cookies.set(SESSION_COOKIE, data["token"])
        resp = client.get("/api/v1/me")
        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == "cookie@example.com"

    def test_tampered_token_rejected(self, api_client) -> None:
        client, token, *_ = api_client
        resp = client.get("/api/v1/me", headers=_bearer(token[:-2] + "xx"))
        assert resp.status_code == 401


class TestPasswordRoutes:
    def test_forgot_reset_flow(self, api_client) -> None:
        client, _token, _admin_id, svc = api_client
        _register(client, "reset@example.com")

        resp = client.post("/api/v1/password/forgot", json={"email": "reset@example.com"})
        assert resp.status_code == 200
        assert resp.json()["message"] == "Email sent to reset@example.com successfully"
        message = svc.mailer.sent[-1]
        assert "http://localhost/api/v1/password/reset/" in message.body
        raw_token = svc.mailer.last_reset_token()

        resp = client.put(
            f"/api/v1/password/reset/{raw_token}",
            json={"password": "abc12345", "confirmPassword": "abc99999"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Passwords not matched"

        resp = client.put(
            f"/api/v1/password/reset/{raw_token}",
            json={"password": "abc12345", "confirmPassword": "abc12345"},
        )
        assert resp.status_code == 200
        assert resp.cookies.get(SESSION_COOKIE)
        client.cookies.clear()

        resp = client.put(
            f"/api/v1/password/reset/{raw_token}",
            json={"password": "abc12345", "confirmPassword": "abc12345"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_reset_token"

        resp = client.post("/api/v1/login", json={"email": "reset@example.com", "password": "abc12345"})
        assert resp.status_code == 200

    def test_forgot_unknown_email(self, api_client) -> None:
        client, *_ = api_client
        resp = client.post("/api/v1/password/forgot", json={"email": "nobody@example.com"})
        assert resp.status_code == 404

    def test_forgot_mail_failure_is_500_without_detail(self, api_client) -> None:
        client, _token, _admin_id, svc = api_client
        _register(client, "mailfail@example.com")
        svc.mailer.fail = True
        try:
            resp = client.post("/api/v1/password/forgot", json={"email": "mailfail@example.com"})
        finally:
            svc.mailer.fail = False
        assert resp.status_code == 500
        assert resp.json()["error"] == {
            "code": "internal_error",
            "message": "An unexpected error occurred.",
            "detail": None,
        }
        user = svc.store.find_by_email("mailfail@example.com")
        assert user.reset_password_token_hash is None
        assert user.reset_password_expire is None

    def test_update_password(self, api_client) -> None:
        client, *_ = api_client
        data = _register(client, "changer@example.com")
        headers = _bearer(data["token"])

        resp = client.put(
            "/api/v1/password/update",
            json={"oldPassword": "wrong-one", "newPassword": "Changed123", "confirmPassword": "Changed123"},
            headers=headers,
        )
        assert resp.status_code == 401

        resp = client.put(
            "/api/v1/password/update",
            json={"oldPassword": "Secret123", "newPassword": "Changed123", "confirmPassword": "Changed123"},
            headers=headers,
        )
        assert resp.status_code == 200
        client.cookies.clear()

        resp = client.post("/api/v1/login", json={"email": "changer@example.com", "password": "Changed123"})
        assert resp.status_code == 200

    def test_update_profile(self, api_client) -> None:
        client, *_ = api_client
        data = _register(client, "profile@example.com")
        resp = client.put("/api/v1/me/update", json={"name": "Renamed Shopper"}, headers=_bearer(data["token"]))
        assert resp.status_code == 200
        assert resp.json()["user"]["name"] == "Renamed Shopper"
        assert resp.json()["user"]["email"] == "profile@example.com"


class TestAdminRoutes:
    def test_non_admin_forbidden(self, api_client) -> None:
        client, *_ = api_client
        data = _register(client, "shopper@example.com")
        resp = client.get("/api/v1/admin/users", headers=_bearer(data["token"]))
        assert resp.status_code == 403

    def test_list_users(self, api_client) -> None:
        client, token, *_ = api_client
        resp = client.get("/api/v1/admin/users", headers=_bearer(token))
        assert resp.status_code == 200
        emails = [u["email"] for u in resp.json()["users"]]
        assert "admin@kindiyo.com" in emails

    def test_get_user_not_found(self, api_client) -> None:
        client, token, *_ = api_client
        resp = client.get("/api/v1/admin/user/does-not-exist", headers=_bearer(token))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_update_role_and_delete(self, api_client) -> None:
        client, token, *_ = api_client
        user_id = _register(client, "promote@example.com")["user"]["id"]

        resp = client.put(f"/api/v1/admin/user/{user_id}", json={"role": "admin"}, headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json()["user"]["role"] == "admin"

        resp = client.delete(f"/api/v1/admin/user/{user_id}", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json()["message"] == "User Deleted Successfully"

        resp = client.delete(f"/api/v1/admin/user/{user_id}", headers=_bearer(token))
        assert resp.status_code == 404

    def test_update_with_no_fields(self, api_client) -> None:
        client, token, admin_id, _svc = api_client
        resp = client.put(f"/api/v1/admin/user/{admin_id}", json={}, headers=_bearer(token))
        assert resp.status_code == 400

    def test_cannot_demote_last_admin(self, api_client) -> None:
        client, token, admin_id, _svc = api_client
        resp = client.put(f"/api/v1/admin/user/{admin_id}", json={"role": "user"}, headers=_bearer(token))
        assert resp.status_code == 400

    def test_cannot_delete_self(self, api_client) -> None:
        client, token, admin_id, _svc = api_client
        resp = client.delete(f"/api/v1/admin/user/{admin_id}", headers=_bearer(token))
        assert resp.status_code == 400
