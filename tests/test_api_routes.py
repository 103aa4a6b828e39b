"""
tests/test_api_routes.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> auth dependency
injection -> AuthGate / RegistrationService -> stores -> response model
serialization and the shared error envelope.

Fixtures used (from conftest.py):
  - api: ApiHarness with a TestClient, the RecordingMailer, the FakeClock and
    three seeded accounts (root, admin, member) sharing DEFAULT_PASSWORD.
"""

from __future__ import annotations

from tests.conftest import DEFAULT_PASSWORD, ApiHarness

SIGNUP = "/api/v1/auth/signup"
VERIFY = "/api/v1/auth/verify-email"
LOGIN = "/api/v1/auth/login"
LOGOUT = "/api/v1/auth/logout"
ME = "/api/v1/auth/me"
USERS = "/api/v1/auth/users"
SET_ADMIN = "/api/v1/auth/set-admin"


class TestRegistrationFlow:
    def test_signup_verify_login_me(self, api: ApiHarness) -> None:
        """A new account goes from signup through verification to an authenticated /me."""
        client = api.client
        resp = client.post(SIGNUP, json={"name": "alice", "email": "Alice@Example.com", "password": "hunter2hunter2"})
        assert resp.status_code == 201, resp.text
        assert "30 minutes" in resp.json()["message"]

        assert len(api.mailer.sent) == 1
        assert api.mailer.sent[0].recipients == ["alice@example.com"]
        token = api.mailer.last_token()

        # Not a user until verified.
        resp = client.post(LOGIN, json={"identifier": "alice", "password": "hunter2hunter2"})
        assert resp.status_code == 401

        resp = client.get(VERIFY, params={"token": token})
        assert resp.status_code == 200, resp.text
        assert resp.json()["user"]["name"] == "alice"
        assert resp.json()["user"]["role"] == "user"

        resp = client.post(LOGIN, json={"identifier": "alice@example.com", "password": "hunter2hunter2"})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["capabilities"] == ["read"]
        assert "password_hash" not in body["user"]
        client.cookies.clear()

        resp = client.get(ME, headers=api.bearer(body["access_token"]))
        assert resp.status_code == 200
        assert resp.json()["email"] == "alice@example.com"

    def test_bad_login_responses_are_identical(self, api: ApiHarness) -> None:
        wrong = api.client.post(LOGIN, json={"identifier": "member", "password": "wrong-password-x"})
        unknown = api.client.post(LOGIN, json={"identifier": "bob", "password": DEFAULT_PASSWORD})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "bad_credentials"

    def test_signup_validation_names_field(self, api: ApiHarness) -> None:
        resp = api.client.post(SIGNUP, json={"name": "Alice!", "email": "a@example.com", "password": "hunter2hunter2"})
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "validation_failed"
        assert error["field"] == "name"
        assert api.mailer.sent == []

    def test_signup_conflicts(self, api: ApiHarness) -> None:
        resp = api.client.post(SIGNUP, json={"name": "member", "email": "x@example.com", "password": "hunter2hunter2"})
        assert resp.status_code == 409

        first = {"name": "dave", "email": "dave@example.com", "password": "hunter2hunter2"}
        assert api.client.post(SIGNUP, json=first).status_code == 201
        again = {"name": "dave", "email": "dave2@example.com", "password": "hunter2hunter2"}
        resp = api.client.post(SIGNUP, json=again)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_signup_succeeds_when_mail_fails(self, api: ApiHarness) -> None:
        api.mailer.fail = True
        resp = api.client.post(SIGNUP, json={"name": "erin", "email": "erin@example.com", "password": "hunter2hunter2"})
        assert resp.status_code == 201

    def test_verify_twice_and_unknown_tokens(self, api: ApiHarness) -> None:
        api.client.post(SIGNUP, json={"name": "frank", "email": "frank@example.com", "password": "hunter2hunter2"})
        token = api.mailer.last_token()
        assert api.client.get(VERIFY, params={"token": token}).status_code == 200

        again = api.client.get(VERIFY, params={"token": token})
        unknown = api.client.get(VERIFY, params={"token": "never-issued"})
        missing = api.client.get(VERIFY)
        assert again.status_code == unknown.status_code == missing.status_code == 404
        assert again.json() == unknown.json()

    def test_overlong_token_looks_like_unknown_token(self, api: ApiHarness) -> None:
        unknown = api.client.get(VERIFY, params={"token": "never-issued"})
        overlong = api.client.get(VERIFY, params={"token": "x" * 2048})
        assert overlong.status_code == unknown.status_code == 404
        assert overlong.json() == unknown.json()

    def test_expired_link(self, api: ApiHarness) -> None:
        api.client.post(SIGNUP, json={"name": "gina", "email": "gina@example.com", "password": "hunter2hunter2"})
        token = api.mailer.last_token()
        api.clock.advance(minutes=31)
        assert api.client.get(VERIFY, params={"token": token}).status_code == 404

    def test_verify_conflict_when_slot_taken(self, api: ApiHarness) -> None:
        from tests.conftest import make_user

        api.client.post(SIGNUP, json={"name": "hank", "email": "hank@example.com", "password": "hunter2hunter2"})
        token = api.mailer.last_token()
        make_user(api.users, "hank", "other-hank@example.com")
        resp = api.client.get(VERIFY, params={"token": token})
        assert resp.status_code == 409
        assert api.client.get(VERIFY, params={"token": token}).status_code == 404


class TestSessions:
    def test_me_requires_auth(self, api: ApiHarness) -> None:
        resp = api.client.get(ME)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"
        assert api.client.get(ME, headers=api.bearer("bogus")).status_code == 401

    def test_cookie_session(self, api: ApiHarness) -> None:
        resp = api.client.post(LOGIN, json={"identifier": "member", "password": DEFAULT_PASSWORD})
        assert resp.cookies.get("session") == resp.json()["access_token"]
        assert api.client.get(ME).json()["name"] == "member"

    def test_logout_invalidates_session(self, api: ApiHarness) -> None:
        token = api.login("member")
        resp = api.client.post(LOGOUT, headers=api.bearer(token))
        assert resp.status_code == 200
        assert api.client.get(ME, headers=api.bearer(token)).status_code == 401
        # Logging out again, or without a session, still succeeds.
        assert api.client.post(LOGOUT, headers=api.bearer(token)).status_code == 200
        assert api.client.post(LOGOUT).status_code == 200

    def test_expired_session(self, api: ApiHarness) -> None:
        token = api.login("member")
        api.clock.advance(days=7)
        assert api.client.get(ME, headers=api.bearer(token)).status_code == 401

    def test_login_body_validation(self, api: ApiHarness) -> None:
        resp = api.client.post(LOGIN, json={"identifier": "", "password": "x"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestUserManagement:
    def test_root_lists_everyone_in_order(self, api: ApiHarness) -> None:
        resp = api.client.get(USERS, headers=api.bearer(api.login("root")))
        assert resp.status_code == 200
        assert [u["name"] for u in resp.json()] == ["root", "admin", "member"]
        assert resp.json()[0]["role"] == "root"

    def test_admin_list_hides_root(self, api: ApiHarness) -> None:
        resp = api.client.get(USERS, headers=api.bearer(api.login("admin")))
        assert [u["name"] for u in resp.json()] == ["admin", "member"]

    def test_capability_filter(self, api: ApiHarness) -> None:
        headers = api.bearer(api.login("root"))
        resp = api.client.get(USERS, params={"capability": "manage_users"}, headers=headers)
        assert [u["name"] for u in resp.json()] == ["root", "admin"]

        resp = api.client.get(USERS, params={"capability": "read,telepathy"}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["field"] == "capability"

    def test_member_cannot_list(self, api: ApiHarness) -> None:
        resp = api.client.get(USERS, headers=api.bearer(api.login("member")))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_root_grants_and_revokes_admin(self, api: ApiHarness) -> None:
        headers = api.bearer(api.login("root"))
        resp = api.client.post(SET_ADMIN, json={"name": "member"}, headers=headers)
        assert resp.status_code == 200, resp.text
        assert resp.json()["user"]["role"] == "admin"

        resp = api.client.post(SET_ADMIN, json={"id": api.member.id, "revoke": True}, headers=headers)
        assert resp.json()["user"]["role"] == "user"
        assert resp.json()["user"]["permissions"] == 1

    def test_set_admin_guards(self, api: ApiHarness) -> None:
        admin_headers = api.bearer(api.login("admin"))
        root_headers = api.bearer(api.login("root"))
        assert api.client.post(SET_ADMIN, json={"name": "member"}, headers=admin_headers).status_code == 403
        assert api.client.post(SET_ADMIN, json={"name": "root"}, headers=root_headers).status_code == 403
        assert api.client.post(SET_ADMIN, json={"email": "nobody@example.com"}, headers=root_headers).status_code == 404
        assert api.client.post(SET_ADMIN, json={}, headers=root_headers).status_code == 422

    def test_admin_deletes_member(self, api: ApiHarness) -> None:
        member_token = api.login("member")
        resp = api.client.delete(f"{USERS}/{api.member.id}", headers=api.bearer(api.login("admin")))
        assert resp.status_code == 200
        assert api.client.get(ME, headers=api.bearer(member_token)).status_code == 401
        assert api.users.get_by_id(api.member.id) is None

    def test_delete_guards(self, api: ApiHarness) -> None:
        admin_headers = api.bearer(api.login("admin"))
        root_headers = api.bearer(api.login("root"))
        member_headers = api.bearer(api.login("member"))
        assert api.client.delete(f"{USERS}/{api.admin.id}", headers=member_headers).status_code == 403
        assert api.client.delete(f"{USERS}/{api.admin.id}", headers=admin_headers).status_code == 403
        assert api.client.delete(f"{USERS}/{api.root.id}", headers=admin_headers).status_code == 403
        assert api.client.delete(f"{USERS}/9999", headers=admin_headers).status_code == 404
        assert api.client.delete(f"{USERS}/{api.admin.id}", headers=root_headers).status_code == 200
