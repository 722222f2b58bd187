"""
Tests for authentication flows: signup, login, lockout and CAPTCHA,
server-side sessions, two-factor enrolment and password reset.

Run with: pytest tests/test_auth.py -v
"""
from __future__ import annotations

from datetime import timedelta

import pyotp
import pytest
from sqlalchemy import select

from app.auth import routes_auth
from app.auth.core import make_legacy_hash
from app.config import settings
from app.database import db_session, utcnow
from app.models import AdminSession, User


def _login(client, email, password, ip=None, **extra):
    headers = {"X-Forwarded-For": ip} if ip else {}
    return client.post("/auth/login", json={"email": email, "password": password, **extra}, headers=headers)


# ---------------------------------------------------------------------------
# Signup / login
# ---------------------------------------------------------------------------

class TestSignupAndLogin:
    def test_signup_returns_token_for_plain_user(self, client, make_user):
        user = make_user()
        resp = client.get("/auth/me", headers=user["headers"])
        assert resp.status_code == 200
        body = resp.json()
        assert body["email"] == user["email"]
        assert body["role"] == "user"
        assert body["permissions"] == []
        assert body["admin"]["is_admin"] is False

    def test_duplicate_signup_is_409(self, client, make_user):
        user = make_user()
        resp = client.post("/auth/signup", json={
            "email": user["email"].upper(),
            "password": "another-password",
            "display_name": "Dup",
        })
        assert resp.status_code == 409

    def test_short_password_rejected(self, client):
        resp = client.post("/auth/signup", json={
            "email": "short@ecosystem40.com", "password": "123", "display_name": "Short",
        })
        assert resp.status_code == 422

    def test_login_success(self, client, make_user):
        user = make_user()
        resp = _login(client, user["email"], user["password"])
        assert resp.status_code == 200
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["user_id"] == user["id"]
        assert body["expires_in"] == settings.jwt_expire_minutes * 60

    def test_login_updates_counters(self, client, make_user):
        user = make_user()
        _login(client, user["email"], user["password"])
        _login(client, user["email"], user["password"])
        with db_session() as session:
            row = session.get(User, user["id"])
            assert row.login_count == 2
            assert row.last_login_at is not None

    def test_wrong_password_is_401(self, client, make_user):
        user = make_user()
        resp = _login(client, user["email"], "wrong-password")
        assert resp.status_code == 401
        detail = resp.json()["detail"]
        assert detail["message"] == "Invalid credentials."
        assert detail["captcha_required"] is False

    def test_unknown_email_is_401(self, client):
        resp = _login(client, "ghost@ecosystem40.com", "whatever-password")
        assert resp.status_code == 401

    def test_inactive_user_cannot_login(self, client, make_user):
        user = make_user()
        with db_session() as session:
            session.get(User, user["id"]).is_active = False
        assert _login(client, user["email"], user["password"]).status_code == 401

    def test_legacy_hash_upgraded_on_login(self, client, make_user):
        user = make_user()
        with db_session() as session:
            session.get(User, user["id"]).password_hash = make_legacy_hash("legacy-pass-1", "s4lt")
        assert _login(client, user["email"], "legacy-pass-1").status_code == 200
        with db_session() as session:
            assert session.get(User, user["id"]).password_hash.startswith("$2")


# ---------------------------------------------------------------------------
# Lockout / CAPTCHA
# ---------------------------------------------------------------------------

class TestLockout:
    IP = "192.0.2.50"

    def test_third_failure_requires_captcha(self, client, make_user):
        user = make_user()
        r1 = _login(client, user["email"], "bad-1", ip=self.IP)
        r2 = _login(client, user["email"], "bad-2", ip=self.IP)
        r3 = _login(client, user["email"], "bad-3", ip=self.IP)
        assert r1.json()["detail"]["captcha_required"] is False
        assert r2.json()["detail"]["captcha_required"] is False
        assert r3.json()["detail"]["captcha_required"] is True

    def test_locked_ip_gets_423_even_with_correct_password(self, client, make_user):
        user = make_user()
        for _ in range(3):
            _login(client, user["email"], "bad", ip=self.IP)
        resp = _login(client, user["email"], user["password"], ip=self.IP)
        assert resp.status_code == 423
        detail = resp.json()["detail"]
        assert detail["captcha_required"] is True
        assert 0 < detail["retry_after"] <= settings.lockout_minutes * 60 + 1
        assert int(resp.headers["Retry-After"]) == detail["retry_after"]

    def test_lockout_is_per_ip(self, client, make_user):
        user = make_user()
        for _ in range(3):
            _login(client, user["email"], "bad", ip=self.IP)
        assert _login(client, user["email"], user["password"], ip="192.0.2.51").status_code == 200

    def test_captcha_status_endpoint(self, client, make_user):
        user = make_user()
        headers = {"X-Forwarded-For": self.IP}
        assert client.get("/auth/captcha-status", headers=headers).json() == {
            "captcha_required": False, "locked": False, "retry_after": 0,
        }
        for _ in range(3):
            _login(client, user["email"], "bad", ip=self.IP)
        status = client.get("/auth/captcha-status", headers=headers).json()
        assert status["captcha_required"] is True
        assert status["locked"] is True
        assert status["retry_after"] > 0

    def test_login_history_lists_own_attempts(self, client, make_user):
        user = make_user()
        _login(client, user["email"], "bad", ip="192.0.2.60")
        _login(client, user["email"], user["password"], ip="192.0.2.60")
        resp = client.get("/auth/login-history", headers=user["headers"])
        assert resp.status_code == 200
        history = resp.json()
        assert [h["success"] for h in history] == [True, False]
        assert history[0]["ip"] == "192.0.2.60"


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

class TestSessions:
    def test_missing_token_is_401(self, client):
        assert client.get("/auth/me").status_code == 401

    def test_garbage_token_is_401(self, client):
        resp = client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_logout_ends_session(self, client, make_user):
        user = make_user()
        assert client.post("/auth/logout", headers=user["headers"]).status_code == 204
        assert client.get("/auth/me", headers=user["headers"]).status_code == 401

    def test_idle_session_expires(self, client, make_user):
        user = make_user()
        with db_session() as session:
            row = session.execute(
                select(AdminSession).where(AdminSession.user_id == user["id"])
            ).scalar_one()
            row.last_activity = utcnow() - timedelta(minutes=settings.session_timeout_minutes + 1)
            sid = row.session_id
        resp = client.get("/auth/me", headers=user["headers"])
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Session expired."
        with db_session() as session:
            assert session.get(AdminSession, sid).is_active is False

    def test_activity_refreshes_session(self, client, make_user):
        user = make_user()
        stale = utcnow() - timedelta(minutes=10)
        with db_session() as session:
            row = session.execute(
                select(AdminSession).where(AdminSession.user_id == user["id"])
            ).scalar_one()
            row.last_activity = stale
            sid = row.session_id
        assert client.get("/auth/me", headers=user["headers"]).status_code == 200
        with db_session() as session:
            assert session.get(AdminSession, sid).last_activity > stale

    def test_invalidate_all_sessions(self, client, make_user):
        user = make_user()
        second = _login(client, user["email"], user["password"]).json()["access_token"]
        resp = client.post("/auth/sessions/invalidate-all", headers=user["headers"])
        assert resp.status_code == 200
        assert resp.json()["invalidated"] == 2
        assert client.get("/auth/me", headers={"Authorization": f"Bearer {second}"}).status_code == 401


# ---------------------------------------------------------------------------
# Two-factor
# ---------------------------------------------------------------------------

def _enrol(client, user) -> dict:
    setup = client.post("/auth/2fa/setup", headers=user["headers"])
    assert setup.status_code == 200, setup.text
    data = setup.json()
    code = pyotp.TOTP(data["secret"]).now()
    verify = client.post("/auth/2fa/verify", json={"code": code}, headers=user["headers"])
    assert verify.status_code == 200, verify.text
    assert verify.json() == {"two_factor_enabled": True}
    return data


class TestTwoFactor:
    def test_setup_returns_secret_qr_and_backup_codes(self, client, make_user):
        user = make_user()
        resp = client.post("/auth/2fa/setup", headers=user["headers"])
        assert resp.status_code == 200
        data = resp.json()
        assert data["qr_code"].startswith("data:image/svg+xml;base64,")
        assert len(data["backup_codes"]) == 10
        # Not enabled until verified
        assert client.get("/auth/me", headers=user["headers"]).json()["two_factor_enabled"] is False

    def test_verify_rejects_wrong_code(self, client, make_user):
        user = make_user()
        client.post("/auth/2fa/setup", headers=user["headers"])
        resp = client.post("/auth/2fa/verify", json={"code": "abcdef"}, headers=user["headers"])
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid two-factor code."

    def test_verify_without_setup_is_400(self, client, make_user):
        user = make_user()
        resp = client.post("/auth/2fa/verify", json={"code": "123456"}, headers=user["headers"])
        assert resp.status_code == 400

    def test_setup_twice_after_enabling_is_409(self, client, make_user):
        user = make_user()
        _enrol(client, user)
        assert client.post("/auth/2fa/setup", headers=user["headers"]).status_code == 409

    def test_login_requires_second_factor(self, client, make_user):
        user = make_user()
        _enrol(client, user)
        resp = _login(client, user["email"], user["password"])
        assert resp.status_code == 401
        assert resp.json()["detail"]["two_factor_required"] is True

    def test_login_with_totp(self, client, make_user):
        user = make_user()
        data = _enrol(client, user)
        resp = _login(client, user["email"], user["password"], totp_code=pyotp.TOTP(data["secret"]).now())
        assert resp.status_code == 200

    def test_backup_code_works_once(self, client, make_user):
        user = make_user()
        data = _enrol(client, user)
        code = data["backup_codes"][0]
        ip = "192.0.2.70"
        assert _login(client, user["email"], user["password"], ip=ip, backup_code=code).status_code == 200
        reused = _login(client, user["email"], user["password"], ip=ip, backup_code=code)
        assert reused.status_code == 401
        assert reused.json()["detail"]["message"] == "Invalid two-factor code."

    def test_disable_with_backup_code(self, client, make_user):
        user = make_user()
        data = _enrol(client, user)
        resp = client.post("/auth/2fa/disable", json={"code": data["backup_codes"][1]}, headers=user["headers"])
        assert resp.status_code == 200
        assert resp.json() == {"two_factor_enabled": False}
        assert _login(client, user["email"], user["password"]).status_code == 200

    def test_disable_when_not_enabled_is_400(self, client, make_user):
        user = make_user()
        resp = client.post("/auth/2fa/disable", json={"code": "123456"}, headers=user["headers"])
        assert resp.status_code == 400

    def test_verify_is_throttled(self, client, make_user):
        user = make_user()
        client.post("/auth/2fa/setup", headers=user["headers"])
        statuses = [
            client.post("/auth/2fa/verify", json={"code": "abcdef"}, headers=user["headers"]).status_code
            for _ in range(6)
        ]
        assert statuses[:5] == [400] * 5
        assert statuses[5] == 429


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------

@pytest.fixture
def sent_codes(monkeypatch):
    sent = {}

    def _capture(to_addr, code):
        sent[to_addr] = code
        return True

    monkeypatch.setattr(routes_auth, "send_reset_code", _capture)
    return sent


class TestPasswordReset:
    def test_unknown_email_gets_same_response(self, client, sent_codes):
        resp = client.post("/auth/forgot-password", json={"email": "ghost@ecosystem40.com"})
        assert resp.status_code == 202
        assert "If an account exists" in resp.json()["message"]
        assert sent_codes == {}

    def test_full_reset_flow(self, client, make_user, sent_codes):
        user = make_user()
        assert client.post("/auth/forgot-password", json={"email": user["email"]}).status_code == 202
        code = sent_codes[user["email"]]
        assert len(code) == 6 and code.isdigit()

        resp = client.post("/auth/reset-password", json={
            "email": user["email"], "code": code, "new_password": "brand-new-password",
        })
        assert resp.status_code == 200

        # Old sessions are signed out, old password no longer works
        assert client.get("/auth/me", headers=user["headers"]).status_code == 401
        assert _login(client, user["email"], user["password"], ip="192.0.2.80").status_code == 401
        assert _login(client, user["email"], "brand-new-password", ip="192.0.2.81").status_code == 200

    def test_code_is_single_use(self, client, make_user, sent_codes):
        user = make_user()
        client.post("/auth/forgot-password", json={"email": user["email"]})
        code = sent_codes[user["email"]]
        payload = {"email": user["email"], "code": code, "new_password": "brand-new-password"}
        assert client.post("/auth/reset-password", json=payload).status_code == 200
        resp = client.post("/auth/reset-password", json=payload)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid or expired reset code."

    def test_only_newest_code_is_valid(self, client, make_user, sent_codes):
        user = make_user()
        client.post("/auth/forgot-password", json={"email": user["email"]})
        first = sent_codes[user["email"]]
        client.post("/auth/forgot-password", json={"email": user["email"]})
        second = sent_codes[user["email"]]
        if first != second:
            resp = client.post("/auth/reset-password", json={
                "email": user["email"], "code": first, "new_password": "brand-new-password",
            })
            assert resp.status_code == 400
        resp = client.post("/auth/reset-password", json={
            "email": user["email"], "code": second, "new_password": "brand-new-password",
        })
        assert resp.status_code == 200

    def test_expired_code_rejected(self, client, make_user, sent_codes, monkeypatch):
        user = make_user()
        monkeypatch.setattr(settings, "otp_expiry_minutes", -1)
        client.post("/auth/forgot-password", json={"email": user["email"]})
        resp = client.post("/auth/reset-password", json={
            "email": user["email"], "code": sent_codes[user["email"]], "new_password": "brand-new-password",
        })
        assert resp.status_code == 400
