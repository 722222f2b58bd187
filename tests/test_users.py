"""
Tests for user administration: listing, edits, soft delete and promotion.

Run with: pytest tests/test_users.py -v
"""
from __future__ import annotations

from app.database import db_session
from app.models import User


class TestListUsers:
    def test_requires_admin(self, client, make_user):
        user = make_user()
        assert client.get("/users").status_code == 401
        assert client.get("/users", headers=user["headers"]).status_code == 403

    def test_filter_and_search(self, client, admin_headers, make_user):
        user = make_user(display_name="Findable Person")
        resp = client.get("/users", params={"search": "findable"}, headers=admin_headers)
        assert resp.status_code == 200
        assert [u["id"] for u in resp.json()["users"]] == [user["id"]]

        supers = client.get("/users", params={"role": "super_admin"}, headers=admin_headers).json()["users"]
        assert all(u["role"] == "super_admin" for u in supers)
        assert supers

    def test_status_filter(self, client, admin_headers, make_user):
        user = make_user()
        client.delete(f"/users/{user['id']}", headers=admin_headers)
        inactive = client.get("/users", params={"status": "inactive", "limit": 100}, headers=admin_headers).json()
        assert user["id"] in [u["id"] for u in inactive["users"]]

    def test_get_user(self, client, admin_headers, make_user):
        user = make_user()
        resp = client.get(f"/users/{user['id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["email"] == user["email"]
        assert "password_hash" not in resp.json()

    def test_get_user_bad_id(self, client, admin_headers):
        assert client.get("/users/abc", headers=admin_headers).status_code == 400
        assert client.get("/users/999999", headers=admin_headers).status_code == 404


class TestUpdateUsers:
    def test_edit_profile_fields(self, client, admin_headers, make_user):
        user = make_user()
        resp = client.put(f"/users/{user['id']}", json={"bio": "Tree hugger", "location": "Accra"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["user"]["bio"] == "Tree hugger"

    def test_role_change_resets_permissions(self, client, admin_headers, make_user):
        user = make_user()
        resp = client.put(f"/users/{user['id']}", json={"role": "admin"}, headers=admin_headers)
        assert resp.status_code == 200
        promoted = resp.json()["user"]
        assert promoted["role"] == "admin"
        assert "manage_projects" in promoted["permissions"]
        assert "manage_admins" not in promoted["permissions"]

    def test_plain_admin_cannot_change_roles(self, client, make_admin, make_user):
        admin = make_admin("admin")
        target = make_user()
        resp = client.put(f"/users/{target['id']}", json={"role": "admin"}, headers=admin["headers"])
        assert resp.status_code == 403

    def test_plain_admin_cannot_edit_other_admins(self, client, make_admin):
        admin = make_admin("admin")
        other = make_admin("admin")
        resp = client.put(f"/users/{other['id']}", json={"bio": "hijacked"}, headers=admin["headers"])
        assert resp.status_code == 403

    def test_deactivation_ends_sessions(self, client, admin_headers, make_user):
        user = make_user()
        resp = client.put(f"/users/{user['id']}", json={"is_active": False}, headers=admin_headers)
        assert resp.status_code == 200
        assert client.get("/auth/me", headers=user["headers"]).status_code == 401


class TestDeleteUsers:
    def test_soft_delete(self, client, admin_headers, make_user):
        user = make_user()
        resp = client.delete(f"/users/{user['id']}", headers=admin_headers)
        assert resp.status_code == 200
        with db_session() as session:
            row = session.get(User, user["id"])
            assert row is not None
            assert row.is_active is False
        assert client.get("/auth/me", headers=user["headers"]).status_code == 401

    def test_cannot_delete_self(self, client, admin_headers):
        me = client.get("/auth/me", headers=admin_headers).json()
        resp = client.delete(f"/users/{me['id']}", headers=admin_headers)
        assert resp.status_code == 400


class TestPromotion:
    def test_super_admin_promotes(self, client, admin_headers, make_user):
        user = make_user()
        resp = client.post(f"/users/{user['id']}/promote", json={"role": "admin"}, headers=admin_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["user"]["role"] == "admin"
        assert body["admin"]["is_admin"] is True
        assert body["admin"]["is_super_admin"] is False
        with db_session() as session:
            row = session.get(User, user["id"])
            assert row.promoted_by is not None
            assert row.promoted_at is not None

    def test_promotion_takes_effect_on_existing_token(self, client, make_admin):
        admin = make_admin("admin")
        me = client.get("/auth/me", headers=admin["headers"]).json()
        assert me["admin"]["is_admin"] is True
        assert client.get("/admin/stats", headers=admin["headers"]).status_code == 200

    def test_admin_cannot_promote(self, client, make_admin, make_user):
        admin = make_admin("admin")
        user = make_user()
        resp = client.post(f"/users/{user['id']}/promote", json={"role": "admin"}, headers=admin["headers"])
        assert resp.status_code == 403

    def test_invalid_role_is_422(self, client, admin_headers, make_user):
        user = make_user()
        resp = client.post(f"/users/{user['id']}/promote", json={"role": "overlord"}, headers=admin_headers)
        assert resp.status_code == 422
