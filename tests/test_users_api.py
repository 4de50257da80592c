"""
tests/test_users_api.py -- Integration tests for /api/v1/users/*.

Covers:
  - Admin-only listing, lookup, update, delete (403 for other roles)
  - Vendor onboarding emails an OTP with a temporary password
  - Self-service profile and password changes
  - [M4] Admin self-protection: no self-deactivate, self-demote or self-delete
"""

from __future__ import annotations

from auth.models import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_VENDOR
from core.mailer import PURPOSE_VENDOR
from tests.helpers import PASSWORD, unique_email


class TestAdminAccess:
    def test_list_users_admin_only(self, api) -> None:
        _, admin_token = api.make_user(role=ROLE_ADMIN)
        _, customer_token = api.make_user()
        resp = api.client.get("/api/v1/users", headers=api.bearer(admin_token))
        assert resp.status_code == 200
        body = resp.json()
        assert body["count"] == len(body["data"]["users"]) >= 2

        denied = api.client.get("/api/v1/users", headers=api.bearer(customer_token))
        assert denied.status_code == 403
        assert denied.json()["message"] == "User role customer is not authorized to access this resource"

    def test_get_missing_user_is_404(self, api) -> None:
        _, admin_token = api.make_user(role=ROLE_ADMIN)
        resp = api.client.get("/api/v1/users/999999", headers=api.bearer(admin_token))
        assert resp.status_code == 404

    def test_user_payload_has_no_secrets(self, api) -> None:
        _, admin_token = api.make_user(role=ROLE_ADMIN)
        user, _ = api.make_user()
        resp = api.client.get(f"/api/v1/users/{user.id}", headers=api.bearer(admin_token))
        assert resp.status_code == 200
        assert set(resp.json()["data"]["user"]) == {"id", "name", "email", "role", "isVerified"}


class TestVendorOnboarding:
    def test_create_vendor_sends_otp_and_temporary_password(self, api) -> None:
        _, admin_token = api.make_user(role=ROLE_ADMIN)
        email = unique_email("vendor")
        resp = api.client.post(
            "/api/v1/users/vendors", json={"name": "Vince Vendor", "email": email}, headers=api.bearer(admin_token)
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()["data"]["user"]["role"] == ROLE_VENDOR

        message = api.mailer.last_for(email)
        assert message["purpose"] == PURPOSE_VENDOR
        temp = message["temporary_password"]
        assert temp and temp not in resp.text, "Temporary password must only travel by email"

        verify = api.client.post("/api/v1/auth/verify-email", json={"email": email, "otp": message["code"]})
        assert verify.status_code == 200
        login = api.client.post("/api/v1/auth/login", json={"email": email, "password": temp})
        assert login.status_code == 200

    def test_duplicate_vendor_email(self, api) -> None:
        _, admin_token = api.make_user(role=ROLE_ADMIN)
        existing, _ = api.make_user()
        resp = api.client.post(
            "/api/v1/users/vendors",
            json={"name": "Dup", "email": existing.email},
            headers=api.bearer(admin_token),
        )
        assert resp.status_code == 400


class TestAdminUpdates:
    def test_update_role_and_active_flag(self, api) -> None:
        _, admin_token = api.make_user(role=ROLE_ADMIN)
        user, _ = api.make_user()
        resp = api.client.put(
            f"/api/v1/users/{user.id}",
            json={"role": ROLE_VENDOR, "isActive": False, "name": "Renamed"},
            headers=api.bearer(admin_token),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["data"]["user"]["role"] == ROLE_VENDOR
        stored = api.user_store.get_by_id(user.id)
        assert stored.is_active is False and stored.name == "Renamed"

    def test_empty_update_rejected(self, api) -> None:
        _, admin_token = api.make_user(role=ROLE_ADMIN)
        user, _ = api.make_user()
        resp = api.client.put(f"/api/v1/users/{user.id}", json={}, headers=api.bearer(admin_token))
        assert resp.status_code == 400

    def test_email_collision_rejected(self, api) -> None:
        _, admin_token = api.make_user(role=ROLE_ADMIN)
        first, _ = api.make_user()
        second, _ = api.make_user()
        resp = api.client.put(
            f"/api/v1/users/{second.id}", json={"email": first.email}, headers=api.bearer(admin_token)
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Email already in use"

    def test_invalid_role_rejected(self, api) -> None:
        _, admin_token = api.make_user(role=ROLE_ADMIN)
        user, _ = api.make_user()
        resp = api.client.put(f"/api/v1/users/{user.id}", json={"role": "root"}, headers=api.bearer(admin_token))
        assert resp.status_code == 400

    def test_delete_user(self, api) -> None:
        _, admin_token = api.make_user(role=ROLE_ADMIN)
        user, _ = api.make_user()
        resp = api.client.delete(f"/api/v1/users/{user.id}", headers=api.bearer(admin_token))
        assert resp.status_code == 200
        assert api.user_store.get_by_id(user.id) is None
        again = api.client.delete(f"/api/v1/users/{user.id}", headers=api.bearer(admin_token))
        assert again.status_code == 404


class TestAdminSelfProtection:
    """[M4] An admin cannot lock themselves out."""

    def test_cannot_deactivate_self(self, api) -> None:
        admin, token = api.make_user(role=ROLE_ADMIN)
        resp = api.client.put(f"/api/v1/users/{admin.id}", json={"isActive": False}, headers=api.bearer(token))
        assert resp.status_code == 400
        assert api.user_store.get_by_id(admin.id).is_active is True

    def test_cannot_demote_self(self, api) -> None:
        admin, token = api.make_user(role=ROLE_ADMIN)
        resp = api.client.put(f"/api/v1/users/{admin.id}", json={"role": ROLE_CUSTOMER}, headers=api.bearer(token))
        assert resp.status_code == 400
        assert api.user_store.get_by_id(admin.id).role == ROLE_ADMIN

    def test_cannot_delete_self(self, api) -> None:
        admin, token = api.make_user(role=ROLE_ADMIN)
        resp = api.client.delete(f"/api/v1/users/{admin.id}", headers=api.bearer(token))
        assert resp.status_code == 400


class TestSelfService:
    def test_update_profile_name(self, api) -> None:
        user, token = api.make_user()
        resp = api.client.put("/api/v1/users/profile", json={"name": "New Name"}, headers=api.bearer(token))
        assert resp.status_code == 200
        assert resp.json()["data"]["user"]["name"] == "New Name"

    def test_change_password(self, api) -> None:
        user, token = api.make_user()
        resp = api.client.put(
            "/api/v1/users/password",
            json={"currentPassword": PASSWORD, "newPassword": "changed-pass"},
            headers=api.bearer(token),
        )
        assert resp.status_code == 200
        login = api.client.post("/api/v1/auth/login", json={"email": user.email, "password": "changed-pass"})
        assert login.status_code == 200

    def test_wrong_current_password(self, api) -> None:
        _, token = api.make_user()
        resp = api.client.put(
            "/api/v1/users/password",
            json={"currentPassword": "not-it", "newPassword": "changed-pass"},
            headers=api.bearer(token),
        )
        assert resp.status_code == 401
        assert resp.json()["message"] == "Current password is incorrect"

    def test_profile_requires_auth(self, api) -> None:
        resp = api.client.put("/api/v1/users/profile", json={"name": "Nobody"})
        assert resp.status_code == 401
