import sys
import unittest
from pathlib import Path
from unittest import mock

from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parent))

from rental_harness import (  # noqa: E402
    ADMIN_EMAIL,
    ADMIN_PASSWORD,
    STAFF_EMAIL,
    STAFF_PASSWORD,
    RentalApiTestCase,
    app_module,
)


class SecurityAndFlowTests(RentalApiTestCase):
    def test_login_logout_revokes_session_token(self):
        headers = self.login(ADMIN_EMAIL, ADMIN_PASSWORD)

        me_before = self.client.get("/api/auth/me", headers=headers)
        self.assertEqual(me_before.status_code, 200)

        logout = self.client.post("/api/auth/logout", headers=headers)
        self.assertEqual(logout.status_code, 200)

        me_after = self.client.get("/api/auth/me", headers=headers)
        self.assertEqual(me_after.status_code, 401)

    def test_login_persists_with_cookie_session(self):
        login = self.client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        self.assertEqual(login.status_code, 200)

        me = self.client.get("/api/auth/me")
        self.assertEqual(me.status_code, 200)
        self.assertEqual((me.json().get("user") or {}).get("role"), "superAdmin")
        set_cookie = login.headers.get("set-cookie", "")
        self.assertIn("wardrobe_rental_session=", set_cookie)

    def test_login_rejects_wrong_password(self):
        response = self.client.post("/api/auth/login", json={"email": STAFF_EMAIL, "password": "nope"})
        self.assertEqual(response.status_code, 401)

    def test_login_rejects_unknown_fields(self):
        response = self.client.post("/api/auth/login", json={"username": "admin", "password": "x"})
        self.assertEqual(response.status_code, 400)

    def test_protected_routes_require_session(self):
        anonymous = TestClient(app_module.app)
        self.assertEqual(anonymous.get("/api/bookings").status_code, 401)
        self.assertEqual(anonymous.get("/api/products").status_code, 401)
        self.assertEqual(anonymous.post("/api/bookings", json={}).status_code, 401)
        self.assertEqual(anonymous.get("/healthz").status_code, 200)

    def test_staff_cannot_view_stats(self):
        anonymous = TestClient(app_module.app)
        response = anonymous.post("/api/auth/login", json={"email": STAFF_EMAIL, "password": STAFF_PASSWORD})
        headers = {"X-Session-Token": response.json()["sessionToken"]}
        stats = anonymous.get("/api/bookings/stats?from=2025-01-01&to=2025-01-31", headers=headers)
        self.assertEqual(stats.status_code, 403)

    def test_startup_creates_schema_when_enabled(self):
        original_flag = app_module.AUTO_CREATE_SCHEMA
        app_module.AUTO_CREATE_SCHEMA = True
        try:
            with mock.patch("db.session.init_schema") as init_schema:
                with TestClient(app_module.app) as client:
                    self.assertEqual(client.get("/healthz").status_code, 200)
            init_schema.assert_called_once_with()
        finally:
            app_module.AUTO_CREATE_SCHEMA = original_flag

    def test_startup_skips_schema_when_disabled(self):
        original_flag = app_module.AUTO_CREATE_SCHEMA
        app_module.AUTO_CREATE_SCHEMA = False
        try:
            with mock.patch("db.session.init_schema") as init_schema:
                with TestClient(app_module.app) as client:
                    self.assertEqual(client.get("/healthz").status_code, 200)
            init_schema.assert_not_called()
        finally:
            app_module.AUTO_CREATE_SCHEMA = original_flag

    def test_change_password_checks_current_password(self):
        wrong = self.client.post(
            "/api/auth/change-password",
            json={"currentPassword": "bad", "newPassword": "fresh-pass"},
            headers=self.headers,
        )
        self.assertEqual(wrong.status_code, 400)

        changed = self.client.post(
            "/api/auth/change-password",
            json={"currentPassword": ADMIN_PASSWORD, "newPassword": "fresh-pass"},
            headers=self.headers,
        )
        self.assertEqual(changed.status_code, 200)
        self.login(ADMIN_EMAIL, "fresh-pass")


if __name__ == "__main__":
    unittest.main()
