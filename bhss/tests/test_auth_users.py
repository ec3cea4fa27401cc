import os
import unittest

os.environ.setdefault("BHSS_USE_IN_MEMORY_BACKENDS", "true")

import jwt
from fastapi.testclient import TestClient

from bhss.app import create_app
from bhss.auth import (
    create_access_token,
    decode_access_token,
    hash_password,
    looks_hashed,
    verify_password,
)
from bhss.config import get_settings
from bhss.dependencies import get_db_client, get_storage_client
from bhss.errors import AppHTTPException


class PasswordAndTokenTests(unittest.TestCase):
    def test_hash_and_verify(self):
        hashed = hash_password("secret1")
        self.assertTrue(looks_hashed(hashed))
        self.assertTrue(verify_password("secret1", hashed))
        self.assertFalse(verify_password("wrong", hashed))
        self.assertFalse(verify_password("secret1", "secret1"))

    def test_token_round_trip(self):
        token = create_access_token("u1", "admin")
        claims = jwt.decode(token, get_settings().jwt_secret, algorithms=["HS256"])
        self.assertEqual(claims["sub"], "u1")
        self.assertEqual(claims["role"], "admin")
        self.assertEqual(claims["exp"] - claims["iat"], 7 * 24 * 3600)
        self.assertTrue(decode_access_token(token).is_admin)

    def test_tampered_token_is_rejected(self):
        token = jwt.encode({"sub": "u1", "role": "admin"}, "other-secret", algorithm="HS256")
        with self.assertRaises(AppHTTPException) as ctx:
            decode_access_token(token)
        self.assertEqual(ctx.exception.status_code, 401)


class AuthApiTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_app())
        self.db = get_db_client()
        self.db.reset()

    def _register(self, **body):
        payload = {
            "username": "Ana",
            "email": "ana@example.com",
            "password": "secret1",
            "name": "Ana Cruz",
        }
        payload.update(body)
        return self.client.post("/api/auth/register", json=payload)

    def test_register_and_login(self):
        registered = self._register()
        self.assertEqual(registered.status_code, 201)
        self.assertEqual(registered.json()["username"], "ana")
        self.assertEqual(registered.json()["role"], "student")
        self.assertNotIn("passwordHash", registered.json())

        login = self.client.post(
            "/api/auth/login", json={"username": "ANA", "password": "secret1"}
        )
        self.assertEqual(login.status_code, 200)
        token = login.json()["token"]
        self.assertEqual(decode_access_token(token).id, registered.json()["id"])

        bad = self.client.post(
            "/api/auth/login", json={"username": "ana", "password": "nope"}
        )
        self.assertEqual(bad.status_code, 401)
        self.assertEqual(bad.json(), {"message": "Invalid credentials", "code": "UNAUTHORIZED"})

    def test_register_conflicts_and_validation(self):
        self._register()
        duplicate = self._register(username="other")
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["message"], "Username or email already registered")

        missing = self._register(name="")
        self.assertEqual(missing.status_code, 400)

        admin = self._register(username="boss", email="boss@example.com", role="admin")
        self.assertEqual(admin.status_code, 403)

    def test_legacy_plaintext_password_is_upgraded(self):
        user = self.db.create_user(username="legacy", password_hash="plainpw", name="Legacy")
        login = self.client.post(
            "/api/auth/login", json={"username": "legacy", "password": "plainpw"}
        )
        self.assertEqual(login.status_code, 200)
        self.assertTrue(looks_hashed(self.db.get_user(user.id).password_hash))

    def test_inactive_user_cannot_login(self):
        self.db.create_user(
            username="idle",
            password_hash=hash_password("secret1"),
            name="Idle",
            is_active=False,
        )
        login = self.client.post(
            "/api/auth/login", json={"username": "idle", "password": "secret1"}
        )
        self.assertEqual(login.status_code, 403)
        self.assertEqual(login.json()["message"], "Account is inactive")

    def test_routes_require_bearer_token(self):
        response = self.client.get("/api/announcements")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["message"], "Missing Authorization header")
        garbage = self.client.get(
            "/api/announcements", headers={"Authorization": "Bearer garbage"}
        )
        self.assertEqual(garbage.json()["message"], "Invalid token")


class UsersApiTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_app())
        self.db = get_db_client()
        self.db.reset()
        admin = self.db.create_user(
            username="admin", password_hash="unused", name="Admin", role="admin"
        )
        self.user = self.db.create_user(
            username="staff",
            email="staff@example.com",
            password_hash=hash_password("secret1"),
            name="Staff",
        )
        self.admin = {"Authorization": f"Bearer {create_access_token(admin.id, 'admin')}"}
        self.headers = {
            "Authorization": f"Bearer {create_access_token(self.user.id, 'user')}"
        }

    def test_admin_creates_user(self):
        response = self.client.post(
            "/api/users",
            json={
                "username": "Coord1",
                "password": "secret1",
                "school": "Orani ES",
                "municipality": "Orani",
                "hlaRoleType": "HLA Coordinator",
            },
            headers=self.admin,
        )
        self.assertEqual(response.status_code, 201)
        user = response.json()["user"]
        self.assertEqual(user["username"], "coord1")
        self.assertEqual(user["role"], "user")
        self.assertEqual(user["province"], "Bataan")

        missing = self.client.post(
            "/api/users", json={"username": "x", "password": "y"}, headers=self.admin
        )
        self.assertEqual(
            missing.json()["message"],
            "username, password, school, and municipality are required",
        )
        forbidden = self.client.post("/api/users", json={}, headers=self.headers)
        self.assertEqual(forbidden.status_code, 403)

    def test_self_update_ignores_admin_fields(self):
        response = self.client.patch(
            f"/api/users/{self.user.id}",
            json={"name": " Staff Member ", "role": "admin"},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["user"]["name"], "Staff Member")
        self.assertEqual(response.json()["user"]["role"], "user")

        nothing = self.client.patch(
            f"/api/users/{self.user.id}", json={"role": "admin"}, headers=self.headers
        )
        self.assertEqual(nothing.json()["message"], "No valid fields to update")

        blank = self.client.patch(
            f"/api/users/{self.user.id}", json={"username": "   "}, headers=self.headers
        )
        self.assertEqual(blank.status_code, 400)
        self.assertEqual(blank.json()["message"], "username cannot be empty")
        self.assertEqual(self.db.get_user(self.user.id).username, "staff")

    def test_cannot_read_other_users(self):
        admin_id = self.db.find_user_by_username("admin").id
        response = self.client.get(f"/api/users/{admin_id}", headers=self.headers)
        self.assertEqual(response.status_code, 403)
        own = self.client.get(f"/api/users/{self.user.id}", headers=self.headers)
        self.assertEqual(own.json()["user"]["email"], "staff@example.com")

    def test_password_change(self):
        wrong = self.client.patch(
            f"/api/users/{self.user.id}/password",
            json={"currentPassword": "nope", "newPassword": "secret2"},
            headers=self.headers,
        )
        self.assertEqual(wrong.json()["message"], "Current password is incorrect")

        ok = self.client.patch(
            f"/api/users/{self.user.id}/password",
            json={"currentPassword": "secret1", "newPassword": "secret2"},
            headers=self.headers,
        )
        self.assertEqual(ok.status_code, 200)
        self.assertTrue(
            verify_password("secret2", self.db.get_user(self.user.id).password_hash)
        )

        reset = self.client.patch(
            f"/api/users/{self.user.id}/password",
            json={"password": "abc"},
            headers=self.admin,
        )
        self.assertEqual(reset.status_code, 400)

    def test_toggle_active_requires_boolean(self):
        invalid = self.client.patch(
            f"/api/users/{self.user.id}/active", json={"isActive": "yes"}, headers=self.admin
        )
        self.assertEqual(invalid.status_code, 400)
        ok = self.client.patch(
            f"/api/users/{self.user.id}/active", json={"isActive": False}, headers=self.admin
        )
        self.assertFalse(ok.json()["user"]["isActive"])

    def test_avatar_upload(self):
        response = self.client.post(
            f"/api/users/{self.user.id}/avatar",
            files={"avatar": ("me.png", b"png-bytes", "image/png")},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200)
        url = response.json()["user"]["avatarUrl"]
        self.assertTrue(url.startswith("/uploads/avatars/me-"))
        self.assertIn(url[len("/uploads/") :], get_storage_client().stored_objects)

        served = self.client.get(url)
        self.assertEqual(served.content, b"png-bytes")
        self.assertEqual(served.headers["content-type"], "image/png")

        not_image = self.client.post(
            f"/api/users/{self.user.id}/avatar",
            files={"avatar": ("notes.txt", b"text", "text/plain")},
            headers=self.headers,
        )
        self.assertEqual(not_image.status_code, 400)

    def test_delete_user(self):
        deleted = self.client.delete(f"/api/users/{self.user.id}", headers=self.admin)
        self.assertEqual(deleted.json(), {"success": True})
        again = self.client.delete(f"/api/users/{self.user.id}", headers=self.admin)
        self.assertEqual(again.status_code, 404)


if __name__ == "__main__":
    unittest.main()
