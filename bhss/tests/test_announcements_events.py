import os
import unittest
from datetime import date, timedelta
from unittest import mock

os.environ.setdefault("BHSS_USE_IN_MEMORY_BACKENDS", "true")

from fastapi.testclient import TestClient

from bhss.app import create_app
from bhss.auth import create_access_token
from bhss.dependencies import get_db_client, get_storage_client
from bhss.errors import DuplicateKeyError


class BaseCase(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_app())
        self.db = get_db_client()
        self.db.reset()
        admin = self.db.create_user(
            username="admin", password_hash="unused", name="Admin", role="admin"
        )
        user = self.db.create_user(username="staff", password_hash="unused", name="Staff")
        self.admin = {"Authorization": f"Bearer {create_access_token(admin.id, 'admin')}"}
        self.headers = {"Authorization": f"Bearer {create_access_token(user.id, 'user')}"}


class AnnouncementApiTests(BaseCase):
    def test_create_and_read(self):
        response = self.client.post(
            "/api/admin/announcements",
            data={"title": " Feeding resumes ", "message": "Monday", "priority": "Bogus"},
            files=[("attachments", ("memo.pdf", b"%PDF", "application/pdf"))],
            headers=self.admin,
        )
        self.assertEqual(response.status_code, 201)
        created = response.json()["announcement"]
        self.assertEqual(created["title"], "Feeding resumes")
        self.assertEqual(created["priority"], "Normal")
        self.assertEqual(created["audience"], "All")
        self.assertEqual(created["attachments"][0]["originalName"], "memo.pdf")

        served = self.client.get(created["attachments"][0]["url"])
        self.assertEqual(served.content, b"%PDF")

        listing = self.client.get("/api/announcements", headers=self.headers).json()
        self.assertEqual([a["id"] for a in listing["announcements"]], [created["id"]])

        one = self.client.get(f"/api/announcements/{created['id']}", headers=self.headers)
        self.assertEqual(one.json()["announcement"]["message"], "Monday")

    def test_validation(self):
        no_title = self.client.post(
            "/api/admin/announcements", data={"message": "x"}, headers=self.admin
        )
        self.assertEqual(no_title.json()["message"], "title is required")
        no_message = self.client.post(
            "/api/admin/announcements", data={"title": "x"}, headers=self.admin
        )
        self.assertEqual(no_message.json()["message"], "message is required")
        too_many = self.client.post(
            "/api/admin/announcements",
            data={"title": "x", "message": "y"},
            files=[("attachments", (f"f{i}.txt", b"x", "text/plain")) for i in range(7)],
            headers=self.admin,
        )
        self.assertEqual(too_many.status_code, 400)

    def test_only_admins_post(self):
        response = self.client.post(
            "/api/admin/announcements",
            data={"title": "x", "message": "y"},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 403)

    def test_missing_announcement(self):
        response = self.client.get("/api/announcements/nope", headers=self.headers)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["message"], "Announcement not found")

    def test_failed_write_discards_attachments(self):
        storage = get_storage_client()
        before = set(storage.stored_objects)
        with mock.patch.object(
            self.db, "create_announcement", side_effect=DuplicateKeyError("Duplicate key")
        ):
            response = self.client.post(
                "/api/admin/announcements",
                data={"title": "Memo", "message": "Read me"},
                files=[("attachments", ("memo.pdf", b"%PDF", "application/pdf"))],
                headers=self.admin,
            )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(set(storage.stored_objects), before)


class EventApiTests(BaseCase):
    def _create(self, **fields):
        data = {
            "title": "Nutrition seminar",
            "dateKey": date.today().isoformat(),
            "startTime": "09:00",
            "endTime": "11:30",
        }
        data.update(fields)
        return self.client.post("/api/admin/events", data=data, headers=self.admin)

    def test_create_validation(self):
        cases = [
            ({"title": ""}, "title is required"),
            ({"title": "x" * 121}, "title must be at most 120 characters"),
            ({"description": "d" * 2001}, "description must be at most 2000 characters"),
            ({"dateKey": "2025/01/06"}, "dateKey must be yyyy-MM-dd"),
            ({"startTime": "9:00"}, "startTime must be HH:mm"),
            ({"endTime": "24:00"}, "endTime must be HH:mm"),
            ({"endTime": "09:00"}, "endTime must be after startTime"),
        ]
        for fields, message in cases:
            with self.subTest(fields=fields):
                response = self._create(**fields)
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()["message"], message)

    def test_create_update_cancel(self):
        created = self._create()
        self.assertEqual(created.status_code, 201)
        event = created.json()["event"]
        self.assertEqual(event["status"], "Scheduled")

        updated = self.client.put(
            f"/api/admin/events/{event['id']}",
            data={"title": "Nutrition seminar (room 2)"},
            headers=self.admin,
        ).json()["event"]
        self.assertEqual(updated["title"], "Nutrition seminar (room 2)")
        self.assertEqual(updated["startTime"], "09:00")

        no_reason = self.client.post(
            f"/api/admin/events/{event['id']}/cancel", json={"reason": " "}, headers=self.admin
        )
        self.assertEqual(no_reason.json()["message"], "Cancellation reason is required")

        long_reason = self.client.post(
            f"/api/admin/events/{event['id']}/cancel",
            json={"reason": "r" * 501},
            headers=self.admin,
        )
        self.assertEqual(long_reason.status_code, 400)
        self.assertEqual(
            long_reason.json()["message"], "reason must be at most 500 characters"
        )

        too_long = self.client.put(
            f"/api/admin/events/{event['id']}",
            data={"title": "t" * 121},
            headers=self.admin,
        )
        self.assertEqual(too_long.json()["message"], "title must be at most 120 characters")

        cancelled = self.client.post(
            f"/api/admin/events/{event['id']}/cancel",
            json={"reason": "Typhoon"},
            headers=self.admin,
        ).json()["event"]
        self.assertEqual(cancelled["status"], "Cancelled")
        self.assertEqual(cancelled["cancelReason"], "Typhoon")

        again = self.client.post(
            f"/api/admin/events/{event['id']}/cancel",
            json={"reason": "Typhoon"},
            headers=self.admin,
        )
        self.assertEqual(again.json()["message"], "Event is already cancelled")

        edit = self.client.put(
            f"/api/admin/events/{event['id']}", data={"title": "x"}, headers=self.admin
        )
        self.assertEqual(edit.json()["message"], "Cancelled events cannot be edited")

    def test_failed_update_discards_attachment(self):
        event = self._create().json()["event"]
        storage = get_storage_client()
        before = set(storage.stored_objects)
        with mock.patch.object(self.db, "update_event", return_value=None):
            response = self.client.put(
                f"/api/admin/events/{event['id']}",
                data={"title": "Moved"},
                files={"attachment": ("agenda.pdf", b"%PDF", "application/pdf")},
                headers=self.admin,
            )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(set(storage.stored_objects), before)

    def test_user_listing_window(self):
        today = date.today()
        self._create(title="Soon")
        self._create(title="Long ago", dateKey=(today - timedelta(days=60)).isoformat())
        self._create(title="Far ahead", dateKey=(today + timedelta(days=120)).isoformat())

        events = self.client.get("/api/events", headers=self.headers).json()["events"]
        self.assertEqual([e["title"] for e in events], ["Soon"])

        wide = self.client.get(
            "/api/events",
            params={"from": (today - timedelta(days=90)).isoformat()},
            headers=self.headers,
        ).json()["events"]
        self.assertEqual([e["title"] for e in wide], ["Long ago", "Soon"])

        admin_all = self.client.get("/api/admin/events", headers=self.admin).json()["events"]
        self.assertEqual(len(admin_all), 3)

    def test_missing_event(self):
        response = self.client.get("/api/events/nope", headers=self.headers)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["message"], "Event not found")


if __name__ == "__main__":
    unittest.main()
