import os
import unittest
from datetime import datetime, timezone

os.environ.setdefault("BHSS_USE_IN_MEMORY_BACKENDS", "true")

from fastapi.testclient import TestClient

from bhss.app import create_app
from bhss.auth import create_access_token
from bhss.dependencies import get_db_client, get_storage_client
from bhss.routes.file_submissions import history_range, normalize_folder


class BaseCase(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_app())
        self.db = get_db_client()
        self.db.reset()
        admin = self.db.create_user(
            username="admin", password_hash="unused", name="Admin", role="admin"
        )
        self.coordinator = self.db.create_user(
            username="coord",
            password_hash="unused",
            name="Rosa Santos",
            school="Orani ES",
            municipality="Orani",
            hla_role_type="HLA Coordinator",
        )
        self.admin = {"Authorization": f"Bearer {create_access_token(admin.id, 'admin')}"}
        self.headers = {
            "Authorization": f"Bearer {create_access_token(self.coordinator.id, 'user')}"
        }


class FileSubmissionHelperTests(unittest.TestCase):
    def test_legacy_folders_merge(self):
        self.assertEqual(normalize_folder("Fruits"), "Fruits & Vegetables")
        self.assertEqual(normalize_folder("Vegetables"), "Fruits & Vegetables")
        self.assertEqual(normalize_folder("Meat"), "Meat")

    def test_history_range(self):
        start, end = history_range("2025-03-01", "2025-03-05")
        self.assertEqual(start, datetime(2025, 3, 1, tzinfo=timezone.utc))
        self.assertEqual(end, datetime(2025, 3, 6, tzinfo=timezone.utc))
        self.assertEqual(history_range(None, "2025-03-05")[0].day, 5)
        self.assertEqual(history_range("2025-03-01", None)[1].day, 2)
        self.assertEqual(history_range("", "bad"), (None, None))


class FileSubmissionApiTests(BaseCase):
    def _upload(self, folder="Meat", files=None, **data):
        files = files or [("files", ("tray.png", b"png", "image/png"))]
        return self.client.post(
            "/api/file-submissions/upload",
            data={"folder": folder, **data},
            files=files,
            headers=self.headers,
        )

    def test_upload_list_and_count(self):
        response = self._upload(
            folder="Fruits",
            files=[
                ("files", ("a.jpg", b"jpg", "image/jpeg")),
                ("files", ("b.png", b"png", "image/png")),
            ],
            description="morning delivery",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["message"], "2 file(s) uploaded successfully")
        self.assertEqual(
            {f["folder"] for f in response.json()["files"]}, {"Fruits & Vegetables"}
        )
        self._upload()

        fruits = self.client.get(
            "/api/file-submissions",
            params={"folder": "Fruits & Vegetables"},
            headers=self.headers,
        ).json()["files"]
        self.assertEqual(len(fruits), 2)

        today = datetime.now(timezone.utc).date().isoformat()
        counts = self.client.get(
            "/api/file-submissions/stats/counts", params={"date": today}, headers=self.headers
        ).json()["folderCounts"]
        self.assertEqual(counts, {"Fruits & Vegetables": 2, "Meat": 1})

        other_day = self.client.get(
            "/api/file-submissions", params={"date": "2000-01-01"}, headers=self.headers
        ).json()["files"]
        self.assertEqual(other_day, [])

    def test_upload_validation(self):
        self.assertEqual(
            self._upload(folder="").json()["message"], "Folder is required"
        )
        self.assertEqual(
            self._upload(folder="Snacks").json()["message"], "Invalid folder"
        )
        pdf = [("files", ("coa.pdf", b"%PDF", "application/pdf"))]
        self.assertEqual(
            self._upload(files=pdf).json()["message"],
            "Invalid file type. Only JPEG/PNG images are allowed.",
        )
        self.assertEqual(self._upload(folder="COA", files=pdf).status_code, 200)

        empty = self.client.post(
            "/api/file-submissions/upload", data={"folder": "Meat"}, headers=self.headers
        )
        self.assertEqual(empty.json()["message"], "No files uploaded")

    def test_download_and_delete(self):
        file_id = self._upload().json()["files"][0]["id"]
        download = self.client.get(
            f"/api/file-submissions/download/{file_id}", headers=self.headers
        )
        self.assertEqual(download.content, b"png")
        self.assertIn("filename*=UTF-8''tray.png", download.headers["content-disposition"])

        storage = get_storage_client()
        row = self.db.get_file_submission(file_id)
        storage.delete(row.storage_key)
        gone = self.client.get(f"/api/file-submissions/download/{file_id}", headers=self.headers)
        self.assertEqual(gone.json()["message"], "File not found on server")

        deleted = self.client.delete(f"/api/file-submissions/{file_id}", headers=self.headers)
        self.assertEqual(deleted.json(), {"message": "File deleted successfully"})
        missing = self.client.delete(f"/api/file-submissions/{file_id}", headers=self.headers)
        self.assertEqual(missing.status_code, 404)

    def test_admin_history(self):
        self._upload(description="pork belly")
        other = self.db.create_user(
            username="manager", password_hash="unused", name="M", hla_role_type="HLA Manager"
        )
        self.client.post(
            "/api/file-submissions/upload",
            data={"folder": "Meat"},
            files=[("files", ("x.png", b"png", "image/png"))],
            headers={"Authorization": f"Bearer {create_access_token(other.id, 'user')}"},
        )

        records = self.client.get(
            "/api/admin/file-submissions/history", headers=self.admin
        ).json()["records"]
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0]["coordinator"]["name"], "Rosa Santos")
        self.assertEqual(records[0]["coordinator"]["hlaRoleType"], "HLA Coordinator")

        searched = self.client.get(
            "/api/admin/file-submissions/history",
            params={"search": "BELLY", "municipality": "Orani"},
            headers=self.admin,
        ).json()["records"]
        self.assertEqual(len(searched), 1)
        none = self.client.get(
            "/api/admin/file-submissions/history",
            params={"school": "Balanga ES"},
            headers=self.admin,
        ).json()["records"]
        self.assertEqual(none, [])

        download = self.client.get(
            f"/api/admin/file-submissions/download/{records[0]['id']}", headers=self.admin
        )
        self.assertEqual(download.status_code, 200)


class PushApiTests(BaseCase):
    def test_subscribe_and_unsubscribe(self):
        key = self.client.get("/api/push/vapid-public-key", headers=self.headers)
        self.assertEqual(key.status_code, 200)
        self.assertIn("publicKey", key.json())

        invalid = self.client.post(
            "/api/push/subscribe", json={"endpoint": "https://push/1"}, headers=self.headers
        )
        self.assertEqual(invalid.json()["message"], "Invalid subscription")

        body = {"endpoint": "https://push/1", "keys": {"p256dh": "k", "auth": "a"}}
        first = self.client.post("/api/push/subscribe", json=body, headers=self.headers)
        second = self.client.post("/api/push/subscribe", json=body, headers=self.admin)
        self.assertEqual(first.json()["subscription"]["id"], second.json()["subscription"]["id"])
        self.assertEqual(len(self.db.list_push_subscriptions()), 1)

        missing = self.client.post("/api/push/unsubscribe", json={}, headers=self.headers)
        self.assertEqual(missing.json()["message"], "endpoint is required")
        ok = self.client.post(
            "/api/push/unsubscribe", json={"endpoint": "https://push/1"}, headers=self.headers
        )
        self.assertEqual(ok.json(), {"ok": True})
        self.assertEqual(self.db.list_push_subscriptions(), [])


class SchoolDirectoryApiTests(BaseCase):
    def test_beneficiaries(self):
        created = self.client.post(
            "/api/school-directory/beneficiaries/bulk",
            json={
                "municipality": "Orani",
                "schoolYear": "2024-2025",
                "items": [
                    {"bhssKitchenName": "Orani Kitchen", "schoolName": "Orani ES",
                     "grade2": 10, "grade3": "12", "grade4": None},
                ],
            },
            headers=self.admin,
        )
        self.assertEqual(created.status_code, 201)
        row = created.json()["rows"][0]
        self.assertEqual(row["total"], 22)

        patched = self.client.patch(
            f"/api/school-directory/beneficiaries/{row['id']}",
            json={"grade4": 8},
            headers=self.admin,
        ).json()["row"]
        self.assertEqual(patched["total"], 30)

        rows = self.client.get(
            "/api/school-directory/beneficiaries",
            params={"municipality": "Orani", "schoolYear": "2024-2025"},
            headers=self.admin,
        ).json()["rows"]
        self.assertEqual(len(rows), 1)

        unscoped = self.client.get("/api/school-directory/beneficiaries", headers=self.admin)
        self.assertEqual(
            unscoped.json()["message"], "municipality and schoolYear are required"
        )

        invalid = self.client.post(
            "/api/school-directory/beneficiaries/bulk",
            json={"municipality": "Orani", "schoolYear": "2024-2025",
                  "items": [{"schoolName": "Orani ES"}]},
            headers=self.admin,
        )
        self.assertEqual(
            invalid.json()["message"], "Each item requires bhssKitchenName and schoolName"
        )

        deleted = self.client.delete(
            f"/api/school-directory/beneficiaries/{row['id']}", headers=self.admin
        )
        self.assertEqual(deleted.json(), {"message": "Deleted"})
        again = self.client.delete(
            f"/api/school-directory/beneficiaries/{row['id']}", headers=self.admin
        )
        self.assertEqual(again.json()["message"], "Row not found")

    def test_school_details(self):
        missing = self.client.post(
            "/api/school-directory/details",
            json={"municipality": "Orani", "schoolYear": "2024-2025"},
            headers=self.admin,
        )
        self.assertEqual(missing.json()["message"], "completeName is required")

        created = self.client.post(
            "/api/school-directory/details",
            json={
                "municipality": "Orani",
                "schoolYear": "2024-2025",
                "completeName": " Orani Elementary School ",
                "principalName": "Dr. Reyes",
                "nurseContact": 9171234567,
            },
            headers=self.admin,
        )
        self.assertEqual(created.status_code, 201)
        row = created.json()["row"]
        self.assertEqual(row["completeName"], "Orani Elementary School")
        self.assertEqual(row["nurseContact"], "9171234567")

        patched = self.client.patch(
            f"/api/school-directory/details/{row['id']}",
            json={"principalName": "Dr. Cruz"},
            headers=self.admin,
        ).json()["row"]
        self.assertEqual(patched["principalName"], "Dr. Cruz")
        self.assertEqual(patched["completeName"], "Orani Elementary School")

    def test_requires_admin(self):
        response = self.client.get(
            "/api/school-directory/details",
            params={"municipality": "Orani", "schoolYear": "2024-2025"},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 403)


if __name__ == "__main__":
    unittest.main()
