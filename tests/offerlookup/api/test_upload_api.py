"""
Tests for the upload, property and statistics endpoints.

Uses FastAPI's TestClient; background ingestion runs before each upload
request returns, so job results can be asserted right away.
"""
import asyncio
import json
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from config.settings import settings
from src.offerlookup.api.auth import create_access_token
from src.offerlookup.api.dependencies import get_notifier, get_session_factory
from src.offerlookup.api.main import app
from src.offerlookup.api.routers import properties as properties_router
from src.offerlookup.db.models import utcnow
from src.offerlookup.db.repository import PropertyRepository
from src.offerlookup.db.session import build_engine, build_session_factory, create_all_tables
from src.offerlookup.ingestion.job_tracker import JobTracker
from src.offerlookup.ingestion.progress import ProgressNotifier


def csv_bytes(rows):
    header = list(rows[0])
    lines = [",".join(header)]
    for row in rows:
        lines.append(",".join(str(row[column]) for column in header))
    return ("\n".join(lines) + "\n").encode("utf-8")


def auth_headers(username):
    return {"Authorization": f"Bearer {create_access_token({'sub': username})}"}


@pytest.fixture
def api_session_factory(database_url):
    engine = build_engine(database_url)
    asyncio.run(create_all_tables(engine))

    yield build_session_factory(engine)

    asyncio.run(engine.dispose())


@pytest.fixture
def tracker(api_session_factory):
    return JobTracker(api_session_factory)


@pytest.fixture
def client(api_session_factory, tmp_path, monkeypatch):
    notifier = ProgressNotifier(queue_size=100)
    monkeypatch.setattr(settings, "upload_temp_dir", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "upload_processed_dir", str(tmp_path / "processed"))
    app.dependency_overrides[get_session_factory] = lambda: api_session_factory
    app.dependency_overrides[get_notifier] = lambda: notifier

    yield TestClient(app)

    app.dependency_overrides.clear()


def upload(client, rows, username="admin", filename="offers.csv"):
    return client.post(
        "/api/v1/upload",
        files={"file": (filename, csv_bytes(rows), "text/csv")},
        headers=auth_headers(username),
    )


class TestUpload:
    """Tests for POST /api/v1/upload."""

    def test_upload_is_processed(self, client, tmp_path, row_factory):
        response = upload(client, [row_factory(i) for i in range(3)])

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "pending"

        status_response = client.get(f"/api/v1/upload/{body['job_id']}", headers=auth_headers("admin"))
        job = status_response.json()

        assert status_response.status_code == 200
        assert job["status"] == "completed"
        assert job["total_records"] == 3
        assert job["new_records"] == 3
        assert job["progress_percentage"] == 100.0
        assert len(list((tmp_path / "processed").iterdir())) == 1

    def test_manager_may_upload(self, client, row_factory):
        assert upload(client, [row_factory(1)], username="manager").status_code == 202

    def test_viewer_may_not_upload(self, client, row_factory):
        assert upload(client, [row_factory(1)], username="demo").status_code == 403

    def test_requires_authentication(self, client, row_factory):
        response = client.post(
            "/api/v1/upload",
            files={"file": ("offers.csv", csv_bytes([row_factory(1)]), "text/csv")},
        )
        assert response.status_code == 401

    def test_unsupported_extension(self, client, row_factory):
        response = upload(client, [row_factory(1)], filename="offers.pdf")

        assert response.status_code == 400
        assert "Unsupported file type" in response.json()["detail"]

    def test_missing_file(self, client):
        response = client.post("/api/v1/upload", headers=auth_headers("admin"))
        assert response.status_code == 400

    def test_file_too_large(self, client, monkeypatch, tmp_path, row_factory):
        monkeypatch.setattr(settings, "upload_max_bytes", 10)

        response = upload(client, [row_factory(1)])

        assert response.status_code == 400
        assert list((tmp_path / "uploads").iterdir()) == []


class TestUploadJobs:
    """Tests for job status, listing, cancellation and events."""

    def test_unknown_job(self, client):
        response = client.get("/api/v1/upload/does-not-exist", headers=auth_headers("admin"))
        assert response.status_code == 404

    def test_other_users_job_is_forbidden(self, client, tracker):
        job = asyncio.run(tracker.create_job(2, "offers.csv", "csv"))

        assert client.get(f"/api/v1/upload/{job.id}", headers=auth_headers("demo")).status_code == 403
        assert client.get(f"/api/v1/upload/{job.id}", headers=auth_headers("manager")).status_code == 200
        assert client.get(f"/api/v1/upload/{job.id}", headers=auth_headers("admin")).status_code == 200

    def test_list_own_jobs(self, client, row_factory):
        upload(client, [row_factory(1)], username="admin")
        upload(client, [row_factory(2)], username="admin")
        upload(client, [row_factory(3)], username="manager")

        response = client.get("/api/v1/upload/jobs", headers=auth_headers("admin"))
        body = response.json()

        assert response.status_code == 200
        assert body["total"] == 2
        assert {item["status"] for item in body["items"]} == {"completed"}

    def test_cancel_pending_job(self, client, tracker):
        job = asyncio.run(tracker.create_job(1, "offers.csv", "csv"))

        response = client.put(f"/api/v1/upload/{job.id}/cancel", headers=auth_headers("admin"))

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["completed_at"] is not None

    def test_cancel_finished_job(self, client, row_factory):
        job_id = upload(client, [row_factory(1)]).json()["job_id"]

        response = client.put(f"/api/v1/upload/{job_id}/cancel", headers=auth_headers("admin"))

        assert response.status_code == 400

    def test_viewer_may_not_cancel(self, client, tracker):
        job = asyncio.run(tracker.create_job(3, "offers.csv", "csv"))

        response = client.put(f"/api/v1/upload/{job.id}/cancel", headers=auth_headers("demo"))

        assert response.status_code == 403

    def test_events_for_finished_job(self, client, row_factory):
        job_id = upload(client, [row_factory(1), row_factory(2)]).json()["job_id"]

        response = client.get(f"/api/v1/upload/{job_id}/events", headers=auth_headers("admin"))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        lines = response.text.strip().splitlines()
        assert lines[0] == "event: job_finished"
        payload = json.loads(lines[1][len("data: "):])
        assert payload["status"] == "completed"
        assert payload["totals"]["new_records"] == 2


class TestPropertiesAndStats:
    """Tests for property search and upload statistics."""

    def test_search_and_detail(self, client, row_factory):
        upload(client, [row_factory(1), row_factory(2), row_factory(3, propertyCity="Dallas")])
        headers = auth_headers("demo")

        response = client.get("/api/v1/properties", params={"city": "austin"}, headers=headers)
        body = response.json()

        assert response.status_code == 200
        assert body["total"] == 2
        assert [item["property_address"] for item in body["items"]] == ["1 Main St", "2 Main St"]

        property_id = body["items"][0]["id"]
        detail = client.get(f"/api/v1/properties/{property_id}", headers=headers)
        assert detail.status_code == 200
        assert detail.json()["offer"] == 1000.0

    def test_free_text_search(self, client, row_factory):
        upload(client, [row_factory(1), row_factory(2, lastName="Garcia")])

        response = client.get("/api/v1/properties", params={"q": "garcia"}, headers=auth_headers("demo"))

        assert response.json()["total"] == 1

    def test_unknown_property(self, client):
        response = client.get("/api/v1/properties/999", headers=auth_headers("demo"))
        assert response.status_code == 404

    def test_upload_stats(self, client, row_factory):
        upload(client, [row_factory(1), row_factory(2)])

        response = client.get("/api/v1/stats/uploads", params={"days": 7}, headers=auth_headers("admin"))
        body = response.json()

        assert response.status_code == 200
        assert body["days"] == 7
        assert body["total"] == 1
        assert body["completed"] == 1
        assert body["records_created"] == 2

    def test_stats_by_state_and_city(self, client, row_factory):
        upload(client, [
            row_factory(1),
            row_factory(2),
            row_factory(3, propertyCity="Dallas", offer="4000"),
            row_factory(4, propertyCity="Denver", propertyState="CO", propertyZip="80202", offer="3000"),
        ])
        headers = auth_headers("demo")

        by_state = client.get("/api/v1/stats/properties/by-state", headers=headers)
        by_city = client.get("/api/v1/stats/properties/by-city/tx", headers=headers)

        assert by_state.status_code == 200
        assert by_state.json() == [
            {"state": "TX", "count": 3, "average_offer": 2000.0},
            {"state": "CO", "count": 1, "average_offer": 3000.0},
        ]
        assert by_city.status_code == 200
        assert by_city.json() == [
            {"city": "Austin", "count": 2, "average_offer": 1000.0},
            {"city": "Dallas", "count": 1, "average_offer": 4000.0},
        ]

    @pytest.mark.parametrize("state", ["Texas", "T1", "X"])
    def test_stats_by_city_requires_state_code(self, client, state):
        response = client.get(f"/api/v1/stats/properties/by-city/{state}", headers=auth_headers("demo"))
        assert response.status_code == 400

    def test_system_stats(self, client, api_session_factory, row_factory):
        """Test counts of users, today's new and updated properties, uploads and audit entries."""
        yesterday = utcnow() - timedelta(days=1)

        async def seed():
            async with api_session_factory() as session:
                await PropertyRepository().create(
                    session,
                    property_address="1 Main St",
                    property_city="Austin",
                    property_state="TX",
                    property_zip="78701",
                    offer=500.0,
                    created_at=yesterday,
                    updated_at=yesterday,
                )
                await session.commit()

        asyncio.run(seed())
        upload(client, [row_factory(1), row_factory(2)])

        response = client.get("/api/v1/stats/system", headers=auth_headers("demo"))
        body = response.json()

        assert response.status_code == 200
        assert body["users"] == {"total": 3, "active": 3}
        assert body["properties"] == {"total": 2, "added_today": 1, "updated_today": 1}
        assert body["uploads"]["total"] == 1
        assert body["uploads"]["completed"] == 1
        assert body["uploads"]["records_updated"] == 1
        assert {entry["action"] for entry in body["recent_activities"]} == {
            "upload", "start_processing", "processing_completed"
        }

    def test_stats_require_authentication(self, client):
        assert client.get("/api/v1/stats/system").status_code == 401
        assert client.get("/api/v1/stats/properties/by-state").status_code == 401


NEW_PROPERTY = {
    "first_name": "Jane",
    "last_name": "Doe",
    "property_address": " 12  Oak  Ave ",
    "property_city": "Austin",
    "property_state": "tx",
    "property_zip": "78701-1234",
    "offer": 250000,
}


def create_property(client, username="manager", **overrides):
    return client.post("/api/v1/properties", json={**NEW_PROPERTY, **overrides}, headers=auth_headers(username))


class TestPropertyEdits:
    """Tests for creating, updating and deleting properties by hand."""

    def test_create_normalizes_like_imports(self, client):
        response = create_property(client)
        body = response.json()

        assert response.status_code == 201
        assert body["property_address"] == "12 Oak Ave"
        assert body["property_state"] == "TX"
        assert body["property_zip"] == "78701"
        assert body["offer"] == 250000.0

        detail = client.get(f"/api/v1/properties/{body['id']}", headers=auth_headers("demo"))
        assert detail.json()["property_address"] == "12 Oak Ave"

    def test_create_duplicate_address(self, client):
        create_property(client)

        response = create_property(client, property_address="12 Oak Ave", offer=1)

        assert response.status_code == 409

    @pytest.mark.parametrize("overrides", [
        {"property_state": "Texas"},
        {"property_zip": "abc123-4"},
        {"property_address": "   "},
        {"offer": -1},
    ])
    def test_create_rejects_unusable_values(self, client, overrides):
        assert create_property(client, **overrides).status_code == 422

    def test_viewer_may_not_create(self, client):
        assert create_property(client, username="demo").status_code == 403

    def test_update_offer_only(self, client):
        property_id = create_property(client).json()["id"]

        response = client.put(
            f"/api/v1/properties/{property_id}",
            json={"offer": 260000},
            headers=auth_headers("manager"),
        )
        body = response.json()

        assert response.status_code == 200
        assert body["offer"] == 260000.0
        assert body["property_address"] == "12 Oak Ave"
        assert body["first_name"] == "Jane"

    def test_update_onto_another_address(self, client):
        create_property(client)
        other_id = create_property(client, property_address="14 Oak Ave").json()["id"]

        response = client.put(
            f"/api/v1/properties/{other_id}",
            json={"property_address": "12 Oak Ave"},
            headers=auth_headers("manager"),
        )

        assert response.status_code == 409

    def test_update_unknown_property(self, client):
        response = client.put("/api/v1/properties/999", json={"offer": 1}, headers=auth_headers("admin"))
        assert response.status_code == 404

    def test_delete_is_admin_only(self, client):
        property_id = create_property(client).json()["id"]

        assert client.delete(f"/api/v1/properties/{property_id}", headers=auth_headers("manager")).status_code == 403
        assert client.delete(f"/api/v1/properties/{property_id}", headers=auth_headers("admin")).status_code == 204
        assert client.get(f"/api/v1/properties/{property_id}", headers=auth_headers("admin")).status_code == 404
        assert client.delete(f"/api/v1/properties/{property_id}", headers=auth_headers("admin")).status_code == 404

    def test_edits_are_audited(self, client):
        property_id = create_property(client).json()["id"]
        client.put(f"/api/v1/properties/{property_id}", json={"offer": 1}, headers=auth_headers("manager"))
        client.delete(f"/api/v1/properties/{property_id}", headers=auth_headers("admin"))

        activities = client.get("/api/v1/stats/system", headers=auth_headers("admin")).json()["recent_activities"]

        assert [(entry["action"], entry["entity_type"], entry["entity_id"]) for entry in activities] == [
            ("delete", "property", str(property_id)),
            ("update", "property", str(property_id)),
            ("create", "property", str(property_id)),
        ]
        assert activities[0]["user_id"] == 1
        assert activities[1]["details"] == {"changes": ["offer"]}

    def test_each_edit_drops_property_cache_off_the_event_loop(self, client, monkeypatch):
        calls = []

        def record_invalidation():
            try:
                asyncio.get_running_loop()
                calls.append("event loop")
            except RuntimeError:
                calls.append("worker thread")
            return 0

        monkeypatch.setattr(properties_router, "invalidate_property_cache", record_invalidation)

        property_id = create_property(client).json()["id"]
        client.put(f"/api/v1/properties/{property_id}", json={"offer": 1}, headers=auth_headers("manager"))
        client.delete(f"/api/v1/properties/{property_id}", headers=auth_headers("admin"))
        create_property(client, property_state="Texas")

        assert calls == ["worker thread"] * 3


class TestAuthAndHealth:
    """Tests for login and health."""

    def test_login(self, client):
        response = client.post("/api/v1/auth/token", data={"username": "admin", "password": "secret"})

        assert response.status_code == 200
        token = response.json()["access_token"]
        me = client.get("/api/v1/auth/users/me", headers={"Authorization": f"Bearer {token}"})
        assert me.json()["role"] == "admin"

    def test_login_wrong_password(self, client):
        response = client.post("/api/v1/auth/token", data={"username": "admin", "password": "nope"})
        assert response.status_code == 401

    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["cache"] == "unavailable"
