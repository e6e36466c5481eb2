"""Integration tests for the /api/v1 JSON API served next to the MCP endpoint."""

from __future__ import annotations

import json

import pytest
from starlette.testclient import TestClient

from youphoria.core.config.settings import Settings
from youphoria.core.llm.providers.mock import MockProvider
from youphoria.core.server.app import create_app
from youphoria.core.server.middleware import build_middleware

USER = {"X-User-Id": "user-1"}

LAB_PANEL = {
    "dataType": "lab_results",
    "dateRange": {"start": "2026-01-10", "end": "2026-01-10"},
    "entries": [{"date": "2026-01-10", "category": "medical", "metrics": {"ldl_mg_dl": 130}}],
    "summary": "Lipid panel",
    "confidence": 0.9,
}


def _weight(value, unit, at="2026-02-01T08:30:00Z"):
    return {"fieldName": "Weight", "value": value, "unit": unit, "recordedAt": at}


@pytest.fixture
def settings(tmp_path):
    return Settings(
        llm_provider="mock",
        db_path=":memory:",
        blob_storage_path=str(tmp_path / "uploads"),
        rate_limit_max_requests=100,
    )


@pytest.fixture
def provider():
    return MockProvider("Here is a look at your data.")


@pytest.fixture
def make_client(settings, provider):
    def factory(**overrides):
        app_settings = settings.model_copy(update=overrides) if overrides else settings
        server = create_app(settings=app_settings, provider_override=provider)
        return TestClient(server.http_app(middleware=build_middleware(app_settings)))
    return factory


@pytest.fixture
def client(make_client):
    return make_client()


class TestEnvelope:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["status"] == "ok"
        assert body["data"]["llm_provider"] == "mock"

    def test_api_info(self, client):
        body = client.get("/api/v1").json()
        assert body["success"] is True
        assert body["data"]["endpoints"]["chat"] == "/api/v1/chat"

    def test_missing_user_is_validation_error(self, client):
        response = client.get("/api/v1/chat/conversations")
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "validation_error"
        assert "X-User-Id" in body["error"]["message"]

    def test_user_id_from_query(self, client):
        response = client.get("/api/v1/chat/conversations", params={"userId": "user-1"})
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": []}

    def test_invalid_json_body(self, client):
        response = client.post(
            "/api/v1/chat/message",
            content=b"{not json",
            headers={**USER, "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Request body is not valid JSON"

    def test_bad_limit(self, client):
        response = client.get("/api/v1/health/records", params={"limit": "abc"}, headers=USER)
        assert response.status_code == 400


class TestChat:
    def test_message_then_history(self, client):
        response = client.post("/api/v1/chat/message", json={"message": "How did I sleep?"}, headers=USER)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["reply"] == "Here is a look at your data."
        assert data["reply_saved"] is True
        conversation_id = data["conversation_id"]

        conversation = client.get(f"/api/v1/chat/conversations/{conversation_id}", headers=USER).json()["data"]
        assert conversation["title"] == "How did I sleep?"
        assert [m["role"] for m in conversation["messages"]] == ["user", "assistant"]

    def test_empty_message(self, client):
        response = client.post("/api/v1/chat/message", json={"message": "   "}, headers=USER)
        assert response.status_code == 400

    def test_model_failure_is_502(self, client, provider):
        provider.error = RuntimeError("upstream down")
        response = client.post("/api/v1/chat/message", json={"message": "Hi"}, headers=USER)
        assert response.status_code == 502
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "external_service_error"
        assert "upstream down" not in body["error"]["message"]

    def test_conversation_crud(self, client):
        created = client.post("/api/v1/chat/conversations", json={}, headers=USER)
        assert created.status_code == 201
        conversation_id = created.json()["data"]["id"]
        assert created.json()["data"]["title"] == "New conversation"

        renamed = client.patch(
            f"/api/v1/chat/conversations/{conversation_id}", json={"title": "Sleep"}, headers=USER,
        )
        assert renamed.json()["data"]["title"] == "Sleep"

        listed = client.get("/api/v1/chat/conversations", headers=USER).json()["data"]
        assert [c["id"] for c in listed] == [conversation_id]

        deleted = client.delete(f"/api/v1/chat/conversations/{conversation_id}", headers=USER)
        assert deleted.json()["data"] == {"id": conversation_id, "deleted": True}
        missing = client.get(f"/api/v1/chat/conversations/{conversation_id}", headers=USER)
        assert missing.status_code == 404

    def test_conversations_are_per_user(self, client):
        conversation_id = client.post("/api/v1/chat/conversations", json={}, headers=USER).json()["data"]["id"]
        other = client.get(f"/api/v1/chat/conversations/{conversation_id}", headers={"X-User-Id": "user-2"})
        assert other.status_code == 404


class TestUploads:
    def test_upload_list_get_delete(self, client, provider):
        provider.response_content = json.dumps(LAB_PANEL)
        response = client.post(
            "/api/v1/upload/file",
            files={"file": ("labs.pdf", b"%PDF-1.7 labs", "application/pdf")},
            headers=USER,
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["records_created"] == 1
        file_id = data["file"]["id"]

        listed = client.get("/api/v1/upload/files", headers=USER).json()["data"]
        assert [f["id"] for f in listed] == [file_id]
        assert "extracted_data" not in listed[0]

        detail = client.get(f"/api/v1/upload/files/{file_id}", headers=USER).json()["data"]
        assert detail["extracted_data"]["summary"] == "Lipid panel"

        deleted = client.delete(f"/api/v1/upload/files/{file_id}", headers=USER)
        assert deleted.json()["data"]["deleted"] is True
        assert client.get(f"/api/v1/upload/files/{file_id}", headers=USER).status_code == 404

    def test_upload_without_file(self, client):
        response = client.post("/api/v1/upload/file", data={"note": "x"}, headers=USER)
        assert response.status_code == 400

    def test_disallowed_type(self, client, provider):
        response = client.post(
            "/api/v1/upload/file",
            files={"file": ("run.exe", b"MZ", "application/x-msdownload")},
            headers=USER,
        )
        assert response.status_code == 400
        assert provider.call_count == 0


class TestHealthData:
    def test_sync_and_canonical_records(self, client):
        manual = client.post(
            "/api/v1/health/sync",
            json={"sourceApp": "Manual Entry", "records": [{"fieldName": "weight_kg", "value": 82.3,
                                                             "recordedAt": "2026-02-01T08:30:00Z"}]},
            headers=USER,
        )
        assert manual.status_code == 200
        device = client.post(
            "/api/v1/health/sync",
            json={"sourceApp": "Health Connect", "records": [_weight(82.5, "kg")]},
            headers=USER,
        )
        assert device.json()["data"]["records"]["inserted"] == 1

        every = client.get("/api/v1/health/records", headers=USER).json()["data"]
        assert len(every) == 2
        canonical = client.get(
            "/api/v1/health/records", params={"canonicalOnly": "true"}, headers=USER,
        ).json()["data"]
        assert [r["source_app"] for r in canonical] == ["Health Connect"]
        assert canonical[0]["unit"] == "lbs"

    def test_sync_reports_unmapped_fields(self, client):
        response = client.post(
            "/api/v1/health/sync",
            json={"sourceApp": "Health Connect", "records": [_weight(82.5, "kg"),
                                                             {"fieldName": "Aura", "value": 3,
                                                              "recordedAt": "2026-02-01T08:30:00Z"}]},
            headers=USER,
        )
        assert response.status_code == 200
        records = response.json()["data"]["records"]
        assert records["inserted"] == 1
        assert records["failed"] == 1

    def test_sync_malformed_metadata_and_event_time_are_partial(self, client):
        response = client.post(
            "/api/v1/health/sync",
            json={
                "sourceApp": "Health Connect",
                "records": [_weight(82.5, "kg"), {**_weight(82.4, "kg", at="2026-02-02T08:30:00Z"),
                                                  "metadata": "oops"}],
                "events": [{"eventType": "workout", "startTime": "2026-02-01T17:00:00Z", "endTime": 1738400000}],
            },
            headers=USER,
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["records"]["inserted"] == 1
        assert data["records"]["failed"] == 1
        assert data["events"]["failed"] == 1

    def test_sync_requires_source(self, client):
        response = client.post("/api/v1/health/sync", json={"records": []}, headers=USER)
        assert response.status_code == 400

    def test_sync_rejects_malformed_record(self, client):
        response = client.post(
            "/api/v1/health/sync",
            json={"sourceApp": "Health Connect", "records": [{"fieldName": "Weight"}]},
            headers=USER,
        )
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "records[0].value is required"

    def test_deduplicate(self, client):
        client.post(
            "/api/v1/health/sync",
            json={"sourceApp": "Health Connect", "records": [_weight(82.5, "kg")]},
            headers=USER,
        )
        response = client.post(
            "/api/v1/health/deduplicate", json={"sourceApp": "Health Connect"}, headers=USER,
        )
        assert response.status_code == 200
        assert response.json()["data"]["metric_types"] == ["weight"]

    def test_context_requires_query(self, client):
        assert client.get("/api/v1/health/context", headers=USER).status_code == 400
        response = client.get("/api/v1/health/context", params={"q": "how did I sleep?"}, headers=USER)
        assert response.status_code == 200
        assert response.json()["data"]["has_health_data"] is False


class TestSourcesAndAccount:
    def test_connect_source_hides_credentials(self, client):
        response = client.put(
            "/api/v1/sources",
            json={"appName": "Strong", "credentials": {"token": "secret"}},
            headers=USER,
        )
        assert response.status_code == 200
        assert "credentials" not in response.json()["data"]

        listed = client.get("/api/v1/sources", headers=USER).json()["data"]
        assert [s["app_name"] for s in listed] == ["Strong"]
        assert "secret" not in json.dumps(listed)

    def test_unknown_source(self, client):
        response = client.put("/api/v1/sources", json={"appName": "Fitbot 9000"}, headers=USER)
        assert response.status_code == 400

    def test_delete_my_data(self, client):
        client.post(
            "/api/v1/health/sync",
            json={"sourceApp": "Health Connect", "records": [_weight(82.5, "kg")]},
            headers=USER,
        )
        client.post("/api/v1/chat/message", json={"message": "Hi"}, headers=USER)

        response = client.delete("/api/v1/users/me/data", headers=USER)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["records"] == 1
        assert data["sources"] == 1
        assert data["conversations"] == 1
        assert client.get("/api/v1/health/records", headers=USER).json()["data"] == []


class TestRateLimit:
    def test_api_requests_limited_per_client(self, make_client):
        client = make_client(rate_limit_max_requests=2)
        assert client.get("/api/v1").status_code == 200
        second = client.get("/api/v1")
        assert second.headers["X-RateLimit-Remaining"] == "0"

        limited = client.get("/api/v1")
        assert limited.status_code == 429
        assert limited.json()["error"]["code"] == "rate_limited"
        assert "Retry-After" in limited.headers

    def test_health_not_limited(self, make_client):
        client = make_client(rate_limit_max_requests=1)
        for _ in range(3):
            assert client.get("/health").status_code == 200
