"""API endpoint tests"""

import pytest
from fastapi.testclient import TestClient

from lifesync.core.config import settings
from lifesync.main import app

OWNER = {"X-Owner-Id": "user-1"}


@pytest.fixture
def client(service, monkeypatch):
    monkeypatch.setattr(settings, "SYNC_ENABLED", False)
    monkeypatch.setattr(settings, "STORAGE_BACKEND", "memory")
    app.state.ingestion_service = service
    with TestClient(app) as client:
        yield client
    del app.state.ingestion_service


def ingest(client, payload, domain="financial", **extra):
    body = {"source_id": "manual", "domain": domain, "timestamp": "2026-03-02T11:00:00Z", "payload": payload}
    body.update(extra)
    return client.post("/ingest", json=body, headers=OWNER)


class TestHealthEndpoints:
    """Test health check endpoints"""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["storage"] == "memory: ok"
        assert body["scheduler_running"] is False

    def test_readiness(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"


class TestConnectionEndpoints:
    """Test connection endpoints"""

    def test_owner_header_required(self, client):
        assert client.get("/connections").status_code == 422

    def test_list_providers(self, client):
        response = client.get("/connections/providers")
        assert response.status_code == 200
        assert {p["id"] for p in response.json()} == {"acme_health", "acme_bank"}

    def test_oauth_round_trip(self, client):
        start = client.post("/connections/oauth/acme_health/start", headers=OWNER)
        assert start.status_code == 200
        state = start.json()["state"]
        assert f"state={state}" in start.json()["redirect_url"]

        callback = client.get(
            "/connections/oauth/acme_health/callback",
            params={"code": "auth-code", "state": state},
            headers=OWNER,
        )
        assert callback.status_code == 200
        connection_id = callback.json()["connection_id"]

        listed = client.get("/connections", headers=OWNER).json()
        assert [c["id"] for c in listed] == [connection_id]
        assert listed[0]["status"] == "connected"
        assert "credential_ref" in listed[0]

    def test_oauth_token_failure(self, client, provider_api):
        provider_api.token_status = 400
        state = client.post("/connections/oauth/acme_health/start", headers=OWNER).json()["state"]

        callback = client.get(
            "/connections/oauth/acme_health/callback",
            params={"code": "bad", "state": state},
            headers=OWNER,
        )
        assert callback.status_code == 400
        assert "Token exchange failed" in callback.json()["error"]
        assert client.get("/connections", headers=OWNER).json() == []

    def test_unsupported_provider_start(self, client):
        response = client.post("/connections/oauth/nope/start", headers=OWNER)
        assert response.status_code == 400
        assert response.json()["detail"] == "Unsupported provider: nope"

    def test_credentials_connect_and_delete(self, client):
        response = client.post(
            "/connections/credentials",
            json={"provider_id": "acme_bank", "kind": "api_key", "credentials": {"api_key": "sk"}},
            headers=OWNER,
        )
        assert response.status_code == 200
        connection_id = response.json()["connection_id"]

        assert client.get(f"/connections/{connection_id}", headers={"X-Owner-Id": "user-2"}).status_code == 404

        revoked = client.post(f"/connections/{connection_id}/revoke", headers=OWNER)
        assert revoked.json()["status"] == "disconnected"

        assert client.delete(f"/connections/{connection_id}", headers=OWNER).status_code == 204
        assert client.get(f"/connections/{connection_id}", headers=OWNER).status_code == 404

    def test_expiring_credentials_and_rotation(self, client, service):
        state = client.post("/connections/oauth/acme_health/start", headers=OWNER).json()["state"]
        client.get("/connections/oauth/acme_health/callback", params={"code": "c", "state": state}, headers=OWNER)

        expiring = client.get("/connections/credentials/expiring", params={"days_ahead": 1}, headers=OWNER).json()
        assert [s["provider"] for s in expiring] == ["acme_health"]
        assert "encrypted_payload" not in expiring[0]

        rotated = client.post("/connections/credentials/rotate", headers=OWNER).json()
        assert rotated == {"rotated": 0, "key_id": service.secret_store.cipher.key_id}


class TestSyncEndpoints:
    """Test sync trigger and policy endpoints"""

    def _connect(self, client):
        response = client.post(
            "/connections/credentials",
            json={"provider_id": "acme_bank", "kind": "api_key", "credentials": {"api_key": "sk"}},
            headers=OWNER,
        )
        return response.json()["connection_id"]

    def test_trigger_and_inspect(self, client):
        connection_id = self._connect(client)

        result = client.post(f"/sync/{connection_id}", headers=OWNER)
        assert result.status_code == 200
        assert result.json()["success"] is True

        policy = client.get(f"/sync/policies/{connection_id}", headers=OWNER).json()
        assert policy["failure_count"] == 0

        runs = client.get("/stats/runs", headers=OWNER).json()
        assert runs[0]["connection_id"] == connection_id
        assert runs[0]["status"] == "success"

        summary = client.get("/stats/connections", headers=OWNER).json()
        assert summary[0]["last_run_status"] == "success"
        assert summary[0]["sync_active"] is True

    def test_foreign_connection_not_found(self, client):
        connection_id = self._connect(client)
        response = client.post(f"/sync/{connection_id}", headers={"X-Owner-Id": "user-2"})
        assert response.status_code == 404
        assert client.get("/stats/runs", headers={"X-Owner-Id": "user-2"}).json() == []

    def test_tick_and_stats(self, client):
        self._connect(client)
        assert client.post("/sync/tick", headers=OWNER).json() == {}
        stats = client.get("/sync/stats", headers=OWNER).json()
        assert stats["total_sources"] == 1
        assert stats["active_sources"] == 1

        other = client.get("/sync/stats", headers={"X-Owner-Id": "user-2"}).json()
        assert other["total_sources"] == 0

    def test_tick_and_stats_require_owner(self, client):
        assert client.post("/sync/tick").status_code == 422
        assert client.get("/sync/stats").status_code == 422

    def test_reenable(self, client):
        connection_id = self._connect(client)
        response = client.post(f"/sync/{connection_id}/reenable", headers=OWNER)
        assert response.status_code == 200
        assert response.json()["active"] is True


class TestDataEndpoints:
    """Test ingest and data query endpoints"""

    def test_ingest_and_query(self, client):
        created = ingest(client, {"amount": -25.5, "currency": "USD", "memo": "coffee"})
        assert created.status_code == 201
        record = created.json()
        assert "expense" in record["tags"]

        ingest(client, {"amount": 100, "currency": "EUR"})

        response = client.get("/data", params={"tags": ["expense", "negative"]}, headers=OWNER)
        assert response.status_code == 200
        body = response.json()
        assert "request_id" in body
        assert "api_latency_ms" in body
        assert [r["id"] for r in body["data"]] == [record["id"]]

        assert client.get("/data", params={"domain": "financial"}, headers=OWNER).json()["count"] == 2
        assert client.get("/data", headers={"X-Owner-Id": "user-2"}).json()["count"] == 0

    def test_invalid_record_rejected(self, client):
        response = ingest(client, {"amount": "lots"})
        assert response.status_code == 422
        assert "Amount must be a number" in response.json()["errors"]

    def test_bad_date_window(self, client):
        response = client.get(
            "/data", params={"start": "2026-03-02T00:00:00Z", "end": "2026-03-01T00:00:00Z"}, headers=OWNER
        )
        assert response.status_code == 422

    def test_date_window(self, client):
        ingest(client, {"amount": -1})
        inside = client.get("/data", params={"start": "2026-03-02T00:00:00Z"}, headers=OWNER).json()
        outside = client.get("/data", params={"end": "2026-03-01T00:00:00Z"}, headers=OWNER).json()
        assert inside["count"] == 1
        assert outside["count"] == 0

    def test_search_and_stats(self, client):
        ingest(client, {"amount": -25.5, "memo": "coffee"})
        ingest(client, {"steps": 9000}, domain="health")

        found = client.get("/data/search", params={"q": "coffee"}, headers=OWNER).json()
        assert found["count"] == 1

        stats = client.get("/data/stats", headers=OWNER).json()
        assert stats["total_records"] == 2
        assert stats["records_by_domain"] == {"financial": 1, "health": 1}

    def test_update_and_delete(self, client):
        record_id = ingest(client, {"amount": -3}).json()["id"]

        patched = client.patch(f"/data/{record_id}", json={"tags": ["snack"]}, headers=OWNER)
        assert patched.status_code == 200
        assert patched.json()["tags"] == ["snack"]
        assert client.get("/data", params={"tags": "snack"}, headers=OWNER).json()["count"] == 1

        assert client.delete(f"/data/{record_id}", headers=OWNER).status_code == 204
        assert client.get(f"/data/{record_id}", headers=OWNER).status_code == 404

    def test_csv_upload(self, client):
        csv_text = "timestamp,amount,currency\n2026-03-02T10:00:00Z,-9.99,USD\n,1,USD\n"
        response = client.post(
            "/ingest/csv",
            files={"file": ("data.csv", csv_text, "text/csv")},
            data={"domain": "financial"},
            headers=OWNER,
        )
        assert response.status_code == 200
        summary = response.json()
        assert summary["received"] == 2
        assert summary["stored"] == 1
        assert summary["rejected"] == 1

    def test_csv_upload_rejects_non_utf8(self, client):
        response = client.post(
            "/ingest/csv",
            files={"file": ("data.csv", "timestamp,memo\n2026-03-02T10:00:00Z,caf\xe9\n".encode("latin-1"), "text/csv")},
            headers=OWNER,
        )
        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"
