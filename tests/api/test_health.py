"""Tests for the liveness endpoint."""


class TestHealth:
    def test_reports_healthy(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert data["uptime_seconds"] >= 0

    def test_no_identity_required(self, client):
        assert client.get("/health", headers={"X-User-Id": ""}).status_code == 200
