"""
Tests for the FastAPI application: health endpoints, request correlation
and error envelopes.
"""

from unittest.mock import AsyncMock, patch


class TestHealthEndpoints:
    """Test suite for health check endpoints."""

    def test_health_check(self, test_client):
        """Test basic health check returns 200 with service info."""
        response = test_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "Storefront Orders API"
        assert data["environment"] == "test"

    def test_readiness_when_database_up(self, test_client):
        """Test readiness check reports ready and a running audit writer."""
        with patch(
            "storefront.main.check_database_health",
            AsyncMock(return_value=True),
        ):
            response = test_client.get("/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["database"] == "healthy"
        assert data["audit_writer"] == "running"

    def test_readiness_when_database_down(self, test_client):
        """Test readiness check returns 503 when the database is unreachable."""
        with patch(
            "storefront.main.check_database_health",
            AsyncMock(return_value=False),
        ):
            response = test_client.get("/ready")

        assert response.status_code == 503
        assert response.json()["database"] == "unhealthy"


class TestRequestCorrelation:
    """Tests for the request logging middleware."""

    def test_request_id_echoed(self, test_client):
        response = test_client.get("/health", headers={"X-Request-ID": "abc-123"})

        assert response.headers["X-Request-ID"] == "abc-123"

    def test_request_id_generated(self, test_client):
        response = test_client.get("/health")

        assert len(response.headers["X-Request-ID"]) == 36


class TestErrorEnvelope:
    """Tests for the global error handlers."""

    def test_unknown_route(self, test_client):
        response = test_client.get("/api/nowhere")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "Not Found"
        assert body["code"] is None

    def test_request_id_in_error_body(self, test_client):
        response = test_client.get("/api/nowhere", headers={"X-Request-ID": "req-404"})

        assert response.json()["request_id"] == "req-404"
