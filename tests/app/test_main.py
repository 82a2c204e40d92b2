"""
Unit tests for the FastAPI application.

These tests verify that the app mounts the evaluation router and that
the health endpoint works.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from prompt_tracker_core.evals.registry import EvaluatorRegistry


class TestAppHealth:
    """Tests for the health endpoint."""

    def test_health_endpoint_returns_ok(self, test_client):
        """The /health endpoint should return status ok."""
        response = test_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_health_endpoint_includes_service_name(self, test_client):
        """The /health endpoint should include the service name."""
        from prompt_tracker_core.config import settings

        response = test_client.get("/health")

        assert response.json()["service"] == settings.SERVICE_NAME


class TestAppRouterMounting:
    """Tests for router mounting under the correct prefix."""

    def test_evaluation_router_mounted_under_evaluation_prefix(self, test_client):
        """Evaluation endpoints should be accessible under /evaluation/*."""
        with patch("app.evaluation.factory.get_evaluator_registry", return_value=EvaluatorRegistry()):
            response = test_client.get("/evaluation/evaluators")

        assert response.status_code == 200
        assert len(response.json()) > 0

    def test_unprefixed_routes_are_not_mounted(self, test_client):
        assert test_client.get("/evaluators").status_code == 404


class TestAppCORS:
    """Tests for CORS configuration."""

    def test_cors_allows_localhost_origin(self, test_client):
        """CORS should allow requests from localhost development servers."""
        response = test_client.options(
            "/health",
            headers={
                "Origin": "http://localhost:5173",
                "Access-Control-Request-Method": "GET",
            },
        )

        assert "access-control-allow-origin" in response.headers


class TestAppOpenAPI:
    """Tests for OpenAPI documentation."""

    def test_openapi_schema_lists_evaluation_paths(self, test_client):
        response = test_client.get("/openapi.json")

        assert response.status_code == 200
        assert "/evaluation/test-runs" in response.json()["paths"]

    def test_docs_endpoint_available(self, test_client):
        """The Swagger UI should be accessible at /docs."""
        response = test_client.get("/docs")

        assert response.status_code == 200


# --- Fixtures ---


@pytest.fixture
def test_client():
    """
    Provides a TestClient for the FastAPI app.
    """
    from app.main import app

    return TestClient(app)
