"""
Unit Tests for Health Check Endpoints

Tests the /api/v1/health endpoint and the API root.
"""

import pytest
from fastapi.testclient import TestClient

from querypilot.api.main import app


class TestHealthEndpoint:
    """Test suite for health check endpoint."""

    @pytest.fixture
    def client(self):
        """Create test client."""
        return TestClient(app)

    def test_health_returns_200(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200

    def test_health_returns_correct_structure(self, client):
        """Test that health endpoint returns correct response structure."""
        data = client.get("/api/v1/health").json()

        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert isinstance(data["timestamp"], str)

    def test_root(self, client):
        data = client.get("/").json()

        assert data["name"] == "QueryPilot API"
        assert data["docs"] == "/docs"
