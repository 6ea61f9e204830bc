"""Tests for the health check endpoint."""

from unittest.mock import patch

import pytest
from django.db import DatabaseError


@pytest.mark.django_db
class TestHealthCheck:
    def test_healthy(self, client, settings):
        settings.STRIPE_SECRET_KEY = "sk_test_123"

        with patch("core.views.cache") as mock_cache:
            mock_cache.get.return_value = "ok"
            response = client.get("/health/")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "database": "connected",
            "cache": "connected",
            "stripe": "configured",
        }

    def test_cache_failure_degrades_only(self, client):
        with patch("core.views.cache") as mock_cache:
            mock_cache.set.side_effect = ConnectionError("redis down")
            response = client.get("/health/")

        assert response.status_code == 200
        assert response.json()["cache"] == "disconnected"

    def test_database_failure_is_unhealthy(self, client):
        with patch("core.views.connection") as mock_connection, patch("core.views.cache"):
            mock_connection.cursor.side_effect = DatabaseError("gone")
            response = client.get("/health/")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_missing_stripe_key_reported(self, client, settings):
        settings.STRIPE_SECRET_KEY = ""

        with patch("core.views.cache") as mock_cache:
            mock_cache.get.return_value = "ok"
            response = client.get("/health/")

        assert response.json()["stripe"] == "missing_key"

    def test_post_not_allowed(self, client):
        assert client.post("/health/").status_code == 405
