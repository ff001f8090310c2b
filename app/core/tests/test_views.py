"""Tests for the health check endpoint."""

from unittest.mock import patch

import pytest
from django.db import DatabaseError
from django.urls import reverse


@pytest.mark.django_db
class TestHealthCheck:
    def test_healthy(self, client):
        with patch("core.views.cache") as mock_cache:
            mock_cache.get.return_value = "ok"

            response = client.get(reverse("health-check"))

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "database": "connected",
            "cache": "connected",
        }

    def test_cache_down_is_reported_but_healthy(self, client):
        with patch("core.views.cache") as mock_cache:
            mock_cache.get.return_value = None

            response = client.get(reverse("health-check"))

        assert response.status_code == 200
        assert response.json()["cache"] == "disconnected"

    def test_database_down(self, client):
        with (
            patch("core.views.cache") as mock_cache,
            patch("core.views.connection") as mock_connection,
        ):
            mock_cache.get.return_value = "ok"
            mock_connection.cursor.side_effect = DatabaseError("connection refused")

            response = client.get(reverse("health-check"))

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
        assert response.json()["database"] == "disconnected"
