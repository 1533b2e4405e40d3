# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the dependency health endpoint.
"""

from unittest.mock import patch

from escrow_api.services.health import HealthCheckService


class TestHealthEndpoint:
    """MongoDB is critical; Redis and the broker only degrade the service."""

    def test_all_dependencies_healthy(self, client):
        response = client.get("/api/healthz")

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["service"] == "escrow-ledger-api"
        assert set(data["dependencies"]) == {"mongodb", "redis", "amqp"}
        assert data["dependencies"]["redis"]["version"] == "7.2.4"
        assert data["_links"]["self"]["href"] == "http://localhost:5000/api/healthz"

    def test_redis_down_degrades(self, client, redis_client):
        redis_client.ping.side_effect = ConnectionError("redis down")
        response = client.get("/api/healthz")

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "degraded"
        assert data["dependencies"]["redis"]["error"] == "redis down"

    def test_broker_down_degrades(self, client, amqp_service):
        amqp_service.health_check.return_value = False
        response = client.get("/api/healthz")

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "degraded"
        assert data["dependencies"]["amqp"]["error"] == "AMQP broker unreachable"

    def test_mongodb_down_is_unhealthy(self, app, client):
        with patch.object(app.mongodb_service, 'health_check',
                          return_value={"status": "unhealthy", "error": "timed out", "database": "escrow_ledger_test"}):
            response = client.get("/api/healthz")

        assert response.status_code == 503
        assert response.get_json()["status"] == "unhealthy"


class TestOverallStatus:

    def test_status_rules(self):
        determine = HealthCheckService._determine_overall_status
        assert determine("healthy", ["healthy", "healthy"]) == "healthy"
        assert determine("healthy", ["unhealthy", "healthy"]) == "degraded"
        assert determine("unhealthy", ["healthy", "healthy"]) == "unhealthy"

    def test_liveness_touches_nothing(self, app, client, amqp_service):
        with patch.object(app.mongodb_service, "health_check") as mongo_check:
            response = client.get("/api/livez")
        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"
        mongo_check.assert_not_called()
        amqp_service.health_check.assert_not_called()
