# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for fixed-window rate limiting on money-moving endpoints.
"""

from unittest.mock import MagicMock

from escrow_api.middleware.rate_limit import RateLimiter

DEPOSIT = {"amount": 5000, "reference": "PSK-RL"}


class TestRateLimiter:

    def test_within_limit(self):
        redis_service = MagicMock()
        redis_service.increment.return_value = 3
        info = RateLimiter(redis_service, MagicMock()).check_rate_limit("user:u-1", "deposit", 30, 60)

        assert info["allowed"] is True
        assert info["remaining"] == 27
        assert info["retry_after"] == 0
        assert info["reset_time"] % 60 == 0

    def test_over_limit(self):
        redis_service = MagicMock()
        redis_service.increment.return_value = 31
        info = RateLimiter(redis_service, MagicMock()).check_rate_limit("user:u-1", "deposit", 30, 60)

        assert info["allowed"] is False
        assert info["remaining"] == 0
        assert 0 < info["retry_after"] <= 60

    def test_redis_failure_fails_open(self):
        redis_service = MagicMock()
        redis_service.increment.side_effect = ConnectionError("redis down")
        info = RateLimiter(redis_service, MagicMock()).check_rate_limit("user:u-1", "deposit", 30, 60)
        assert info["allowed"] is True

    def test_window_key(self):
        key = RateLimiter.get_rate_limit_key("user:u-1", "wallets.deposit", 60)
        assert key.startswith("rate_limit:user:u-1:wallets.deposit:")


class TestRateLimitedEndpoints:

    def test_headers_on_success(self, client, make_headers, redis_client):
        redis_client.incr.return_value = 5
        response = client.post("/api/wallets/me/deposits", json=DEPOSIT,
                               headers=make_headers("buyer-1", "buyer", "rl-1"))

        assert response.status_code == 201
        assert response.headers["X-RateLimit-Limit"] == "30"
        assert response.headers["X-RateLimit-Remaining"] == "25"
        assert "Retry-After" not in response.headers

    def test_counter_is_per_user(self, client, make_headers, redis_client):
        client.post("/api/wallets/me/deposits", json=DEPOSIT, headers=make_headers("buyer-1", "buyer", "rl-2"))
        key = redis_client.incr.call_args.args[0]
        assert key.startswith("rate_limit:user:buyer-1:wallets.deposit:")

    def test_limit_exceeded(self, app, client, make_headers, redis_client):
        redis_client.incr.return_value = 31
        response = client.post("/api/wallets/me/deposits", json=DEPOSIT,
                               headers=make_headers("buyer-1", "buyer", "rl-3"))

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) > 0
        assert response.get_json()["type"].endswith("/rate-limit-exceeded")
        assert app.wallet_service.get_wallet("buyer-1").balance == 0

    def test_reads_are_not_limited(self, client, make_headers, redis_client):
        client.get("/api/wallets/me", headers=make_headers("buyer-1", "buyer"))
        redis_client.incr.assert_not_called()
