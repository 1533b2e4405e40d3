# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.

The application runs against an in-memory MongoDB (mongomock), a mocked Redis
client and a mocked AMQP publisher.
"""

import os
import pytest
import mongomock
from datetime import timedelta
from unittest.mock import MagicMock

# Set test environment
os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'

from escrow_api.app import create_app
from escrow_api.config import LedgerSettings
from escrow_api.models.base import utcnow
from escrow_api.models.entities import UserContext
from escrow_api.models.requests import CreateOrderRequest
from escrow_api.services.amqp import AMQPService
from escrow_api.services.auth import AuthService, generate_key_pair
from escrow_api.services.mongodb import MongoDBService
from escrow_api.services.redis import RedisService

ADMIN_ID = 'admin-1'
BUYER_ID = 'buyer-1'
OTHER_BUYER_ID = 'buyer-2'
SELLER_ID = 'seller-1'
OTHER_SELLER_ID = 'seller-2'


@pytest.fixture(scope="session")
def key_pair():
    """One RSA key pair for the whole run; generation is slow."""
    return generate_key_pair()


@pytest.fixture
def auth_service(key_pair):
    private_key, public_key = key_pair
    return AuthService(private_key=private_key, public_key=public_key)


@pytest.fixture
def mongo_service():
    """MongoDB service backed by mongomock."""
    return MongoDBService(database_name='escrow_ledger_test', client=mongomock.MongoClient())


@pytest.fixture
def redis_client():
    """Mocked redis-py client: nothing blocked, first request in every window."""
    client = MagicMock()
    client.ping.return_value = True
    client.exists.return_value = 0
    client.incr.return_value = 1
    client.setex.return_value = True
    client.info.return_value = {
        'redis_version': '7.2.4',
        'connected_clients': 3,
        'used_memory_human': '1.20M'
    }
    return client


@pytest.fixture
def redis_service(redis_client):
    return RedisService(client=redis_client)


@pytest.fixture
def amqp_service():
    service = MagicMock(spec=AMQPService)
    service.health_check.return_value = True
    return service


@pytest.fixture
def settings():
    return LedgerSettings(
        environment='test',
        otel_enabled=False,
        base_url='http://localhost:5000',
        commission_rate_bps=1000,
        min_withdrawal_minor=100000,
        settlement_retry_age_seconds=60
    )


@pytest.fixture
def app(settings, mongo_service, redis_service, amqp_service, auth_service):
    """Flask application wired to the test doubles."""
    app = create_app(settings, services={
        'mongodb_service': mongo_service,
        'redis_service': redis_service,
        'amqp_service': amqp_service,
        'auth_service': auth_service
    })
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def seed(mongo_service):
    """Admin user, two sellers' products and two coupons."""
    now = utcnow()
    db = mongo_service.database
    db.users.insert_many([
        {"_id": ADMIN_ID, "role": "admin", "email": "admin@example.com", "createdAt": now},
        {"_id": BUYER_ID, "role": "buyer", "email": "buyer@example.com", "createdAt": now},
        {"_id": SELLER_ID, "role": "seller", "email": "seller@example.com", "createdAt": now},
    ])
    db.products.insert_many([
        {"_id": "prod-1", "name": "Ankara Fabric", "sellerId": SELLER_ID, "price": 500000,
         "discount": 0, "stock": 10, "createdAt": now, "updatedAt": now},
        {"_id": "prod-2", "name": "Leather Sandals", "sellerId": SELLER_ID, "price": 200000,
         "discount": 10, "stock": 1, "createdAt": now, "updatedAt": now},
        {"_id": "prod-3", "name": "Shea Butter", "sellerId": OTHER_SELLER_ID, "price": 150000,
         "discount": 0, "stock": 5, "createdAt": now, "updatedAt": now},
    ])
    db.coupons.insert_many([
        {"_id": "SAVE10", "discount": 10, "type": "percentage",
         "expiresAt": now + timedelta(days=7), "usedBy": []},
        {"_id": "OLD500", "discount": 50000, "type": "fixed",
         "expiresAt": now - timedelta(days=1), "usedBy": []},
    ])
    return db


def _context(user_id, role):
    return UserContext(user_id=user_id, role=role, ip_address="127.0.0.1", user_agent="pytest")


@pytest.fixture
def buyer_context():
    return _context(BUYER_ID, "buyer")


@pytest.fixture
def other_buyer_context():
    return _context(OTHER_BUYER_ID, "buyer")


@pytest.fixture
def seller_context():
    return _context(SELLER_ID, "seller")


@pytest.fixture
def other_seller_context():
    return _context(OTHER_SELLER_ID, "seller")


@pytest.fixture
def admin_context():
    return _context(ADMIN_ID, "admin")


@pytest.fixture
def make_headers(auth_service):
    """Build request headers with a bearer token and optional Idempotency-Key."""
    def _make(user_id, role, idempotency_key=None):
        token = auth_service.generate_access_token(user_id, role)
        headers = {'Authorization': f'Bearer {token}'}
        if idempotency_key:
            headers['Idempotency-Key'] = idempotency_key
        return headers
    return _make


@pytest.fixture
def place_order(app, seed, buyer_context):
    """Check out a single-seller cart through the service layer: 2 x prod-1 by default."""
    def _place(user_context=None, items=None, coupon_code=None):
        request = CreateOrderRequest(
            items=items or [{"productId": "prod-1", "quantity": 2}],
            delivery_address="12 Admiralty Way, Lekki",
            coupon_code=coupon_code
        )
        [order] = app.order_service.checkout(user_context or buyer_context, request)
        return order
    return _place
