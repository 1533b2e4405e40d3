"""
Escrow Ledger API - Flask Application Factory

Builds the Flask application, wires services and middleware, and registers
the order, dispute, wallet, coupon and admin blueprints.
"""

import os
import time
from datetime import datetime
from typing import Any, Dict, Optional
from flask import Flask, jsonify

from escrow_api.config import LedgerSettings
from escrow_api.observability.config import setup_observability
from escrow_api.observability.middleware import add_observability_middleware
from escrow_api.middleware.error_handler import ErrorHandlerMiddleware, register_custom_error_handlers
from escrow_api.middleware.auth import AuthMiddleware
from escrow_api.services.hal import create_hal_formatter
from escrow_api.services.mongodb import MongoDBService
from escrow_api.services.redis import RedisService
from escrow_api.services.auth import AuthService
from escrow_api.services.amqp import create_amqp_service
from escrow_api.services.audit import AuditService
from escrow_api.services.health import HealthCheckService
from escrow_api.services.wallets import WalletService
from escrow_api.services.coupons import CouponService
from escrow_api.services.settlement import SettlementService
from escrow_api.services.orders import OrderService
from escrow_api.services.disputes import DisputeService
from escrow_api.services.idempotency import IdempotencyService
from escrow_api.services.reconciliation import ReconciliationService
from escrow_api.routes.orders import orders_bp
from escrow_api.routes.disputes import disputes_bp
from escrow_api.routes.wallets import wallets_bp
from escrow_api.routes.coupons import coupons_bp
from escrow_api.routes.admin import admin_bp
from escrow_api.routes.auth import auth_bp

SERVICE_NAME = "escrow-ledger-api"


def create_app(config: Optional[LedgerSettings] = None, services: Optional[Dict[str, Any]] = None) -> Flask:
    """
    Create the Flask application.

    Args:
        config: Settings; read from the environment when omitted
        services: Pre-built infrastructure services keyed by attribute name
            (``mongodb_service``, ``redis_service``, ``amqp_service``,
            ``auth_service``); anything missing is built from ``config``

    Returns:
        Configured Flask application
    """
    settings = config or LedgerSettings.from_env()
    services = services or {}

    setup_observability(settings.environment, settings.otel_enabled)

    app = Flask(__name__)
    app.config.update(settings.to_flask_config())
    app.started_at = time.time()

    add_observability_middleware(app)

    # Infrastructure
    mongodb_service = services.get('mongodb_service') or MongoDBService(
        settings.mongodb_uri, settings.mongodb_database
    )
    redis_service = services.get('redis_service') or RedisService(settings.redis_url)
    amqp_service = services.get('amqp_service') or create_amqp_service(settings.amqp_url, settings.amqp_exchange)
    auth_service = services.get('auth_service') or AuthService()

    # Ledger services
    audit_service = AuditService(mongodb_service)
    wallet_service = WalletService(
        mongodb_service, amqp_service, audit_service,
        min_withdrawal_minor=settings.min_withdrawal_minor
    )
    coupon_service = CouponService(mongodb_service)
    settlement_service = SettlementService(
        mongodb_service, wallet_service,
        commission_wallet_user_id=settings.commission_wallet_user_id,
        retry_age_seconds=settings.settlement_retry_age_seconds
    )
    order_service = OrderService(
        mongodb_service, settlement_service, coupon_service, amqp_service, audit_service,
        commission_rate_bps=settings.commission_rate_bps
    )
    dispute_service = DisputeService(mongodb_service, settlement_service, amqp_service, audit_service)
    idempotency_service = IdempotencyService(mongodb_service, lease_seconds=settings.idempotency_lease_seconds)
    reconciliation_service = ReconciliationService(
        mongodb_service, settlement_service, amqp_service, audit_service
    )
    health_service = HealthCheckService(
        mongodb_service, redis_service, amqp_service, service_version=settings.service_version
    )

    # Middleware
    hal_formatter = create_hal_formatter(settings.base_url)
    auth_middleware = AuthMiddleware(auth_service, redis_service)
    ErrorHandlerMiddleware(app, hal_formatter)
    register_custom_error_handlers(app, hal_formatter)

    # Make services available to routes
    app.mongodb_service = mongodb_service
    app.redis_service = redis_service
    app.amqp_service = amqp_service
    app.auth_service = auth_service
    app.audit_service = audit_service
    app.wallet_service = wallet_service
    app.coupon_service = coupon_service
    app.settlement_service = settlement_service
    app.order_service = order_service
    app.dispute_service = dispute_service
    app.idempotency_service = idempotency_service
    app.reconciliation_service = reconciliation_service
    app.health_service = health_service
    app.hal_formatter = hal_formatter
    app.auth_middleware = auth_middleware

    app.register_blueprint(orders_bp)
    app.register_blueprint(disputes_bp)
    app.register_blueprint(wallets_bp)
    app.register_blueprint(coupons_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(auth_bp)

    register_system_routes(app)
    return app


def register_system_routes(app: Flask) -> None:
    """Health, status and route reference endpoints."""

    @app.route('/api/healthz')
    def health_check():
        """Dependency health; 503 when MongoDB is unreachable."""
        health_data = app.health_service.get_comprehensive_health()
        status_code = 503 if health_data["status"] == "unhealthy" else 200

        links = {'self': app.hal_formatter.builder.link_builder.build_self_link('/api/healthz')}
        return jsonify(app.hal_formatter.builder.build_resource_response(health_data, links)), status_code

    @app.route('/api/livez')
    def liveness_check():
        """Process liveness without dependency probes."""
        return jsonify(app.health_service.get_basic_health())

    @app.route('/api/status')
    def system_status():
        """Configuration summary and uptime without dependency probes."""
        status_data = {
            "service": SERVICE_NAME,
            "version": app.config['SERVICE_VERSION'],
            "environment": app.config['ENVIRONMENT'],
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "uptime": {
                "uptime_seconds": round(time.time() - app.started_at, 2),
                "started_at": datetime.utcfromtimestamp(app.started_at).isoformat() + "Z",
                "process_id": os.getpid()
            },
            "configuration": {
                "base_url": app.config['BASE_URL'],
                "commission_rate_bps": app.config['COMMISSION_RATE_BPS'],
                "commission_wallet_configured": bool(app.config['COMMISSION_WALLET_USER_ID']),
                "min_withdrawal_minor": app.config['MIN_WITHDRAWAL_MINOR'],
                "settlement_retry_age_seconds": app.config['SETTLEMENT_RETRY_AGE_SECONDS']
            },
            "feature_flags": {
                "docs_enabled": app.config['DOCS_ENABLED'],
                "otel_enabled": app.config['OTEL_ENABLED'],
                "debug_mode": app.config['DEBUG']
            }
        }
        links = {'self': app.hal_formatter.builder.link_builder.build_self_link('/api/status')}
        return jsonify(app.hal_formatter.builder.build_resource_response(status_data, links))

    if app.config['DOCS_ENABLED']:
        @app.route('/api/docs')
        def route_reference():
            """Every registered API route with its methods and summary."""
            routes = []
            for rule in sorted(app.url_map.iter_rules(), key=lambda r: r.rule):
                if not rule.rule.startswith('/api/'):
                    continue
                view = app.view_functions[rule.endpoint]
                summary = (view.__doc__ or '').strip().splitlines()
                routes.append({
                    "path": rule.rule,
                    "methods": sorted(rule.methods - {'HEAD', 'OPTIONS'}),
                    "endpoint": rule.endpoint,
                    "summary": summary[0] if summary else None
                })
            return jsonify({"service": SERVICE_NAME, "routes": routes})
