# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Order endpoints: checkout, reads and lifecycle transitions.
"""

from flask import Blueprint, current_app
from opentelemetry import trace
import logging

from escrow_api.middleware.auth import require_jwt, require_role
from escrow_api.middleware.idempotency import idempotent
from escrow_api.middleware.rate_limit import rate_limit_money
from escrow_api.middleware.validation import validate_json, validate_query
from escrow_api.models.entities import UserContext
from escrow_api.models.enums import UserRole
from escrow_api.models.requests import (
    CancelOrderRequest,
    CreateOrderRequest,
    OrderFilters,
    TrackingUpdateRequest
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

orders_bp = Blueprint('orders', __name__, url_prefix='/api/orders')


@orders_bp.post('')
@require_jwt
@rate_limit_money
@idempotent('orders.create', required=True)
@validate_json(CreateOrderRequest)
def create_order(user_context: UserContext, body: CreateOrderRequest):
    """Check out a cart as one order per seller."""
    orders = current_app.order_service.checkout(user_context, body)
    response = current_app.hal_formatter.format_checkout(orders, user_context)
    headers = {}
    if len(orders) == 1:
        headers['Location'] = f"/api/orders/{orders[0].id}"
    return response, 201, headers


@orders_bp.get('')
@require_jwt
@validate_query(OrderFilters)
def list_orders(user_context: UserContext, query: OrderFilters):
    """List orders for the caller's buyer, seller or admin view."""
    orders, total = current_app.order_service.list_orders(
        user_context,
        view=query.role,
        status=query.status,
        page=query.page,
        page_size=query.page_size
    )
    filters = {'role': query.role, 'status': query.status}
    return current_app.hal_formatter.format_order_collection(
        orders, total, query.page, query.page_size, user_context, filters
    )


@orders_bp.get('/<order_id>')
@require_jwt
def get_order(user_context: UserContext, order_id: str):
    order = current_app.order_service.get_order(user_context, order_id)
    return current_app.hal_formatter.format_order(order, user_context)


@orders_bp.post('/<order_id>/confirm')
@require_jwt
@idempotent('orders.confirm')
def confirm_delivery(user_context: UserContext, order_id: str):
    """Buyer confirms delivery and releases the seller's escrow."""
    order = current_app.order_service.confirm_delivery(user_context, order_id)
    return current_app.hal_formatter.format_order(order, user_context)


@orders_bp.post('/<order_id>/release')
@require_jwt
@require_role(UserRole.ADMIN)
@idempotent('orders.release')
def release_order(user_context: UserContext, order_id: str):
    """Admin releases a running order's funds to the seller."""
    order = current_app.order_service.release_by_admin(user_context, order_id)
    return current_app.hal_formatter.format_order(order, user_context)


@orders_bp.post('/<order_id>/cancel')
@require_jwt
@idempotent('orders.cancel')
@validate_json(CancelOrderRequest)
def cancel_order(user_context: UserContext, order_id: str, body: CancelOrderRequest):
    """Buyer or seller cancels an order the seller has not acknowledged."""
    order = current_app.order_service.cancel_order(user_context, order_id, body.reason)
    return current_app.hal_formatter.format_order(order, user_context)


@orders_bp.post('/<order_id>/tracking')
@require_jwt
@idempotent('orders.tracking')
@validate_json(TrackingUpdateRequest)
def update_tracking(user_context: UserContext, order_id: str, body: TrackingUpdateRequest):
    order = current_app.order_service.update_tracking(user_context, order_id, body.status)
    return current_app.hal_formatter.format_order(order, user_context)
