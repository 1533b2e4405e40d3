# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Dispute endpoints nested under an order.
"""

from flask import Blueprint, current_app
import logging

from escrow_api.middleware.auth import require_jwt, require_role
from escrow_api.middleware.idempotency import idempotent
from escrow_api.middleware.validation import validate_json
from escrow_api.models.entities import UserContext
from escrow_api.models.enums import UserRole
from escrow_api.models.requests import (
    DisputeMessageRequest,
    OpenDisputeRequest,
    ResolveDisputeRequest
)

logger = logging.getLogger(__name__)

disputes_bp = Blueprint('disputes', __name__, url_prefix='/api/orders/<order_id>/dispute')


@disputes_bp.post('')
@require_jwt
@idempotent('disputes.open')
@validate_json(OpenDisputeRequest)
def open_dispute(user_context: UserContext, order_id: str, body: OpenDisputeRequest):
    """Buyer or seller raises a dispute, freezing the order's funds."""
    order = current_app.dispute_service.open_dispute(user_context, order_id, body.details)
    return current_app.hal_formatter.format_order(order, user_context), 201


@disputes_bp.get('/messages')
@require_jwt
def list_dispute_messages(user_context: UserContext, order_id: str):
    messages = current_app.dispute_service.list_messages(user_context, order_id)
    items = [message.model_dump(by_alias=True, mode='json') for message in messages]
    return current_app.hal_formatter.format_dispute_messages(order_id, items)


@disputes_bp.post('/messages')
@require_jwt
@idempotent('disputes.message')
@validate_json(DisputeMessageRequest)
def send_dispute_message(user_context: UserContext, order_id: str, body: DisputeMessageRequest):
    message = current_app.dispute_service.send_message(user_context, order_id, body.message)
    return message.model_dump(by_alias=True, mode='json'), 201


@disputes_bp.post('/resolve')
@require_jwt
@require_role(UserRole.ADMIN)
@idempotent('disputes.resolve')
@validate_json(ResolveDisputeRequest)
def resolve_dispute(user_context: UserContext, order_id: str, body: ResolveDisputeRequest):
    """Admin refunds the buyer or releases funds to the seller."""
    order = current_app.dispute_service.resolve(
        user_context, order_id, body.resolution, body.admin_notes
    )
    return current_app.hal_formatter.format_order(order, user_context)
