# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Ledger administration: settlement retry and reconciliation.
"""

from flask import Blueprint, current_app, request
from opentelemetry import trace
import logging

from escrow_api.middleware.auth import require_jwt, require_role
from escrow_api.middleware.error_handler import NotFoundException
from escrow_api.models.entities import UserContext
from escrow_api.models.enums import UserRole

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


def _report_body(report):
    body = {key: value for key, value in report.items() if key != '_id'}
    body['id'] = str(report['_id'])
    body['createdAt'] = report['createdAt'].isoformat()
    return body


@admin_bp.post('/orders/<order_id>/settle')
@require_jwt
@require_role(UserRole.ADMIN)
def settle_order(user_context: UserContext, order_id: str):
    """Apply any postings of an order that have not reached their wallets."""
    order = current_app.settlement_service.settle_order(order_id)
    current_app.audit_service.record(
        user_id=user_context.user_id,
        entity="order",
        entity_id=order.id,
        action="settle",
        after={"settlementState": order.settlement_state, "unsettled": order.unsettled_posting_ids},
        user_context=user_context
    )
    return current_app.hal_formatter.format_order(order, user_context)


@admin_bp.post('/settlements/retry')
@require_jwt
@require_role(UserRole.ADMIN)
def retry_settlements(user_context: UserContext):
    """Sweep pending settlements; ``?all=true`` includes recently updated orders."""
    include_recent = request.args.get('all', 'false').lower() == 'true'
    summary = current_app.settlement_service.settle_pending(include_recent=include_recent)

    logger.info(
        "Settlement retry requested",
        extra={"user_id": user_context.user_id, "include_recent": include_recent,
               "settled": summary.settled, "failed": summary.failed}
    )
    return {
        'examined': summary.examined,
        'settled': summary.settled,
        'failed': summary.failed,
        'failedOrderIds': summary.failed_order_ids
    }


@admin_bp.post('/reconciliation')
@require_jwt
@require_role(UserRole.ADMIN)
def run_reconciliation(user_context: UserContext):
    """Check wallets and orders for drift and store the report."""
    settle = request.args.get('settle', 'false').lower() == 'true'
    report = current_app.reconciliation_service.run(user_context, settle=settle)
    return _report_body(report), 201


@admin_bp.get('/reconciliation/latest')
@require_jwt
@require_role(UserRole.ADMIN)
def latest_reconciliation(user_context: UserContext):
    report = current_app.reconciliation_service.latest_report()
    if report is None:
        raise NotFoundException("No reconciliation report has been run")
    return _report_body(report)
