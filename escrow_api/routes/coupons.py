# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Coupon lookup endpoint used by checkout screens.
"""

from flask import Blueprint, current_app

from escrow_api.middleware.auth import require_jwt
from escrow_api.models.entities import UserContext

coupons_bp = Blueprint('coupons', __name__, url_prefix='/api/coupons')


@coupons_bp.get('/<code>')
@require_jwt
def validate_coupon(user_context: UserContext, code: str):
    """Return a coupon the caller can still redeem; anything else is a 404."""
    coupon = current_app.coupon_service.validate_for_user(code, user_context.user_id)
    return current_app.hal_formatter.format_coupon(coupon)
