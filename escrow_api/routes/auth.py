# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Session endpoints. Tokens are issued by the identity provider; this service
only revokes them.
"""

from flask import Blueprint, current_app
import logging

from escrow_api.middleware.auth import require_jwt
from escrow_api.middleware.error_handler import ServiceUnavailableException
from escrow_api.models.entities import UserContext

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')


@auth_bp.post('/logout')
@require_jwt
def logout(user_context: UserContext):
    """Block the caller's access token until it expires."""
    auth_middleware = current_app.auth_middleware
    token = auth_middleware.extract_token_from_request()

    if not auth_middleware.revoke_token(token):
        raise ServiceUnavailableException("Token could not be revoked, please retry")

    logger.info("Access token revoked", extra={"user_id": user_context.user_id})
    return '', 204
