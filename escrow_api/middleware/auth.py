# SPDX-License-Identifier: Apache-2.0

"""
Authentication middleware for JWT token validation and user context extraction.

This module validates bearer tokens, checks the revocation blocklist and builds
the user context handed to protected views.
"""

from functools import wraps
from flask import request, g, current_app
from typing import Optional, Dict, Any, Callable
from opentelemetry import trace
import jwt
import logging

from escrow_api.middleware.error_handler import AuthenticationException, AuthorizationException
from escrow_api.models.entities import UserContext
from escrow_api.services.auth import TokenValidationError

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class AuthMiddleware:
    """
    JWT authentication middleware for Flask applications.

    Handles token extraction, validation, blocklist checking, and user context
    building for protected endpoints.
    """

    def __init__(self, auth_service, redis_service):
        """
        Initialize the authentication middleware.

        Args:
            auth_service: JWT authentication service
            redis_service: Redis service for token blocklist
        """
        self.auth_service = auth_service
        self.redis_service = redis_service

    def extract_token_from_request(self) -> Optional[str]:
        """Return the bearer token from the Authorization header, if any."""
        auth_header = request.headers.get('Authorization', '')
        if not auth_header.startswith('Bearer '):
            return None
        return auth_header[7:].strip() or None

    def is_token_blocked(self, token: str) -> bool:
        """
        Check if token is in the Redis blocklist.

        Returns True when the blocklist cannot be read.
        """
        try:
            token_id = self.auth_service.extract_token_id(token)
            return self.redis_service.is_token_blocked(token_id)
        except Exception as e:
            logger.error(f"Error checking token blocklist: {str(e)}")
            return True

    def revoke_token(self, token: str) -> bool:
        """Add a token to the blocklist until it expires."""
        payload = jwt.decode(token, options={"verify_signature": False})
        token_id = self.auth_service.extract_token_id(token)
        return self.redis_service.add_to_blocklist(token_id, int(payload.get("exp", 0)))

    def build_user_context(self, token_payload: Dict[str, Any], request_info: Dict[str, Any]) -> UserContext:
        """Build the user context from a validated token payload and request metadata."""
        return UserContext(
            user_id=token_payload["sub"],
            role=token_payload["role"],
            email=token_payload.get("email"),
            name=token_payload.get("name"),
            token_payload=token_payload,
            ip_address=request_info.get("ip_address"),
            user_agent=request_info.get("user_agent"),
            session_id=request_info.get("session_id")
        )

    def get_request_info(self) -> Dict[str, Any]:
        return {
            "ip_address": request.remote_addr,
            "user_agent": request.headers.get('User-Agent', ''),
            "session_id": request.headers.get('X-Session-ID'),
            "request_id": request.headers.get('X-Request-ID')
        }

    def authenticate(self) -> UserContext:
        """
        Authenticate the current request.

        Raises:
            AuthenticationException: If the token is missing, revoked or invalid
        """
        with tracer.start_as_current_span("auth.middleware.validate_request") as span:
            token = self.extract_token_from_request()
            if not token:
                span.set_attribute("auth.result", "missing_token")
                logger.warning("Authentication failed: missing token")
                raise AuthenticationException("Missing authorization token")

            if self.is_token_blocked(token):
                span.set_attribute("auth.result", "token_blocked")
                logger.warning("Authentication failed: token is blocked")
                raise AuthenticationException("Token has been revoked")

            try:
                token_payload = self.auth_service.validate_token(token, "access")
            except TokenValidationError as e:
                span.set_attribute("auth.result", "invalid_token")
                raise AuthenticationException(str(e))

            user_context = self.build_user_context(token_payload, self.get_request_info())
            span.set_attributes({
                "auth.result": "success",
                "user.id": user_context.user_id,
                "user.role": user_context.role
            })
            logger.debug(
                "Authentication successful",
                extra={"user_id": user_context.user_id, "role": user_context.role}
            )
            return user_context


def require_auth(auth_middleware: AuthMiddleware) -> Callable:
    """
    Decorator to require JWT authentication for Flask routes.

    The view receives the UserContext as its first argument; it is also
    stored on ``g.user_context`` for other decorators.
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user_context = auth_middleware.authenticate()
            g.user_context = user_context
            return f(user_context, *args, **kwargs)
        return decorated_function
    return decorator


def require_jwt(f: Callable) -> Callable:
    """``require_auth`` bound to the application's auth middleware."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        return require_auth(current_app.auth_middleware)(f)(*args, **kwargs)
    return decorated_function


def require_role(*roles: str) -> Callable:
    """
    Decorator restricting a view to the given roles.

    Must be applied inside ``require_jwt``.
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(user_context: UserContext, *args, **kwargs):
            if not user_context.has_role(*roles):
                logger.warning(
                    "Authorization failed: role not allowed",
                    extra={"user_id": user_context.user_id, "role": user_context.role,
                           "required_roles": [getattr(r, 'value', r) for r in roles]}
                )
                raise AuthorizationException("You do not have permission to perform this action")
            return f(user_context, *args, **kwargs)
        return decorated_function
    return decorator
