# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Rate limiting middleware for money-moving endpoints.
Fixed-window counters kept in Redis.
"""

from functools import wraps
from flask import request, jsonify, g, current_app
from typing import Dict, Any, Optional, Callable
import time
import hashlib
import logging

from escrow_api.services.hal import HalFormatter

logger = logging.getLogger(__name__)


class RateLimiter:
    """Redis-based fixed-window rate limiter."""

    def __init__(self, redis_service, hal_formatter: HalFormatter):
        self.redis_service = redis_service
        self.hal_formatter = hal_formatter

    def get_client_identifier(self, user_context=None) -> str:
        """Use the user ID for authenticated requests, else a hash of IP and User-Agent."""
        if user_context:
            return f"user:{user_context.user_id}"

        ip_address = request.remote_addr or 'unknown'
        user_agent = request.headers.get('User-Agent', '')
        identifier_hash = hashlib.sha256(f"{ip_address}:{user_agent}".encode()).hexdigest()[:32]
        return f"ip:{identifier_hash}"

    @staticmethod
    def get_rate_limit_key(identifier: str, endpoint: str, window_seconds: int) -> str:
        window_start = int(time.time()) // window_seconds
        return f"rate_limit:{identifier}:{endpoint}:{window_start}"

    def check_rate_limit(
        self,
        identifier: str,
        endpoint: str,
        limit: int,
        window_seconds: int = 3600
    ) -> Dict[str, Any]:
        """
        Count this request against the current window.

        Returns:
            Dictionary with allowed, limit, remaining, reset_time and retry_after
        """
        now = int(time.time())
        reset_time = (now // window_seconds + 1) * window_seconds

        try:
            count = self.redis_service.increment(
                self.get_rate_limit_key(identifier, endpoint, window_seconds), window_seconds
            )
        except Exception as e:
            logger.error(f"Rate limit check failed: {str(e)}")
            # Fail open - allow request if Redis is unavailable
            return {
                'allowed': True,
                'limit': limit,
                'remaining': limit - 1,
                'reset_time': reset_time,
                'retry_after': 0
            }

        allowed = count <= limit
        return {
            'allowed': allowed,
            'limit': limit,
            'remaining': max(0, limit - count),
            'reset_time': reset_time,
            'retry_after': 0 if allowed else reset_time - now
        }

    @staticmethod
    def add_rate_limit_headers(response, rate_limit_info: Dict[str, Any]):
        response.headers['X-RateLimit-Limit'] = str(rate_limit_info['limit'])
        response.headers['X-RateLimit-Remaining'] = str(rate_limit_info['remaining'])
        response.headers['X-RateLimit-Reset'] = str(rate_limit_info['reset_time'])

        if rate_limit_info['retry_after'] > 0:
            response.headers['Retry-After'] = str(rate_limit_info['retry_after'])

        return response


def rate_limit(
    limit: int,
    window_seconds: int = 3600,
    endpoint: Optional[str] = None,
    per_user: bool = True
):
    """
    Decorator for rate limiting endpoints.

    Args:
        limit: Maximum requests allowed
        window_seconds: Time window in seconds
        endpoint: Custom endpoint identifier
        per_user: Whether to apply limit per user (vs per IP)
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            redis_service = getattr(current_app, 'redis_service', None)
            if redis_service is None:
                return f(*args, **kwargs)

            rate_limiter = RateLimiter(redis_service, current_app.hal_formatter)

            user_context = getattr(g, 'user_context', None) if per_user else None
            identifier = rate_limiter.get_client_identifier(user_context)
            endpoint_name = endpoint or request.endpoint or f.__name__

            rate_limit_info = rate_limiter.check_rate_limit(identifier, endpoint_name, limit, window_seconds)

            if not rate_limit_info['allowed']:
                logger.warning(
                    "Rate limit exceeded",
                    extra={
                        'identifier': identifier,
                        'endpoint': endpoint_name,
                        'limit': limit,
                        'retry_after': rate_limit_info['retry_after']
                    }
                )
                response = jsonify(rate_limiter.hal_formatter.format_rate_limit_error(
                    f"Rate limit of {limit} requests per {window_seconds} seconds exceeded",
                    request.path
                ))
                response.status_code = 429
                return rate_limiter.add_rate_limit_headers(response, rate_limit_info)

            response = current_app.make_response(f(*args, **kwargs))
            return rate_limiter.add_rate_limit_headers(response, rate_limit_info)

        return decorated_function
    return decorator


def rate_limit_money(f: Callable) -> Callable:
    """Money-moving endpoints: 30 requests per minute."""
    return rate_limit(30, 60)(f)
