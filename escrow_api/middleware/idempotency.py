# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Idempotency-Key handling for mutating endpoints.
"""

from functools import wraps
from flask import request, g, current_app
from typing import Callable
from opentelemetry import trace
import logging

from escrow_api.middleware.error_handler import CustomException, ValidationException
from escrow_api.services.idempotency import request_hash

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
REPLAYED_HEADER = "Idempotent-Replayed"
MAX_KEY_LENGTH = 255


def idempotent(scope: str, required: bool = False) -> Callable:
    """
    Make a view safe to retry with an ``Idempotency-Key`` header.

    Responses below 500 are stored and replayed for the same key and body;
    server errors release the key. Must be applied inside ``require_jwt``.

    Args:
        scope: Operation name the key is scoped to, together with the user
        required: Reject requests that do not send a key
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            key = request.headers.get(IDEMPOTENCY_HEADER, "").strip()
            if not key:
                if required:
                    raise ValidationException(
                        f"{IDEMPOTENCY_HEADER} header is required",
                        [{"field": IDEMPOTENCY_HEADER, "message": "Header is required", "type": "missing"}]
                    )
                return f(*args, **kwargs)

            if len(key) > MAX_KEY_LENGTH:
                raise ValidationException(
                    f"{IDEMPOTENCY_HEADER} must be at most {MAX_KEY_LENGTH} characters",
                    [{"field": IDEMPOTENCY_HEADER, "message": "Header too long", "type": "string_too_long"}]
                )

            service = current_app.idempotency_service
            user_id = g.user_context.user_id
            fingerprint = request_hash(request.method, request.path, request.get_json(silent=True))

            with tracer.start_as_current_span("idempotency.guard") as span:
                span.set_attributes({"idempotency.scope": scope, "user.id": user_id})

                stored = service.begin(scope, user_id, key, fingerprint)
                if stored is not None:
                    span.set_attribute("idempotency.replayed", True)
                    response = current_app.make_response(
                        (stored.body if stored.body is not None else "", stored.status_code, stored.headers)
                    )
                    response.headers[REPLAYED_HEADER] = "true"
                    return response

                try:
                    rv = f(*args, **kwargs)
                except CustomException as e:
                    if e.status_code >= 500:
                        service.release(scope, user_id, key)
                        raise
                    rv = current_app.handle_user_exception(e)
                except Exception:
                    service.release(scope, user_id, key)
                    raise

                response = current_app.make_response(rv)
                if response.status_code >= 500:
                    service.release(scope, user_id, key)
                else:
                    service.complete(
                        scope, user_id, key, response.status_code,
                        response.get_json(silent=True), dict(response.headers)
                    )
                    logger.debug(
                        "Idempotent response stored",
                        extra={"scope": scope, "user_id": user_id, "status_code": response.status_code}
                    )
                return response

        return decorated_function
    return decorator
