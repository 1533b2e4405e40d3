# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Error handling middleware with structured HAL responses.

Every error leaves the API as an RFC 7807 problem document. Services raise
the ``CustomException`` subclasses below; werkzeug HTTP errors and anything
unexpected are mapped onto the same format.
"""

from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException
from typing import Dict, Any, Tuple
from opentelemetry import trace
import logging

from escrow_api.services.hal import HalFormatter

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

# HTTP status -> (problem type, title) for errors raised by Flask itself
HTTP_PROBLEMS = {
    400: ("bad-request", "Bad Request"),
    401: ("authentication-required", "Authentication Required"),
    403: ("insufficient-permissions", "Insufficient Permissions"),
    404: ("resource-not-found", "Resource Not Found"),
    405: ("method-not-allowed", "Method Not Allowed"),
    409: ("resource-conflict", "Resource Conflict"),
    413: ("payload-too-large", "Payload Too Large"),
    415: ("unsupported-media-type", "Unsupported Media Type"),
    429: ("rate-limit-exceeded", "Rate Limit Exceeded"),
    500: ("internal-server-error", "Internal Server Error"),
    502: ("bad-gateway", "Bad Gateway"),
    503: ("service-unavailable", "Service Unavailable"),
    504: ("gateway-timeout", "Gateway Timeout"),
}


class ErrorHandlerMiddleware:
    """Turns werkzeug HTTP errors and unhandled exceptions into problem documents."""

    def __init__(self, app: Flask, hal_formatter: HalFormatter):
        self.app = app
        self.hal_formatter = hal_formatter
        app.register_error_handler(HTTPException, self.handle_http_error)
        app.register_error_handler(Exception, self.handle_unexpected_error)

    def _hide_details(self) -> bool:
        return self.app.config.get('ENVIRONMENT') == 'production'

    def handle_http_error(self, error: HTTPException) -> Tuple[Dict[str, Any], int]:
        """Problem document for an HTTP error raised by routing or ``abort``."""
        code = error.code or 500
        error_type, title = HTTP_PROBLEMS.get(code, ("http-error", error.name))

        with tracer.start_as_current_span("error_handler.http_error") as span:
            span.set_attributes({
                "error.type": error_type,
                "error.status": code,
                "http.method": request.method,
                "http.path": request.path
            })

            detail = str(error.description or title)
            log = logger.error if code >= 500 else logger.warning
            log(
                f"HTTP error: {title}",
                extra={
                    "error_type": error_type,
                    "status_code": code,
                    "detail": detail,
                    "path": request.path,
                    "method": request.method,
                    "ip_address": request.remote_addr
                }
            )

            if code >= 500 and self._hide_details():
                detail = "An internal server error occurred"

            return self.hal_formatter.format_problem(error_type, title, code, detail, request.path), code

    def handle_unexpected_error(self, error: Exception) -> Tuple[Dict[str, Any], int]:
        """500 for anything no other handler claimed."""
        with tracer.start_as_current_span("error_handler.unexpected_error") as span:
            span.set_attributes({
                "error.type": "unexpected-error",
                "error.class": error.__class__.__name__,
                "http.method": request.method,
                "http.path": request.path
            })
            span.record_exception(error)

            logger.error(
                f"Unexpected error: {error.__class__.__name__}",
                extra={
                    "error_class": error.__class__.__name__,
                    "error_message": str(error),
                    "path": request.path,
                    "method": request.method
                },
                exc_info=error
            )

            detail = "An unexpected error occurred"
            if not self._hide_details():
                detail = f"{error.__class__.__name__}: {error}"

            return self.hal_formatter.format_problem(
                "internal-server-error", "Internal Server Error", 500, detail, request.path
            ), 500


class CustomException(Exception):
    """Base class for custom application exceptions."""

    title = "Application Error"

    def __init__(self, message: str, status_code: int = 500, error_type: str = "application-error"):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_type = error_type


class ValidationException(CustomException):
    """Exception for validation errors."""

    title = "Validation Error"

    def __init__(self, message: str, validation_errors: list = None):
        super().__init__(message, 400, "validation-error")
        self.validation_errors = validation_errors or []


class AuthenticationException(CustomException):
    title = "Authentication Required"

    def __init__(self, message: str):
        super().__init__(message, 401, "authentication-required")


class AuthorizationException(CustomException):
    title = "Insufficient Permissions"

    def __init__(self, message: str):
        super().__init__(message, 403, "insufficient-permissions")


class NotFoundException(CustomException):
    """The resource does not exist or the caller may not see it."""

    title = "Resource Not Found"

    def __init__(self, message: str):
        super().__init__(message, 404, "resource-not-found")


class ConflictException(CustomException):
    """Exception for resource conflict errors."""

    title = "Resource Conflict"

    def __init__(self, message: str, error_type: str = "resource-conflict"):
        super().__init__(message, 409, error_type)


class InvalidTransitionException(ConflictException):
    """The order is not in a state that allows the requested transition."""

    title = "Invalid Transition"

    def __init__(self, message: str):
        super().__init__(message, "invalid-transition")


class ConcurrencyConflictException(ConflictException):
    """The order changed between read and write."""

    title = "Concurrent Modification"

    def __init__(self, message: str):
        super().__init__(message, "concurrent-modification")


class IdempotencyConflictException(ConflictException):
    """An Idempotency-Key was reused for a different request or is still running."""

    title = "Idempotency Conflict"

    def __init__(self, message: str, error_type: str = "idempotency-key-reuse"):
        super().__init__(message, error_type)


class InsufficientFundsException(CustomException):
    """A debit would take the available balance below zero."""

    title = "Insufficient Funds"

    def __init__(self, message: str):
        super().__init__(message, 422, "insufficient-funds")


class ServiceUnavailableException(CustomException):
    title = "Service Unavailable"

    def __init__(self, message: str):
        super().__init__(message, 503, "service-unavailable")


def register_custom_error_handlers(app: Flask, hal_formatter: HalFormatter):
    """Render ``CustomException`` subclasses with their own type, title and status."""

    @app.errorhandler(CustomException)
    def handle_custom_exception(error: CustomException):
        with tracer.start_as_current_span("error_handler.custom_exception") as span:
            span.set_attributes({
                "error.type": error.error_type,
                "error.status": error.status_code,
                "http.method": request.method,
                "http.path": request.path
            })

            log = logger.error if error.status_code >= 500 else logger.warning
            log(
                f"Request failed: {error.error_type}",
                extra={
                    "error_type": error.error_type,
                    "status_code": error.status_code,
                    "error_message": error.message,
                    "path": request.path,
                    "method": request.method
                }
            )

            if isinstance(error, ValidationException):
                body = hal_formatter.format_validation_error(
                    error.message, request.path, error.validation_errors
                )
            else:
                body = hal_formatter.format_problem(
                    error.error_type, error.title, error.status_code, error.message, request.path
                )
            return jsonify(body), error.status_code
