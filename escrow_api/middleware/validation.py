# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request validation using Pydantic models.
Validated bodies and query strings are passed to views as keyword arguments.
"""

from functools import wraps
from flask import request
from typing import Type, Callable, Dict, Any, List
from pydantic import BaseModel, ValidationError
from opentelemetry import trace
import logging

from escrow_api.middleware.error_handler import ValidationException

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


def format_validation_errors(validation_error: ValidationError) -> List[Dict[str, Any]]:
    """
    Format Pydantic validation errors for API response.

    Args:
        validation_error: Pydantic ValidationError

    Returns:
        List of formatted error dictionaries
    """
    errors = []

    for error in validation_error.errors():
        field_path = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field_path,
            "message": error["msg"],
            "type": error["type"],
            "input": error.get("input")
        })

    return errors


def parse_json_body(model_class: Type[BaseModel]) -> BaseModel:
    """
    Validate the JSON request body against a model.

    Raises:
        ValidationException: If the body is missing, not JSON or invalid
    """
    with tracer.start_as_current_span("validation.validate_json_body") as span:
        span.set_attributes({
            "validation.model": model_class.__name__,
            "http.method": request.method,
            "http.path": request.path
        })

        if not request.is_json:
            span.set_attribute("validation.result", "invalid_content_type")
            raise ValidationException(
                "Request must have Content-Type: application/json",
                [{
                    "field": "content-type",
                    "message": "Expected application/json",
                    "type": "content_type_error",
                    "input": request.content_type
                }]
            )

        json_data = request.get_json(silent=True)
        if not isinstance(json_data, dict):
            span.set_attribute("validation.result", "invalid_json")
            raise ValidationException(
                "Invalid JSON in request body",
                [{"field": "body", "message": "Expected a JSON object", "type": "json_error", "input": None}]
            )

        try:
            validated = model_class.model_validate(json_data)
        except ValidationError as e:
            span.set_attribute("validation.result", "validation_error")
            validation_errors = format_validation_errors(e)
            logger.warning(
                "Request validation failed",
                extra={
                    "model": model_class.__name__,
                    "path": request.path,
                    "method": request.method,
                    "errors": validation_errors
                }
            )
            raise ValidationException(
                f"Request validation failed for {model_class.__name__}",
                validation_errors
            )

        span.set_attribute("validation.result", "success")
        return validated


def parse_query_params(model_class: Type[BaseModel]) -> BaseModel:
    """
    Validate query parameters against a model.

    Raises:
        ValidationException: If a parameter is invalid
    """
    query_data = request.args.to_dict()
    try:
        return model_class.model_validate(query_data)
    except ValidationError as e:
        validation_errors = format_validation_errors(e)
        logger.warning(
            "Query parameter validation failed",
            extra={"model": model_class.__name__, "path": request.path, "errors": validation_errors}
        )
        raise ValidationException(
            f"Query parameter validation failed for {model_class.__name__}",
            validation_errors
        )


def validate_json(model_class: Type[BaseModel]) -> Callable:
    """Decorator passing the validated body to the view as ``body``."""
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            kwargs["body"] = parse_json_body(model_class)
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def validate_query(model_class: Type[BaseModel]) -> Callable:
    """Decorator passing the validated query string to the view as ``query``."""
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            kwargs["query"] = parse_query_params(model_class)
            return f(*args, **kwargs)
        return decorated_function
    return decorator
