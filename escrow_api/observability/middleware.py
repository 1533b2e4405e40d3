"""
Observability Middleware

Per-request server spans, request logging and trace correlation headers.
"""

import time
import logging
from flask import Flask, request, g
from opentelemetry import context, trace
from opentelemetry.trace import SpanKind, Status, StatusCode
from opentelemetry.propagate import extract

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


def add_observability_middleware(app: Flask):
    """Wrap every request in a server span and log its completion."""

    @app.before_request
    def before_request():
        g.start_time = time.time()
        g.trace_id = None

        span = tracer.start_span(
            f"{request.method} {request.path}",
            context=extract(dict(request.headers)),
            kind=SpanKind.SERVER
        )
        g.otel_span = span
        g.otel_token = context.attach(trace.set_span_in_context(span))

        span_context = span.get_span_context()
        if span_context.is_valid:
            g.trace_id = format(span_context.trace_id, "032x")

        if span.is_recording():
            span.set_attributes({
                "http.method": request.method,
                "http.url": request.url,
                "http.scheme": request.scheme,
                "http.host": request.host,
                "http.target": request.path,
                "http.user_agent": request.headers.get("User-Agent", ""),
                "http.remote_addr": request.remote_addr or ""
            })

    @app.after_request
    def after_request(response):
        duration_ms = round((time.time() - g.get('start_time', time.time())) * 1000, 2)

        span = g.get('otel_span')
        if span is not None and span.is_recording():
            if request.url_rule is not None:
                span.update_name(f"{request.method} {request.url_rule.rule}")
                span.set_attribute("http.route", request.url_rule.rule)
            span.set_attributes({
                "http.status_code": response.status_code,
                "http.duration_ms": duration_ms
            })
            if response.status_code >= 500:
                span.set_status(Status(StatusCode.ERROR))

        user_context = g.get('user_context')
        logger.info(
            "HTTP request completed",
            extra={
                "method": request.method,
                "path": request.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "remote_addr": request.remote_addr,
                "user_id": user_context.user_id if user_context else None,
                "trace_id": g.get('trace_id'),
                "request_size": request.content_length or 0
            }
        )

        if g.get('trace_id'):
            response.headers['X-Trace-Id'] = g.trace_id

        return response

    @app.teardown_request
    def teardown_request(error=None):
        span = g.pop('otel_span', None)
        token = g.pop('otel_token', None)
        if span is not None:
            if error is not None:
                span.record_exception(error)
                span.set_status(Status(StatusCode.ERROR, str(error)))
            span.end()
        if token is not None:
            context.detach(token)
