# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Idempotency-Key storage.

A key is claimed by inserting a record keyed ``{scope}:{userId}:{key}``; the
unique ``_id`` makes the claim atomic. The first request stores its response
when it finishes and later requests with the same key and body replay it.
Records expire through a TTL index on ``createdAt``.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Optional
from opentelemetry import trace

from escrow_api.middleware.error_handler import IdempotencyConflictException
from escrow_api.models.base import utcnow
from escrow_api.services.mongodb import DuplicateDocumentError, MongoDBService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

STATE_IN_PROGRESS = "in_progress"
STATE_COMPLETED = "completed"

# Response headers kept with a stored response and set again on replay
REPLAYED_HEADERS = ("Location", "Content-Type")


@dataclass
class StoredResponse:
    """Response recorded for a completed idempotent request."""
    status_code: int
    body: Any
    headers: Dict[str, str] = field(default_factory=dict)


def request_hash(method: str, path: str, body: Optional[Dict[str, Any]]) -> str:
    """Fingerprint of a request: sha256 over method, path and canonical JSON body."""
    canonical = json.dumps(body if body is not None else {}, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(f"{method.upper()}|{path}|{canonical}".encode("utf-8")).hexdigest()


class IdempotencyService:
    """Claims, completes and releases Idempotency-Key records."""

    collection_name = "idempotency_keys"

    def __init__(self, mongo_service: MongoDBService, lease_seconds: int = 60):
        self.mongo_service = mongo_service
        self.lease_seconds = lease_seconds

    @staticmethod
    def record_id(scope: str, user_id: str, key: str) -> str:
        return f"{scope}:{user_id}:{key}"

    def begin(self, scope: str, user_id: str, key: str, fingerprint: str) -> Optional[StoredResponse]:
        """
        Claim a key for a request.

        An ``in_progress`` claim older than the lease belongs to a request
        whose process died; the same request may take it over.

        Returns:
            None if the caller now owns the key and should run the request,
            or the stored response to replay

        Raises:
            IdempotencyConflictException: If the key belongs to a different
                request or the original request is still running
        """
        with tracer.start_as_current_span("idempotency.begin") as span:
            record_id = self.record_id(scope, user_id, key)
            span.set_attributes({"idempotency.scope": scope, "user.id": user_id})

            now = utcnow()
            try:
                self.mongo_service.insert(self.collection_name, {
                    "_id": record_id,
                    "scope": scope,
                    "userId": user_id,
                    "key": key,
                    "requestHash": fingerprint,
                    "state": STATE_IN_PROGRESS,
                    "createdAt": now,
                    "claimedAt": now
                })
                span.set_attribute("idempotency.claimed", True)
                return None
            except DuplicateDocumentError:
                existing = self.mongo_service.find_by_id(self.collection_name, record_id)

            span.set_attribute("idempotency.claimed", False)
            if existing is None:
                # Expired or released between the insert and the read
                return self.begin(scope, user_id, key, fingerprint)

            if existing.get("requestHash") != fingerprint:
                logger.warning(
                    "Idempotency key reused with a different request",
                    extra={"scope": scope, "user_id": user_id}
                )
                raise IdempotencyConflictException(
                    "Idempotency-Key has already been used for a different request"
                )

            if existing.get("state") != STATE_COMPLETED:
                if self._take_over_stale_claim(record_id, fingerprint):
                    span.set_attribute("idempotency.taken_over", True)
                    logger.warning(
                        "Stale idempotency claim taken over",
                        extra={"scope": scope, "user_id": user_id, "lease_seconds": self.lease_seconds}
                    )
                    return None
                raise IdempotencyConflictException(
                    "A request with this Idempotency-Key is still in progress",
                    error_type="idempotency-request-in-progress"
                )

            logger.info("Replaying idempotent response", extra={"scope": scope, "user_id": user_id})
            return StoredResponse(
                status_code=existing["responseStatus"],
                body=existing.get("responseBody"),
                headers=existing.get("responseHeaders") or {}
            )

    def _take_over_stale_claim(self, record_id: str, fingerprint: str) -> bool:
        """Re-claim an ``in_progress`` record whose lease has run out; only one caller wins."""
        now = utcnow()
        return self.mongo_service.update_one(
            self.collection_name,
            {
                "_id": record_id,
                "requestHash": fingerprint,
                "state": STATE_IN_PROGRESS,
                "claimedAt": {"$lt": now - timedelta(seconds=self.lease_seconds)}
            },
            {"$set": {"claimedAt": now}}
        )

    def complete(self, scope: str, user_id: str, key: str, status_code: int, body: Any,
                 headers: Optional[Dict[str, str]] = None) -> None:
        """Store the response of the request that owns the key."""
        kept = {name: value for name, value in (headers or {}).items() if name in REPLAYED_HEADERS}
        self.mongo_service.update_one(
            self.collection_name,
            {"_id": self.record_id(scope, user_id, key), "state": STATE_IN_PROGRESS},
            {"$set": {
                "state": STATE_COMPLETED,
                "responseStatus": status_code,
                "responseBody": body,
                "responseHeaders": kept,
                "completedAt": utcnow()
            }}
        )

    def release(self, scope: str, user_id: str, key: str) -> None:
        """Forget a key whose request failed on the server side so it can be retried."""
        self.mongo_service.delete_one(
            self.collection_name,
            {"_id": self.record_id(scope, user_id, key), "state": STATE_IN_PROGRESS}
        )
        logger.info("Idempotency key released", extra={"scope": scope, "user_id": user_id})
