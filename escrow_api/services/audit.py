# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Audit service for ledger action logging with OpenTelemetry correlation.
"""

import logging
from typing import Dict, List, Optional, Any
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from escrow_api.models.entities import AuditLog, UserContext
from escrow_api.services.mongodb import MongoDBService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class AuditService:
    """Service for audit logging with MongoDB persistence."""

    def __init__(self, mongo_service: MongoDBService):
        """Initialize audit service with MongoDB dependency."""
        self.mongo_service = mongo_service
        self.collection_name = "audit_logs"
        logger.info("Audit service initialized")

    def log_action(
        self,
        user_id: str,
        entity: str,
        entity_id: str,
        action: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        user_context: Optional[UserContext] = None
    ) -> str:
        """
        Log an audit trail entry with trace correlation and structured logging.

        Args:
            user_id: ID of user performing the action
            entity: Type of entity being acted upon
            entity_id: ID of the specific entity
            action: Action being performed
            before: State before the action (optional)
            after: State after the action (optional)
            user_context: Full user context with request details (optional)

        Returns:
            str: ID of the created audit log entry
        """
        with tracer.start_as_current_span("audit.log_action") as span:
            try:
                span_context = span.get_span_context()

                entry = AuditLog(
                    user_id=user_id,
                    entity=entity,
                    entity_id=entity_id,
                    action=action,
                    before=before,
                    after=after,
                    ip_address=user_context.ip_address if user_context else None,
                    user_agent=user_context.user_agent if user_context else None
                )

                if span_context.is_valid:
                    entry.trace_id = format(span_context.trace_id, "032x")
                    entry.span_id = format(span_context.span_id, "016x")

                span.set_attributes({
                    "audit.entity": entity,
                    "audit.action": action,
                    "audit.user_id": user_id,
                    "audit.entity_id": entity_id
                })

                document = {
                    "_id": entry.id,
                    "timestamp": entry.timestamp,
                    "userId": entry.user_id,
                    "entity": entry.entity,
                    "entityId": entry.entity_id,
                    "action": entry.action,
                    "before": entry.before,
                    "after": entry.after,
                    "ipAddress": entry.ip_address,
                    "userAgent": entry.user_agent,
                    "traceId": entry.trace_id,
                    "spanId": entry.span_id,
                    "schemaVersion": entry.schema_version
                }
                audit_id = self.mongo_service.insert(self.collection_name, document)

                changes_count = len(self._calculate_changes(before, after)) if before and after else 0

                logger.info(
                    "Audit trail entry created",
                    extra={
                        "audit_id": audit_id,
                        "entity": entity,
                        "entity_id": entity_id,
                        "action": action,
                        "user_id": user_id,
                        "trace_id": entry.trace_id,
                        "changes_count": changes_count,
                        "audit_category": "ledger_action"
                    }
                )

                return audit_id

            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                logger.error(
                    "Failed to create audit trail entry",
                    extra={
                        "entity": entity,
                        "entity_id": entity_id,
                        "action": action,
                        "user_id": user_id,
                        "error": str(e)
                    },
                    exc_info=True
                )
                raise

    def record(self, *args, **kwargs) -> Optional[str]:
        """
        Log an action after its ledger change has committed.

        The committed change stands even if the audit write fails, so the
        failure is logged by log_action and not raised.
        """
        try:
            return self.log_action(*args, **kwargs)
        except Exception:
            return None

    def list_for_entity(self, entity: str, entity_id: str) -> List[Dict[str, Any]]:
        """Audit entries for one entity, oldest first."""
        return self.mongo_service.find_many(
            self.collection_name,
            {"entity": entity, "entityId": entity_id},
            sort=[("timestamp", 1)]
        )

    @staticmethod
    def _calculate_changes(before: Dict[str, Any], after: Dict[str, Any]) -> List[str]:
        """Return the keys whose values differ between two snapshots."""
        keys = set(before) | set(after)
        return sorted(key for key in keys if before.get(key) != after.get(key))
