# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Ledger reconciliation: loads wallets and orders, runs the drift checks and
stores a report of what it found.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional
from opentelemetry import trace

from escrow_api.domain.reconciliation import ReconciliationResult, reconcile
from escrow_api.models.base import generate_object_id, utcnow
from escrow_api.models.entities import Order, UserContext, Wallet
from escrow_api.models.responses import SettlementSummary
from escrow_api.services import amqp as events
from escrow_api.services.mongodb import MongoDBService
from escrow_api.services.settlement import SettlementService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ReconciliationService:
    """Runs reconciliation over the whole ledger."""

    reports_collection = "reconciliation_reports"

    def __init__(self, mongo_service: MongoDBService, settlement_service: SettlementService,
                 amqp_service=None, audit_service=None):
        self.mongo_service = mongo_service
        self.settlement_service = settlement_service
        self.amqp_service = amqp_service
        self.audit_service = audit_service

    def check(self) -> ReconciliationResult:
        """Run the drift checks without storing anything."""
        with tracer.start_as_current_span("reconciliation.check") as span:
            wallets = [Wallet.from_document(doc) for doc in self.mongo_service.find_many("wallets")]
            orders = [Order.from_document(doc) for doc in self.mongo_service.find_many("orders")]
            stale_before = utcnow() - timedelta(seconds=self.settlement_service.retry_age_seconds)

            result = reconcile(wallets, orders, stale_before=stale_before)
            span.set_attributes({
                "reconciliation.wallets": result.wallets_checked,
                "reconciliation.orders": result.orders_checked,
                "reconciliation.errors": len(result.errors),
                "reconciliation.warnings": len(result.warnings)
            })
            return result

    def run(self, user_context: Optional[UserContext] = None, settle: bool = False) -> Dict[str, Any]:
        """
        Reconcile the ledger and store the report.

        Args:
            user_context: Admin who requested the run; None for scripted runs
            settle: Retry pending settlements before checking

        Returns:
            The stored report document
        """
        with tracer.start_as_current_span("reconciliation.run") as span:
            summary: Optional[SettlementSummary] = None
            if settle:
                summary = self.settlement_service.settle_pending(include_recent=False)

            result = self.check()
            report = {
                "_id": generate_object_id(),
                "createdAt": utcnow(),
                "requestedBy": user_context.user_id if user_context else None,
                **result.to_dict()
            }
            if summary is not None:
                report["settlement"] = summary.model_dump()

            self.mongo_service.insert(self.reports_collection, dict(report))
            span.set_attribute("reconciliation.has_drift", result.has_drift)

            log = logger.warning if result.has_drift else logger.info
            log(
                "Ledger reconciliation finished",
                extra={
                    "report_id": report["_id"],
                    "has_drift": result.has_drift,
                    "errors": len(result.errors),
                    "warnings": len(result.warnings),
                    "counts_by_type": result.counts_by_type()
                }
            )

            if result.has_drift and self.amqp_service:
                self.amqp_service.publish_event(events.LEDGER_DRIFT_DETECTED, {
                    "reportId": report["_id"],
                    "errorCount": len(result.errors),
                    "countsByType": result.counts_by_type()
                })

            if user_context and self.audit_service:
                self.audit_service.record(
                    user_id=user_context.user_id,
                    entity="ledger",
                    entity_id=report["_id"],
                    action="reconcile",
                    after={"hasDrift": result.has_drift, "errorCount": len(result.errors)},
                    user_context=user_context
                )
            return report

    def latest_report(self) -> Optional[Dict[str, Any]]:
        return self.mongo_service.find_one(self.reports_collection, {}, sort=[("createdAt", -1)])
