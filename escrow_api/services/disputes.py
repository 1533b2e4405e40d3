# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Dispute service: raising disputes, the dispute chat and admin resolution.
"""

import logging
from typing import List
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pymongo import ASCENDING

from escrow_api.domain import disputes as dispute_rules
from escrow_api.middleware.error_handler import ValidationException
from escrow_api.models.base import utcnow
from escrow_api.models.entities import DisputeMessage, Order, UserContext
from escrow_api.models.enums import DisputeStatus
from escrow_api.services import amqp as events
from escrow_api.services.mongodb import MongoDBService
from escrow_api.services.orders import enforce_transition, order_event_payload, order_snapshot
from escrow_api.services.settlement import SettlementService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class DisputeService:
    """Dispute operations on orders."""

    orders_collection = "orders"
    messages_collection = "dispute_messages"

    def __init__(self, mongo_service: MongoDBService, settlement_service: SettlementService,
                 amqp_service=None, audit_service=None):
        self.mongo_service = mongo_service
        self.settlement_service = settlement_service
        self.amqp_service = amqp_service
        self.audit_service = audit_service

    def open_dispute(self, user_context: UserContext, order_id: str, details: str) -> Order:
        """
        Raise a dispute on an order.

        An open dispute freezes delivery confirmation, release and
        cancellation until an admin resolves it.
        """
        with tracer.start_as_current_span("dispute.open") as span:
            span.set_attributes({"order.id": order_id, "user.id": user_context.user_id})
            order = self.settlement_service.load_order(order_id)
            enforce_transition(order, user_context, dispute_rules.check_open_dispute(order, user_context))

            updated = self.settlement_service.commit_transition(
                order,
                updates={
                    "disputeStatus": DisputeStatus.OPEN.value,
                    "disputeDetails": details.strip(),
                    "disputeOpenedBy": user_context.user_id
                },
                guards={"disputeStatus": DisputeStatus.NONE.value}
            )

            logger.info(
                "Dispute opened",
                extra={"order_id": order_id, "opened_by": user_context.user_id, "order_status": order.status}
            )
            self._after_change(user_context, updated, "open", events.DISPUTE_OPENED, before=order,
                               extra={"openedBy": user_context.user_id, "details": updated.dispute_details})
            return updated

    def send_message(self, user_context: UserContext, order_id: str, message: str) -> DisputeMessage:
        """Append a chat message to an open dispute."""
        with tracer.start_as_current_span("dispute.send_message") as span:
            span.set_attributes({"order.id": order_id, "user.id": user_context.user_id})
            order = self.settlement_service.load_order(order_id)
            enforce_transition(order, user_context, dispute_rules.check_send_message(order, user_context))

            try:
                entry = DisputeMessage(
                    order_id=order.id,
                    sender_id=user_context.user_id,
                    sender_role=dispute_rules.sender_role(order, user_context),
                    message=message
                )
            except ValueError as e:
                span.set_status(Status(StatusCode.ERROR, "invalid message"))
                raise ValidationException(
                    "Invalid dispute message",
                    [{"field": "message", "message": str(e), "type": "value_error"}]
                )

            self.mongo_service.insert(self.messages_collection, entry.to_document())
            self.mongo_service.update_one(
                self.orders_collection,
                {"_id": order.id},
                {"$set": {"updatedAt": utcnow()}}
            )

            logger.info(
                "Dispute message posted",
                extra={"order_id": order.id, "sender_id": entry.sender_id, "sender_role": entry.sender_role}
            )
            if self.amqp_service:
                self.amqp_service.publish_event(events.DISPUTE_MESSAGE_POSTED, {
                    "orderId": order.id,
                    "messageId": entry.id,
                    "senderId": entry.sender_id,
                    "senderRole": entry.sender_role,
                    "recipientIds": [uid for uid in (order.buyer_id, order.seller_id) if uid != entry.sender_id]
                })
            return entry

    def list_messages(self, user_context: UserContext, order_id: str) -> List[DisputeMessage]:
        """Dispute chat for an order visible to the caller, oldest first."""
        order = self.settlement_service.load_order(order_id)
        enforce_transition(order, user_context, self._check_read(order, user_context))

        documents = self.mongo_service.find_many(
            self.messages_collection,
            {"orderId": order.id},
            sort=[("timestamp", ASCENDING)]
        )
        return [DisputeMessage.from_document(document) for document in documents]

    def resolve(self, user_context: UserContext, order_id: str, resolution: str,
                admin_notes: str = None) -> Order:
        """
        Resolve an open dispute in favour of the buyer or the seller.

        Raises:
            AuthorizationException: If the caller is not an admin
            InvalidTransitionException: If no dispute is open
        """
        with tracer.start_as_current_span("dispute.resolve") as span:
            span.set_attributes({"order.id": order_id, "dispute.resolution": resolution})
            order = self.settlement_service.load_order(order_id)
            enforce_transition(order, user_context, dispute_rules.check_resolve(order, user_context))

            try:
                plan = dispute_rules.plan_resolution(order, resolution, admin_notes)
            except ValueError as e:
                raise ValidationException(str(e))

            updated = self.settlement_service.commit_transition(
                order,
                updates=plan.updates,
                postings=plan.postings,
                guards={"status": order.status, "disputeStatus": DisputeStatus.OPEN.value}
            )
            settled = self.settlement_service.settle_order(updated.id)

            logger.info(
                "Dispute resolved",
                extra={
                    "order_id": order.id,
                    "resolution": resolution,
                    "previous_status": order.status,
                    "new_status": settled.status,
                    "postings": len(plan.postings)
                }
            )
            self._after_change(user_context, settled, "resolve", events.DISPUTE_RESOLVED, before=order,
                               extra={"resolution": resolution, "adminNotes": settled.admin_notes})
            return settled

    @staticmethod
    def _check_read(order: Order, user_context: UserContext):
        if user_context.is_admin() or order.is_participant(user_context.user_id):
            return dispute_rules.TransitionCheck.ok()
        return dispute_rules.TransitionCheck.deny("Only dispute participants can read messages")

    def _after_change(self, user_context: UserContext, order: Order, action: str, event_type: str,
                      before: Order, extra=None) -> None:
        if self.audit_service:
            self.audit_service.record(
                user_id=user_context.user_id,
                entity="dispute",
                entity_id=order.id,
                action=action,
                before=order_snapshot(before),
                after=order_snapshot(order),
                user_context=user_context
            )
        if self.amqp_service:
            payload = order_event_payload(order)
            payload.update(extra or {})
            self.amqp_service.publish_event(event_type, payload)
