# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Order transition commits and ledger settlement.

A transition is committed with a single compare-and-set on the order that
records the new state together with the postings it implies. Settlement then
applies those postings to wallets one by one and removes each from the
order's unsettled list. If the process stops in between, the order stays in
``settlementState: pending`` and a later settle call finishes the work;
postings are idempotent per wallet, so nothing is applied twice.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from escrow_api.middleware.error_handler import (
    ConcurrencyConflictException, InvalidTransitionException,
    NotFoundException, ServiceUnavailableException
)
from escrow_api.models.base import utcnow
from escrow_api.models.entities import LedgerPosting, Order
from escrow_api.models.enums import SettlementState, UserRole
from escrow_api.models.responses import SettlementSummary
from escrow_api.services.mongodb import MongoDBService
from escrow_api.services.wallets import WalletService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class SettlementService:
    """Commits order transitions and settles their postings."""

    collection_name = "orders"

    def __init__(self, mongo_service: MongoDBService, wallet_service: WalletService,
                 commission_wallet_user_id: Optional[str] = None,
                 retry_age_seconds: int = 60):
        self.mongo_service = mongo_service
        self.wallet_service = wallet_service
        self.commission_wallet_user_id = commission_wallet_user_id
        self.retry_age_seconds = retry_age_seconds

    def resolve_commission_wallet_id(self) -> str:
        """
        Wallet that receives platform commission.

        Raises:
            ServiceUnavailableException: If no commission wallet can be found
        """
        if self.commission_wallet_user_id:
            return self.commission_wallet_user_id

        admin = self.mongo_service.find_one(
            "users", {"role": UserRole.ADMIN.value}, sort=[("createdAt", ASCENDING)]
        )
        if admin is None:
            logger.error("No admin user available to receive commission")
            raise ServiceUnavailableException("Commission wallet is not configured")
        return str(admin["_id"])

    def load_order(self, order_id: str) -> Order:
        document = self.mongo_service.find_by_id(self.collection_name, order_id)
        if document is None:
            raise NotFoundException(f"Order {order_id} not found")
        return Order.from_document(document)

    def commit_transition(
        self,
        order: Order,
        updates: Dict[str, Any],
        postings: List[LedgerPosting] = None,
        guards: Dict[str, Any] = None,
        push: Dict[str, Any] = None
    ) -> Order:
        """
        Atomically move an order to a new state with its postings.

        Args:
            order: Order as read by the caller
            updates: Fields to ``$set``
            postings: Postings implied by the transition
            guards: Filter conditions that must still hold
            push: Extra ``$push`` operations (e.g. tracking events)

        Returns:
            The updated order

        Raises:
            NotFoundException: If the order disappeared
            InvalidTransitionException: If the order left the expected state
            ConcurrencyConflictException: If the order changed in any other way
        """
        with tracer.start_as_current_span("settlement.commit_transition") as span:
            postings = postings or []
            span.set_attributes({
                "order.id": order.id,
                "order.version": order.version,
                "order.postings": len(postings)
            })

            update: Dict[str, Any] = {"$set": {**updates, "updatedAt": utcnow()}}
            push_ops = dict(push or {})
            if postings:
                push_ops["ledgerPostings"] = {"$each": [posting.to_document() for posting in postings]}
                push_ops["unsettledPostingIds"] = {"$each": [posting.posting_id for posting in postings]}
                update["$set"]["settlementState"] = SettlementState.PENDING.value
            if push_ops:
                update["$push"] = push_ops

            document = self.mongo_service.compare_and_set(
                self.collection_name, order.id, order.version, update, guards
            )
            if document is None:
                span.set_status(Status(StatusCode.ERROR, "compare-and-set missed"))
                self._raise_commit_failure(order)

            logger.info(
                "Order transition committed",
                extra={
                    "order_id": order.id,
                    "from_version": order.version,
                    "postings": [posting.posting_id for posting in postings]
                }
            )
            return Order.from_document(document)

    def _raise_commit_failure(self, order: Order) -> None:
        current = self.mongo_service.find_by_id(self.collection_name, order.id)
        if current is None:
            raise NotFoundException(f"Order {order.id} not found")
        if current.get("status") != order.status or current.get("disputeStatus") != order.dispute_status:
            raise InvalidTransitionException(
                f"Order is now {current.get('status')} with dispute {current.get('disputeStatus')}"
            )
        raise ConcurrencyConflictException("Order was modified concurrently, please retry")

    def settle_order(self, order_id: str) -> Order:
        """
        Apply every unsettled posting of an order.

        Stops at the first posting that cannot be applied and leaves the rest
        pending for a later retry.

        Returns:
            The order as it stands after this attempt
        """
        with tracer.start_as_current_span("settlement.settle_order") as span:
            span.set_attribute("order.id", order_id)
            order = self.load_order(order_id)

            for posting in order.postings_for(order.unsettled_posting_ids):
                try:
                    self.wallet_service.apply_posting(posting)
                    self.mongo_service.update_one(
                        self.collection_name,
                        {"_id": order.id},
                        {"$pull": {"unsettledPostingIds": posting.posting_id}}
                    )
                except PyMongoError as e:
                    span.record_exception(e)
                    span.set_status(Status(StatusCode.ERROR, str(e)))
                    logger.error(
                        "Settlement interrupted, posting left pending",
                        extra={"order_id": order.id, "posting_id": posting.posting_id, "error": str(e)},
                        exc_info=True
                    )
                    return self.load_order(order.id)

            self.mongo_service.update_one(
                self.collection_name,
                {
                    "_id": order.id,
                    "settlementState": SettlementState.PENDING.value,
                    "unsettledPostingIds": {"$size": 0}
                },
                {"$set": {"settlementState": SettlementState.SETTLED.value}}
            )

            settled = self.load_order(order.id)
            span.set_attribute("order.settled", settled.is_settled())
            return settled

    def settle_pending(self, include_recent: bool = False) -> SettlementSummary:
        """
        Retry settlement of pending orders.

        Args:
            include_recent: Also retry orders updated within the retry age,
                which may still be settling in their own request

        Returns:
            SettlementSummary with counts of settled and failed orders
        """
        with tracer.start_as_current_span("settlement.settle_pending") as span:
            query: Dict[str, Any] = {"settlementState": SettlementState.PENDING.value}
            if not include_recent:
                query["updatedAt"] = {"$lte": utcnow() - timedelta(seconds=self.retry_age_seconds)}

            documents = self.mongo_service.find_many(
                self.collection_name, query, sort=[("updatedAt", ASCENDING)]
            )

            failed = []
            settled = 0
            for document in documents:
                order_id = str(document["_id"])
                if self.settle_order(order_id).is_settled():
                    settled += 1
                else:
                    failed.append(order_id)

            span.set_attributes({
                "settlement.examined": len(documents),
                "settlement.settled": settled,
                "settlement.failed": len(failed)
            })
            logger.info(
                "Settlement sweep finished",
                extra={"examined": len(documents), "settled": settled, "failed": len(failed)}
            )

            return SettlementSummary(
                examined=len(documents),
                settled=settled,
                failed=len(failed),
                failed_order_ids=failed
            )
