# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Order lifecycle service: checkout, delivery confirmation, admin release,
cancellation and tracking.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from escrow_api.domain import authorization
from escrow_api.domain import orders as order_rules
from escrow_api.domain.orders import OrderPricing, TransitionCheck
from escrow_api.middleware.error_handler import (
    AuthorizationException, ConflictException, InvalidTransitionException,
    NotFoundException, ValidationException
)
from escrow_api.models.base import generate_object_id
from escrow_api.models.entities import Coupon, Order, Product, TrackingEvent, UserContext
from escrow_api.models.enums import DisputeStatus, LedgerTransition, OrderStatus
from escrow_api.models.requests import CreateOrderRequest
from escrow_api.services import amqp as events
from escrow_api.services.coupons import CouponService
from escrow_api.services.mongodb import MongoDBService
from escrow_api.services.settlement import SettlementService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def order_event_payload(order: Order) -> Dict[str, Any]:
    """Common event body for order events."""
    return {
        "orderId": order.id,
        "buyerId": order.buyer_id,
        "sellerId": order.seller_id,
        "status": order.status,
        "disputeStatus": order.dispute_status,
        "totalAmount": order.total_amount,
        "sellerAmount": order.seller_amount,
        "commission": order.commission,
    }


def order_snapshot(order: Order) -> Dict[str, Any]:
    """Audit snapshot of the fields transitions change."""
    return {
        "status": order.status,
        "disputeStatus": order.dispute_status,
        "trackingStatus": order.tracking_status,
        "settlementState": order.settlement_state,
        "version": order.version,
    }


def enforce_transition(order: Order, user_context: UserContext, check: TransitionCheck) -> None:
    """
    Turn a denied transition check into the matching error.

    Callers who cannot see the order get a 404 so its existence is not leaked.
    """
    if check.allowed:
        return
    if check.forbidden:
        if not authorization.can_view_order(order, user_context):
            raise NotFoundException(f"Order {order.id} not found")
        raise AuthorizationException(check.reason)
    raise InvalidTransitionException(check.reason)


class OrderService:
    """Order lifecycle operations."""

    collection_name = "orders"
    products_collection = "products"

    def __init__(self, mongo_service: MongoDBService, settlement_service: SettlementService,
                 coupon_service: CouponService, amqp_service=None, audit_service=None,
                 commission_rate_bps: int = 1000):
        self.mongo_service = mongo_service
        self.settlement_service = settlement_service
        self.coupon_service = coupon_service
        self.amqp_service = amqp_service
        self.audit_service = audit_service
        self.commission_rate_bps = commission_rate_bps

    # Reads

    def get_order(self, user_context: UserContext, order_id: str) -> Order:
        """
        Read an order visible to the caller.

        Raises:
            NotFoundException: If the order does not exist or is not visible
        """
        order = self.settlement_service.load_order(order_id)
        if not authorization.can_view_order(order, user_context):
            raise NotFoundException(f"Order {order_id} not found")
        return order

    def list_orders(
        self,
        user_context: UserContext,
        view: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[Order], int]:
        """List orders for a role view, newest first."""
        with tracer.start_as_current_span("order.list") as span:
            try:
                view = authorization.resolve_list_view(user_context, view)
            except PermissionError as e:
                raise AuthorizationException(str(e))

            query = authorization.build_order_query(user_context, view, status)
            span.set_attributes({"order.view": view, "pagination.page": page})

            result = self.mongo_service.paginate(
                self.collection_name, query, page=page, page_size=page_size
            )
            return [Order.from_document(document) for document in result.items], result.total

    # Checkout

    def checkout(self, user_context: UserContext, request: CreateOrderRequest) -> List[Order]:
        """
        Check out a cart as one order per seller.

        Coupon consumption and stock reservation are each atomic per document;
        if a later step fails for any seller, every earlier step is undone
        before raising and no order is left behind.

        Returns:
            The created orders, in the order their sellers first appear in the cart

        Raises:
            ValidationException: If the cart or coupon is not valid
            ConflictException: If stock or the coupon was taken concurrently
            ServiceUnavailableException: If no commission wallet exists
        """
        with tracer.start_as_current_span("order.checkout") as span:
            buyer_id = user_context.user_id
            span.set_attributes({"user.id": buyer_id, "order.items": len(request.items)})

            products = self._load_products([item.product_id for item in request.items])
            validation = order_rules.validate_cart(request.items, products, buyer_id)
            if not validation.is_valid:
                span.set_status(Status(StatusCode.ERROR, "cart validation failed"))
                raise ValidationException(
                    "Cart validation failed",
                    [{"field": "items", "message": error, "type": "cart_error"} for error in validation.errors]
                )

            coupon = self._validate_coupon(request.coupon_code, buyer_id)

            try:
                pricings = order_rules.price_cart(request.items, products, coupon, self.commission_rate_bps)
            except ValueError as e:
                raise ValidationException(str(e))
            span.set_attribute("checkout.sellers", len(pricings))

            commission_wallet_id = self.settlement_service.resolve_commission_wallet_id()

            if coupon and not self.coupon_service.consume(coupon.code, buyer_id):
                raise ConflictException("Coupon is no longer available")

            reserved: List[Tuple[str, int]] = []
            inserted: List[str] = []
            try:
                for pricing in pricings:
                    for item in pricing.items:
                        if not self._reserve_stock(item.product_id, item.quantity):
                            raise ConflictException(f"Insufficient stock for {item.product_name}")
                        reserved.append((item.product_id, item.quantity))

                orders = [
                    self._build_order(buyer_id, pricing, coupon, commission_wallet_id, request)
                    for pricing in pricings
                ]
                for order in orders:
                    self.mongo_service.insert(self.collection_name, order.to_document())
                    inserted.append(order.id)

            except Exception:
                self._discard_orders(inserted)
                self._release_stock(reserved)
                if coupon:
                    self.coupon_service.release(coupon.code, buyer_id)
                raise

            for order in orders:
                logger.info(
                    "Order created",
                    extra={
                        "order_id": order.id,
                        "buyer_id": buyer_id,
                        "seller_id": order.seller_id,
                        "total_amount": order.total_amount,
                        "commission": order.commission
                    }
                )

            self._remove_sold_out([product_id for product_id, _ in reserved])

            created = []
            for order in orders:
                settled = self.settlement_service.settle_order(order.id)
                self._after_change(user_context, settled, "create", events.ORDER_CREATED, before=None)
                created.append(settled)

            span.set_attributes({
                "order.ids": [order.id for order in created],
                "order.total": sum(order.total_amount for order in created)
            })
            return created

    @staticmethod
    def _build_order(buyer_id: str, pricing: OrderPricing, coupon: Optional[Coupon],
                     commission_wallet_id: str, request: CreateOrderRequest) -> Order:
        order = Order(
            id=generate_object_id(),
            buyer_id=buyer_id,
            seller_id=pricing.seller_id,
            items=pricing.items,
            subtotal=pricing.subtotal,
            discount=pricing.discount,
            coupon_code=coupon.code if coupon and pricing.discount else None,
            total_amount=pricing.total_amount,
            commission=pricing.commission,
            seller_amount=pricing.seller_amount,
            commission_wallet_id=commission_wallet_id,
            delivery_address=request.delivery_address,
            phone_number=request.phone_number
        )
        postings = order_rules.plan_creation(order)
        order.ledger_postings = postings
        order.unsettled_posting_ids = [posting.posting_id for posting in postings]
        return order

    def _discard_orders(self, order_ids: List[str]) -> None:
        """Delete orders of a failed checkout; none of their postings were applied yet."""
        for order_id in order_ids:
            self.mongo_service.delete_one(self.collection_name, {"_id": order_id})
            logger.warning("Order from failed checkout discarded", extra={"order_id": order_id})

    def _load_products(self, product_ids: List[str]) -> Dict[str, Product]:
        documents = self.mongo_service.find_many(self.products_collection, {"_id": {"$in": product_ids}})
        return {str(document["_id"]): Product.from_document(document) for document in documents}

    def _validate_coupon(self, code: Optional[str], user_id: str) -> Optional[Coupon]:
        if not code:
            return None
        coupon = self.coupon_service.get_coupon(code)
        if coupon is None or not coupon.is_usable_by(user_id):
            raise ValidationException(
                "Invalid or expired coupon",
                [{"field": "couponCode", "message": "Invalid or expired coupon", "type": "coupon_error",
                  "input": code}]
            )
        return coupon

    def _reserve_stock(self, product_id: str, quantity: int) -> bool:
        return self.mongo_service.update_one(
            self.products_collection,
            {"_id": product_id, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}}
        )

    def _release_stock(self, reserved: List[Tuple[str, int]]) -> None:
        for product_id, quantity in reserved:
            self.mongo_service.update_one(
                self.products_collection,
                {"_id": product_id},
                {"$inc": {"stock": quantity}}
            )
            logger.info("Stock reservation released", extra={"product_id": product_id, "quantity": quantity})

    def _remove_sold_out(self, product_ids: List[str]) -> None:
        for product_id in product_ids:
            if self.mongo_service.delete_one(self.products_collection, {"_id": product_id, "stock": {"$lte": 0}}):
                logger.info("Sold out product removed", extra={"product_id": product_id})

    # Transitions

    def confirm_delivery(self, user_context: UserContext, order_id: str) -> Order:
        """Buyer confirms delivery; the seller's escrow becomes available."""
        with tracer.start_as_current_span("order.confirm_delivery") as span:
            span.set_attributes({"order.id": order_id, "user.id": user_context.user_id})
            order = self.settlement_service.load_order(order_id)
            enforce_transition(order, user_context, order_rules.check_confirm_delivery(order, user_context))

            updated = self.settlement_service.commit_transition(
                order,
                updates={"status": OrderStatus.DELIVERED.value, "buyerConfirmed": True},
                postings=order_rules.plan_release(order, LedgerTransition.DELIVER),
                guards=self._running_guards()
            )
            settled = self.settlement_service.settle_order(updated.id)
            self._after_change(user_context, settled, "confirm", events.ORDER_DELIVERED, before=order)
            return settled

    def release_by_admin(self, user_context: UserContext, order_id: str) -> Order:
        """Admin marks a running order delivered and releases the seller's funds."""
        with tracer.start_as_current_span("order.admin_release") as span:
            span.set_attributes({"order.id": order_id, "user.id": user_context.user_id})
            order = self.settlement_service.load_order(order_id)
            enforce_transition(order, user_context, order_rules.check_admin_release(order, user_context))

            updated = self.settlement_service.commit_transition(
                order,
                updates={"status": OrderStatus.DELIVERED.value, "adminReleased": True},
                postings=order_rules.plan_release(order, LedgerTransition.ADMIN_RELEASE),
                guards=self._running_guards()
            )
            settled = self.settlement_service.settle_order(updated.id)
            self._after_change(user_context, settled, "release", events.ORDER_DELIVERED, before=order)
            return settled

    def cancel_order(self, user_context: UserContext, order_id: str, reason: str) -> Order:
        """Buyer or seller cancels before the seller acknowledges the order."""
        with tracer.start_as_current_span("order.cancel") as span:
            span.set_attributes({"order.id": order_id, "user.id": user_context.user_id})
            order = self.settlement_service.load_order(order_id)
            enforce_transition(order, user_context, order_rules.check_cancel(order, user_context))

            by_seller = user_context.user_id == order.seller_id
            span.set_attribute("order.cancelled_by_seller", by_seller)

            guards = self._running_guards()
            guards["trackingStatus"] = None

            updated = self.settlement_service.commit_transition(
                order,
                updates={
                    "status": OrderStatus.CANCELLED.value,
                    "cancelReason": reason,
                    "cancelledBy": user_context.user_id,
                    "sellerCancelled": by_seller
                },
                postings=order_rules.plan_cancellation(order, cancelled_by_seller=by_seller),
                guards=guards
            )
            settled = self.settlement_service.settle_order(updated.id)
            self._after_change(user_context, settled, "cancel", events.ORDER_CANCELLED, before=order,
                               extra={"cancelledBy": user_context.user_id, "reason": reason})
            return settled

    def update_tracking(self, user_context: UserContext, order_id: str, status: str) -> Order:
        """Seller reports delivery progress."""
        with tracer.start_as_current_span("order.update_tracking") as span:
            span.set_attributes({"order.id": order_id, "tracking.status": status})
            order = self.settlement_service.load_order(order_id)
            enforce_transition(order, user_context, order_rules.check_tracking_update(order, user_context))

            event = TrackingEvent(status=status, message=order_rules.tracking_message(status))
            updated = self.settlement_service.commit_transition(
                order,
                updates={"trackingStatus": status},
                guards={"status": OrderStatus.RUNNING.value},
                push={"trackingHistory": event.to_document()}
            )
            self._after_change(user_context, updated, "track", events.ORDER_TRACKING_UPDATED, before=order,
                               extra={"trackingStatus": status, "message": event.message})
            return updated

    # Helpers

    @staticmethod
    def _running_guards() -> Dict[str, Any]:
        return {"status": OrderStatus.RUNNING.value, "disputeStatus": {"$ne": DisputeStatus.OPEN.value}}

    def _after_change(self, user_context: UserContext, order: Order, action: str, event_type: str,
                      before: Optional[Order], extra: Optional[Dict[str, Any]] = None) -> None:
        if self.audit_service:
            self.audit_service.record(
                user_id=user_context.user_id,
                entity="order",
                entity_id=order.id,
                action=action,
                before=order_snapshot(before) if before else None,
                after=order_snapshot(order),
                user_context=user_context
            )
        if self.amqp_service:
            payload = order_event_payload(order)
            payload.update(extra or {})
            self.amqp_service.publish_event(event_type, payload)
