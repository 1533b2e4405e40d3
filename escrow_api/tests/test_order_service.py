# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for checkout and the order lifecycle against the stored ledger.
"""

import pytest
from unittest.mock import patch

from escrow_api.middleware.error_handler import (
    AuthorizationException, ConcurrencyConflictException, ConflictException,
    InvalidTransitionException, NotFoundException, ServiceUnavailableException,
    ValidationException
)
from escrow_api.models.requests import CreateOrderRequest
from escrow_api.services import amqp as events


def balances(app, user_id):
    wallet = app.wallet_service.get_wallet(user_id)
    return wallet.balance, wallet.pending_balance


class TestCreateOrder:
    """Checkout escrows the seller's share and credits commission."""

    def test_order_is_priced_and_settled(self, app, place_order, seed):
        order = place_order()

        assert order.total_amount == 1000000
        assert order.commission == 100000
        assert order.seller_amount == 900000
        assert order.commission_wallet_id == "admin-1"
        assert order.is_settled()
        assert order.unsettled_posting_ids == []
        assert len(order.ledger_postings) == 2

        assert balances(app, "seller-1") == (0, 900000)
        assert balances(app, "admin-1") == (100000, 0)
        assert seed.products.find_one({"_id": "prod-1"})["stock"] == 8

    def test_order_with_coupon(self, app, place_order, seed):
        order = place_order(coupon_code="SAVE10")

        assert order.discount == 100000
        assert order.total_amount == 900000
        assert order.commission == 90000
        assert balances(app, "seller-1") == (0, 810000)
        assert seed.coupons.find_one({"_id": "SAVE10"})["usedBy"] == ["buyer-1"]

    def test_coupon_used_once_per_user(self, place_order):
        place_order(coupon_code="SAVE10")
        with pytest.raises(ValidationException) as exc_info:
            place_order(coupon_code="SAVE10")
        assert exc_info.value.message == "Invalid or expired coupon"

    def test_expired_coupon(self, place_order, seed):
        with pytest.raises(ValidationException):
            place_order(coupon_code="OLD500")
        assert seed.products.find_one({"_id": "prod-1"})["stock"] == 10

    def test_sold_out_product_is_removed(self, place_order, seed):
        order = place_order(items=[{"productId": "prod-2", "quantity": 1}])
        assert order.items[0].unit_price == 180000
        assert seed.products.find_one({"_id": "prod-2"}) is None

    def test_seller_cannot_buy_own_product(self, place_order, seller_context):
        with pytest.raises(ValidationException):
            place_order(user_context=seller_context)

    def test_insufficient_stock(self, place_order, app):
        with pytest.raises(ValidationException):
            place_order(items=[{"productId": "prod-1", "quantity": 11}])
        assert app.mongodb_service.find_many("orders", {}) == []

    def test_stock_taken_concurrently_rolls_back(self, app, place_order, seed):
        with patch.object(app.order_service, '_reserve_stock', return_value=False):
            with pytest.raises(ConflictException):
                place_order(coupon_code="SAVE10")

        assert seed.coupons.find_one({"_id": "SAVE10"})["usedBy"] == []
        assert app.mongodb_service.find_many("orders", {}) == []

    def test_failed_insert_releases_stock(self, app, place_order, seed):
        with patch.object(app.mongodb_service, 'insert', side_effect=RuntimeError("write failed")):
            with pytest.raises(RuntimeError):
                place_order()
        assert seed.products.find_one({"_id": "prod-1"})["stock"] == 10

    def test_no_commission_wallet(self, app, place_order, seed):
        seed.users.delete_one({"_id": "admin-1"})
        with pytest.raises(ServiceUnavailableException):
            place_order()
        assert seed.products.find_one({"_id": "prod-1"})["stock"] == 10

    def test_configured_commission_wallet(self, app, place_order):
        app.settlement_service.commission_wallet_user_id = "treasury"
        order = place_order()
        assert order.commission_wallet_id == "treasury"
        assert balances(app, "treasury") == (100000, 0)

    def test_creation_is_audited_and_published(self, app, place_order, amqp_service):
        order = place_order()

        [entry] = app.audit_service.list_for_entity("order", order.id)
        assert entry["action"] == "create"
        assert entry["before"] is None
        assert entry["after"]["settlementState"] == "settled"

        event_type, payload = amqp_service.publish_event.call_args.args
        assert event_type == events.ORDER_CREATED
        assert payload["orderId"] == order.id
        assert payload["sellerAmount"] == 900000


class TestOrderReads:

    def test_participants_see_order(self, app, place_order, seller_context, admin_context):
        order = place_order()
        assert app.order_service.get_order(seller_context, order.id).id == order.id
        assert app.order_service.get_order(admin_context, order.id).id == order.id

    def test_stranger_gets_not_found(self, app, place_order, other_buyer_context):
        order = place_order()
        with pytest.raises(NotFoundException):
            app.order_service.get_order(other_buyer_context, order.id)

    def test_list_by_view(self, app, place_order, buyer_context, seller_context, admin_context):
        place_order()
        place_order(items=[{"productId": "prod-3", "quantity": 1}])

        orders, total = app.order_service.list_orders(seller_context)
        assert total == 1

        orders, total = app.order_service.list_orders(buyer_context, status="running")
        assert total == 2

        with pytest.raises(AuthorizationException):
            app.order_service.list_orders(buyer_context, view="admin")

        orders, total = app.order_service.list_orders(admin_context, view="admin", page_size=1)
        assert total == 2
        assert len(orders) == 1


class TestConfirmDelivery:

    def test_buyer_confirms(self, app, place_order, buyer_context, amqp_service):
        order = place_order()
        confirmed = app.order_service.confirm_delivery(buyer_context, order.id)

        assert confirmed.status == "delivered"
        assert confirmed.buyer_confirmed is True
        assert confirmed.is_settled()
        assert confirmed.version == order.version + 1
        assert balances(app, "seller-1") == (900000, 0)
        assert amqp_service.publish_event.call_args.args[0] == events.ORDER_DELIVERED

    def test_seller_cannot_confirm(self, app, place_order, seller_context):
        order = place_order()
        with pytest.raises(AuthorizationException):
            app.order_service.confirm_delivery(seller_context, order.id)

    def test_stranger_cannot_see_order(self, app, place_order, other_buyer_context):
        order = place_order()
        with pytest.raises(NotFoundException):
            app.order_service.confirm_delivery(other_buyer_context, order.id)

    def test_confirm_twice(self, app, place_order, buyer_context):
        order = place_order()
        app.order_service.confirm_delivery(buyer_context, order.id)
        with pytest.raises(InvalidTransitionException):
            app.order_service.confirm_delivery(buyer_context, order.id)
        assert balances(app, "seller-1") == (900000, 0)

    def test_blocked_by_open_dispute(self, app, place_order, buyer_context):
        order = place_order()
        app.dispute_service.open_dispute(buyer_context, order.id, "Wrong colour")
        with pytest.raises(InvalidTransitionException):
            app.order_service.confirm_delivery(buyer_context, order.id)

    def test_stale_version_conflicts(self, app, place_order, buyer_context, mongo_service):
        order = place_order()
        mongo_service.update_one("orders", {"_id": order.id}, {"$inc": {"version": 1}})

        with patch.object(app.settlement_service, 'load_order', return_value=order):
            with pytest.raises(ConcurrencyConflictException):
                app.order_service.confirm_delivery(buyer_context, order.id)
        assert balances(app, "seller-1") == (0, 900000)

    def test_state_changed_underneath(self, app, place_order, buyer_context, mongo_service):
        order = place_order()
        mongo_service.update_one("orders", {"_id": order.id},
                                 {"$set": {"status": "cancelled"}, "$inc": {"version": 1}})

        with patch.object(app.settlement_service, 'load_order', return_value=order):
            with pytest.raises(InvalidTransitionException):
                app.order_service.confirm_delivery(buyer_context, order.id)


class TestAdminRelease:

    def test_admin_releases(self, app, place_order, admin_context):
        order = place_order()
        released = app.order_service.release_by_admin(admin_context, order.id)

        assert released.status == "delivered"
        assert released.admin_released is True
        assert balances(app, "seller-1") == (900000, 0)

    def test_buyer_cannot_release(self, app, place_order, buyer_context):
        order = place_order()
        with pytest.raises(AuthorizationException):
            app.order_service.release_by_admin(buyer_context, order.id)


class TestCancelOrder:

    def test_buyer_cancels(self, app, place_order, buyer_context):
        order = place_order()
        cancelled = app.order_service.cancel_order(buyer_context, order.id, "Changed my mind")

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_by == "buyer-1"
        assert cancelled.seller_cancelled is False
        assert cancelled.is_settled()
        assert balances(app, "buyer-1") == (1000000, 0)
        assert balances(app, "seller-1") == (0, 0)
        assert balances(app, "admin-1") == (0, 0)

    def test_seller_cancels(self, app, place_order, seller_context):
        order = place_order()
        cancelled = app.order_service.cancel_order(seller_context, order.id, "Out of stock")

        assert cancelled.seller_cancelled is True
        reversal = app.wallet_service.get_wallet("seller-1").recent_transactions()[0]
        assert reversal.description == f"Cancelled order #{order.short_ref} - Refunded to buyer"
        refund = app.wallet_service.get_wallet("buyer-1").transactions[0]
        assert refund.description == f"Refund for cancelled order #{order.short_ref}"

    def test_cannot_cancel_after_acknowledgement(self, app, place_order, buyer_context, seller_context):
        order = place_order()
        app.order_service.update_tracking(seller_context, order.id, "acknowledged")
        with pytest.raises(InvalidTransitionException):
            app.order_service.cancel_order(buyer_context, order.id, "Too slow")

    def test_cannot_cancel_delivered(self, app, place_order, buyer_context):
        order = place_order()
        app.order_service.confirm_delivery(buyer_context, order.id)
        with pytest.raises(InvalidTransitionException):
            app.order_service.cancel_order(buyer_context, order.id, "Too late")
        assert balances(app, "buyer-1") == (0, 0)


class TestTracking:

    def test_seller_updates_tracking(self, app, place_order, seller_context, amqp_service):
        order = place_order()
        updated = app.order_service.update_tracking(seller_context, order.id, "enroute")

        assert updated.tracking_status == "enroute"
        assert updated.settlement_state == "settled"
        [event] = updated.tracking_history
        assert event.message.startswith("Your order is on the way")

        payload = amqp_service.publish_event.call_args.args[1]
        assert payload["trackingStatus"] == "enroute"

    def test_history_accumulates(self, app, place_order, seller_context):
        order = place_order()
        app.order_service.update_tracking(seller_context, order.id, "acknowledged")
        updated = app.order_service.update_tracking(seller_context, order.id, "ready_for_pickup")
        assert [event.status for event in updated.tracking_history] == ["acknowledged", "ready_for_pickup"]

    def test_buyer_cannot_update_tracking(self, app, place_order, buyer_context):
        order = place_order()
        with pytest.raises(AuthorizationException):
            app.order_service.update_tracking(buyer_context, order.id, "enroute")

    def test_unknown_order(self, app, seed, seller_context):
        with pytest.raises(NotFoundException):
            app.order_service.update_tracking(seller_context, "missing", "enroute")


class TestMultiSellerCheckout:
    """A cart spanning sellers becomes one order per seller."""

    @pytest.fixture
    def two_seller_cart(self):
        def _cart(coupon_code=None):
            return CreateOrderRequest(
                items=[
                    {"productId": "prod-1", "quantity": 2},
                    {"productId": "prod-3", "quantity": 1}
                ],
                delivery_address="12 Admiralty Way, Lekki",
                coupon_code=coupon_code
            )
        return _cart

    def test_one_order_per_seller(self, app, buyer_context, seed, two_seller_cart):
        first, second = app.order_service.checkout(buyer_context, two_seller_cart())

        assert (first.seller_id, second.seller_id) == ("seller-1", "seller-2")
        assert [item.product_id for item in first.items] == ["prod-1"]
        assert [item.product_id for item in second.items] == ["prod-3"]
        assert first.is_settled() and second.is_settled()
        assert {posting.posting_id for posting in first.ledger_postings}.isdisjoint(
            posting.posting_id for posting in second.ledger_postings
        )

        assert balances(app, "seller-1") == (0, 900000)
        assert balances(app, "seller-2") == (0, 135000)
        assert balances(app, "admin-1") == (115000, 0)
        assert len(app.mongodb_service.find_many("orders", {})) == 2

    def test_coupon_split_by_subtotal(self, app, buyer_context, seed, two_seller_cart):
        first, second = app.order_service.checkout(buyer_context, two_seller_cart("SAVE10"))

        assert (first.discount, second.discount) == (100000, 15000)
        assert (first.total_amount, second.total_amount) == (900000, 135000)
        assert (first.commission, second.commission) == (90000, 13500)
        assert first.coupon_code == second.coupon_code == "SAVE10"
        assert balances(app, "seller-2") == (0, 121500)
        assert seed.coupons.find_one({"_id": "SAVE10"})["usedBy"] == ["buyer-1"]

    def test_each_order_is_published(self, app, buyer_context, seed, amqp_service, two_seller_cart):
        orders = app.order_service.checkout(buyer_context, two_seller_cart())

        published = [call.args for call in amqp_service.publish_event.call_args_list]
        assert [event_type for event_type, _ in published] == [events.ORDER_CREATED] * 2
        assert [payload["orderId"] for _, payload in published] == [order.id for order in orders]

    def test_failure_for_second_seller_rolls_back_everything(self, app, buyer_context, seed, two_seller_cart):
        insert = app.mongodb_service.insert
        calls = []

        def fail_second_order(collection, document):
            if collection == "orders":
                calls.append(document["_id"])
                if len(calls) == 2:
                    raise RuntimeError("write failed")
            return insert(collection, document)

        with patch.object(app.mongodb_service, 'insert', side_effect=fail_second_order):
            with pytest.raises(RuntimeError):
                app.order_service.checkout(buyer_context, two_seller_cart("SAVE10"))

        assert app.mongodb_service.find_many("orders", {}) == []
        assert seed.products.find_one({"_id": "prod-1"})["stock"] == 10
        assert seed.products.find_one({"_id": "prod-3"})["stock"] == 5
        assert seed.coupons.find_one({"_id": "SAVE10"})["usedBy"] == []
        assert balances(app, "seller-1") == (0, 0)

    def test_stock_missing_for_second_seller(self, app, buyer_context, seed, two_seller_cart):
        reserve = app.order_service._reserve_stock

        def sold_out_prod_3(product_id, quantity):
            return product_id != "prod-3" and reserve(product_id, quantity)

        with patch.object(app.order_service, '_reserve_stock', side_effect=sold_out_prod_3):
            with pytest.raises(ConflictException):
                app.order_service.checkout(buyer_context, two_seller_cart())

        assert seed.products.find_one({"_id": "prod-1"})["stock"] == 10
        assert app.mongodb_service.find_many("orders", {}) == []

    def test_own_product_in_mixed_cart_rejected(self, app, other_seller_context, seed, two_seller_cart):
        with pytest.raises(ValidationException) as exc_info:
            app.order_service.checkout(other_seller_context, two_seller_cart())
        messages = [error["message"] for error in exc_info.value.validation_errors]
        assert "You cannot order your own products" in messages
