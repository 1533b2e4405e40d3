# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for order pricing, transition guards and posting plans.
"""

import pytest
from datetime import timedelta

from escrow_api.domain import orders as order_rules
from escrow_api.models.base import utcnow
from escrow_api.models.entities import Coupon, Product
from escrow_api.models.enums import LedgerTransition
from escrow_api.models.requests import OrderItemRequest

from factories import ADMIN, BUYER, SELLER, STRANGER, make_order


@pytest.fixture
def products():
    return {
        "prod-1": Product(id="prod-1", name="Ankara Fabric", seller_id="seller-1", price=500000, stock=10),
        "prod-2": Product(id="prod-2", name="Leather Sandals", seller_id="seller-1", price=200000,
                          discount=10, stock=1),
    }


class TestValidateCart:
    """Checkout validation against the catalog."""

    def test_valid_cart(self, products):
        result = order_rules.validate_cart(
            [OrderItemRequest(product_id="prod-1", quantity=2)], products, "buyer-1"
        )
        assert result.is_valid
        assert result.errors == []

    def test_missing_product(self, products):
        result = order_rules.validate_cart(
            [OrderItemRequest(product_id="gone", quantity=1)], products, "buyer-1"
        )
        assert not result.is_valid
        assert "no longer exists" in result.errors[0]

    def test_insufficient_stock(self, products):
        result = order_rules.validate_cart(
            [OrderItemRequest(product_id="prod-2", quantity=3)], products, "buyer-1"
        )
        assert not result.is_valid
        assert result.errors == ["Insufficient stock for Leather Sandals. Only 1 left."]

    def test_multiple_sellers_accepted(self, products):
        products["prod-3"] = Product(id="prod-3", name="Shea Butter", seller_id="seller-2", price=1000, stock=1)
        result = order_rules.validate_cart(
            [OrderItemRequest(product_id="prod-1", quantity=1),
             OrderItemRequest(product_id="prod-3", quantity=1)],
            products, "buyer-1"
        )
        assert result.is_valid

    def test_own_products_rejected(self, products):
        result = order_rules.validate_cart(
            [OrderItemRequest(product_id="prod-1", quantity=1)], products, "seller-1"
        )
        assert "You cannot order your own products" in result.errors


class TestPriceCart:
    """Pricing of a validated cart, one order per seller."""

    def test_product_discount_and_commission(self, products):
        [pricing] = order_rules.price_cart(
            [OrderItemRequest(product_id="prod-1", quantity=2),
             OrderItemRequest(product_id="prod-2", quantity=1)],
            products, None, 1000
        )
        assert pricing.seller_id == "seller-1"
        assert [item.unit_price for item in pricing.items] == [500000, 180000]
        assert pricing.subtotal == 1180000
        assert pricing.discount == 0
        assert pricing.total_amount == 1180000
        assert pricing.commission == 118000
        assert pricing.seller_amount == 1062000

    def test_groups_follow_cart_order(self, products):
        products["prod-3"] = Product(id="prod-3", name="Shea Butter", seller_id="seller-2", price=1000, stock=1)
        requested = [
            OrderItemRequest(product_id="prod-3", quantity=1),
            OrderItemRequest(product_id="prod-1", quantity=1),
            OrderItemRequest(product_id="prod-2", quantity=1),
        ]

        groups = order_rules.group_by_seller(requested, products)
        assert list(groups) == ["seller-2", "seller-1"]
        assert [item.product_id for item in groups["seller-1"]] == ["prod-1", "prod-2"]

    def test_fixed_coupon_split_across_sellers(self, products):
        products["prod-3"] = Product(id="prod-3", name="Shea Butter", seller_id="seller-2", price=100000, stock=1)
        coupon = Coupon(code="FLAT", discount=60001, type="fixed", expires_at=utcnow() + timedelta(days=1))

        first, second = order_rules.price_cart(
            [OrderItemRequest(product_id="prod-1", quantity=1),
             OrderItemRequest(product_id="prod-3", quantity=1)],
            products, coupon, 1000
        )

        # 500000 : 100000 of 60001 is 50000.83 : 10000.17
        assert (first.discount, second.discount) == (50001, 10000)
        assert first.discount + second.discount == 60001
        assert (first.total_amount, second.total_amount) == (449999, 90000)

    def test_zero_total_rejected(self):
        free = {"free": Product(id="free", name="Sample", seller_id="seller-1", price=0, stock=5)}
        with pytest.raises(ValueError):
            order_rules.price_cart([OrderItemRequest(product_id="free", quantity=1)], free, None, 1000)

    def test_fully_discounted_order_rejected(self, products):
        products["cheap"] = Product(id="cheap", name="Sticker", seller_id="seller-2", price=1, stock=5)
        coupon = Coupon(code="ALL", discount=100, type="percentage", expires_at=utcnow() + timedelta(days=1))
        with pytest.raises(ValueError):
            order_rules.price_cart(
                [OrderItemRequest(product_id="prod-1", quantity=1),
                 OrderItemRequest(product_id="cheap", quantity=1)],
                products, coupon, 1000
            )


class TestTransitionGuards:
    """Who may move an order, and from which state."""

    def test_only_buyer_confirms(self):
        order = make_order()
        assert order_rules.check_confirm_delivery(order, BUYER).allowed
        denied = order_rules.check_confirm_delivery(order, SELLER)
        assert not denied.allowed and denied.forbidden

    def test_confirm_blocked_by_open_dispute(self):
        check = order_rules.check_confirm_delivery(make_order(dispute_status="open"), BUYER)
        assert not check.allowed
        assert not check.forbidden
        assert "open dispute" in check.reason

    def test_confirm_requires_running(self):
        check = order_rules.check_confirm_delivery(make_order(status="delivered"), BUYER)
        assert not check.allowed
        assert check.reason == "Order is not in running status"

    def test_admin_release(self):
        order = make_order()
        assert order_rules.check_admin_release(order, ADMIN).allowed
        assert order_rules.check_admin_release(order, BUYER).forbidden

    def test_cancel_by_either_party_until_acknowledged(self):
        order = make_order()
        assert order_rules.check_cancel(order, BUYER).allowed
        assert order_rules.check_cancel(order, SELLER).allowed
        assert order_rules.check_cancel(order, STRANGER).forbidden

        acknowledged = make_order(tracking_status="acknowledged")
        check = order_rules.check_cancel(acknowledged, BUYER)
        assert not check.allowed and not check.forbidden

    def test_tracking_only_by_seller_while_running(self):
        assert order_rules.check_tracking_update(make_order(), SELLER).allowed
        assert order_rules.check_tracking_update(make_order(), BUYER).forbidden
        assert not order_rules.check_tracking_update(make_order(status="cancelled"), SELLER).allowed

    def test_tracking_allowed_during_dispute(self):
        assert order_rules.check_tracking_update(make_order(dispute_status="open"), SELLER).allowed

    def test_tracking_messages(self):
        assert order_rules.tracking_message("enroute").startswith("Your order is on the way")
        assert order_rules.tracking_message("unknown") == "Order status updated."


class TestPostingPlans:
    """Ledger postings produced by each transition."""

    def test_creation_escrows_seller_and_credits_commission(self):
        order = make_order()
        seller, commission = order_rules.plan_creation(order)

        assert seller.posting_id == f"{order.id}:create:seller"
        assert seller.wallet_id == "seller-1"
        assert seller.pending_delta == 900000 and seller.balance_delta == 0
        assert seller.status == "pending"

        assert commission.posting_id == f"{order.id}:create:commission"
        assert commission.wallet_id == "admin-1"
        assert commission.balance_delta == 100000

    def test_creation_without_commission(self):
        order = make_order(commission=0, seller_amount=1000000)
        postings = order_rules.plan_creation(order)
        assert [p.posting_id.split(":")[-1] for p in postings] == ["seller"]

    def test_creation_with_full_commission(self):
        order = make_order(commission=1000000, seller_amount=0)
        postings = order_rules.plan_creation(order)
        assert [p.posting_id.split(":")[-1] for p in postings] == ["commission"]

    def test_release_moves_pending_to_available(self):
        [posting] = order_rules.plan_release(make_order(), LedgerTransition.DELIVER)
        assert posting.balance_delta == 900000
        assert posting.pending_delta == -900000
        assert "Buyer confirmed delivery" in posting.description

    def test_release_rejects_other_transitions(self):
        with pytest.raises(ValueError):
            order_rules.plan_release(make_order(), LedgerTransition.CANCEL)

    def test_cancellation_reverses_everything(self):
        order = make_order()
        postings = {p.posting_id.split(":")[-1]: p for p in order_rules.plan_cancellation(order, False)}

        assert postings["buyer"].balance_delta == 1000000
        assert postings["seller"].pending_delta == -900000
        assert postings["seller"].description == f"Buyer cancelled order #{order.short_ref}"
        assert postings["commission"].balance_delta == -100000

    def test_seller_cancellation_description(self):
        order = make_order()
        seller = [p for p in order_rules.plan_cancellation(order, True) if p.wallet_id == "seller-1"][0]
        assert seller.description == f"Cancelled order #{order.short_ref} - Refunded to buyer"

    def test_dispute_refund_after_delivery_claws_back_available(self):
        order = make_order(status="delivered")
        seller = [p for p in order_rules.plan_dispute_refund(order) if p.wallet_id == "seller-1"][0]
        assert seller.balance_delta == -900000
        assert seller.pending_delta == 0

    def test_dispute_refund_while_running_uses_pending(self):
        seller = [p for p in order_rules.plan_dispute_refund(make_order()) if p.wallet_id == "seller-1"][0]
        assert seller.pending_delta == -900000
        assert seller.balance_delta == 0

    def test_dispute_release_after_delivery_moves_nothing(self):
        assert order_rules.plan_dispute_release(make_order(status="delivered")) == []

    def test_every_plan_nets_to_zero_across_wallets(self):
        order = make_order()
        created = order_rules.plan_creation(order)
        cancelled = order_rules.plan_cancellation(order, False)
        # Buyer refund is new money into the ledger; everything else nets out
        net = sum(p.balance_delta + p.pending_delta for p in created + cancelled if p.wallet_id != "buyer-1")
        assert net == 0
