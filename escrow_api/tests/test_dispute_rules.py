# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for dispute guards, resolution plans and order visibility.
"""

import pytest

from escrow_api.domain import authorization
from escrow_api.domain import disputes as dispute_rules
from escrow_api.models.entities import UserContext
from escrow_api.models.enums import LedgerTransition, UserRole

from factories import ADMIN, BUYER, SELLER, STRANGER, make_order


class TestDisputeGuards:

    def test_participants_open_disputes(self):
        order = make_order()
        assert dispute_rules.check_open_dispute(order, BUYER).allowed
        assert dispute_rules.check_open_dispute(order, SELLER).allowed
        assert dispute_rules.check_open_dispute(order, STRANGER).forbidden

    def test_delivered_orders_can_be_disputed(self):
        assert dispute_rules.check_open_dispute(make_order(status="delivered"), BUYER).allowed

    def test_cancelled_orders_cannot_be_disputed(self):
        check = dispute_rules.check_open_dispute(make_order(status="cancelled"), BUYER)
        assert not check.allowed
        assert check.reason == "Cannot dispute a cancelled order"

    def test_one_dispute_per_order(self):
        for status in ("open", "resolved"):
            check = dispute_rules.check_open_dispute(make_order(dispute_status=status), BUYER)
            assert not check.allowed
            assert not check.forbidden

    def test_messages_need_open_dispute(self):
        assert dispute_rules.check_send_message(make_order(dispute_status="open"), BUYER).allowed
        assert dispute_rules.check_send_message(make_order(dispute_status="open"), ADMIN).allowed
        assert dispute_rules.check_send_message(make_order(dispute_status="open"), STRANGER).forbidden
        assert not dispute_rules.check_send_message(make_order(dispute_status="resolved"), BUYER).allowed

    def test_only_admin_resolves(self):
        order = make_order(dispute_status="open")
        assert dispute_rules.check_resolve(order, ADMIN).allowed
        assert dispute_rules.check_resolve(order, BUYER).forbidden
        assert not dispute_rules.check_resolve(make_order(), ADMIN).allowed

    def test_sender_role(self):
        order = make_order(dispute_status="open")
        assert dispute_rules.sender_role(order, BUYER) == UserRole.BUYER
        assert dispute_rules.sender_role(order, SELLER) == UserRole.SELLER
        assert dispute_rules.sender_role(order, ADMIN) == UserRole.ADMIN


class TestResolutionPlans:

    def test_refund_buyer_cancels_order(self):
        plan = dispute_rules.plan_resolution(make_order(dispute_status="open"), "refund_buyer", "  Item never shipped ")
        assert plan.transition == LedgerTransition.DISPUTE_REFUND
        assert plan.updates["status"] == "cancelled"
        assert plan.updates["disputeStatus"] == "resolved"
        assert plan.updates["adminNotes"] == "Item never shipped"
        assert plan.updates["resolvedByAdmin"] is True
        assert {p.wallet_id for p in plan.postings} == {"buyer-1", "seller-1", "admin-1"}

    def test_release_to_seller_on_running_order(self):
        plan = dispute_rules.plan_resolution(make_order(dispute_status="open"), "release_to_seller")
        assert plan.updates["status"] == "delivered"
        assert plan.updates["adminNotes"] is None
        [posting] = plan.postings
        assert posting.posting_id.endswith(":dispute_release:seller")

    def test_release_to_seller_on_delivered_order(self):
        order = make_order(status="delivered", dispute_status="open")
        plan = dispute_rules.plan_resolution(order, "release_to_seller")
        assert plan.postings == []
        assert plan.updates["status"] == "delivered"

    def test_unknown_resolution(self):
        with pytest.raises(ValueError):
            dispute_rules.plan_resolution(make_order(dispute_status="open"), "split")


class TestOrderVisibility:

    def test_participants_and_admins_see_orders(self):
        order = make_order()
        assert authorization.can_view_order(order, BUYER)
        assert authorization.can_view_order(order, SELLER)
        assert authorization.can_view_order(order, ADMIN)
        assert not authorization.can_view_order(order, STRANGER)

    def test_role_on_order(self):
        order = make_order()
        assert authorization.role_on_order(order, BUYER) == "buyer"
        assert authorization.role_on_order(order, ADMIN) == "admin"
        assert authorization.role_on_order(order, STRANGER) is None

    def test_list_view_defaults_to_role(self):
        assert authorization.resolve_list_view(SELLER) == "seller"

    def test_non_admin_cannot_list_everything(self):
        with pytest.raises(PermissionError):
            authorization.resolve_list_view(BUYER, "admin")

    def test_seller_may_switch_to_buyer_view(self):
        assert authorization.resolve_list_view(SELLER, "buyer") == "buyer"

    def test_order_queries(self):
        user = UserContext(user_id="u-1", role="seller")
        assert authorization.build_order_query(user, "seller") == {"sellerId": "u-1"}
        assert authorization.build_order_query(user, "buyer", "running") == {"buyerId": "u-1", "status": "running"}
        assert authorization.build_order_query(ADMIN, "admin") == {}
