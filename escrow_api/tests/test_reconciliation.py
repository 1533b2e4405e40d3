# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for ledger reconciliation: pure checks, the stored report and the
command-line runner.
"""

import json
import pytest
from datetime import timedelta
from unittest.mock import patch
from pymongo.errors import PyMongoError

from escrow_api.domain import reconciliation
from escrow_api.domain.orders import plan_creation
from escrow_api.models.base import utcnow
from escrow_api.scripts import reconcile_ledger
from escrow_api.services import amqp as events

from factories import make_order, make_wallet

ORDER_ID = "64b7f0c2a1b2c3d4e5f60718"
SELLER_ESCROW = f"{ORDER_ID}:create:seller"
COMMISSION = f"{ORDER_ID}:create:commission"


def settled_running_order(**overrides):
    data = dict(settlement_state="settled", unsettled_posting_ids=[])
    data.update(overrides)
    order = make_order(**data)
    order.ledger_postings = plan_creation(order)
    return order


def consistent_wallets():
    return [
        make_wallet("seller-1", [(SELLER_ESCROW, 0, 900000)]),
        make_wallet("admin-1", [(COMMISSION, 100000, 0)]),
    ]


class TestReconciliationChecks:
    """Pure drift checks."""

    def test_consistent_ledger_has_no_drift(self):
        result = reconciliation.reconcile(consistent_wallets(), [settled_running_order()])
        assert result.items == []
        assert not result.has_drift
        assert result.wallets_checked == 2
        assert result.orders_checked == 1

    def test_balance_mismatch(self):
        wallet = make_wallet("admin-1", [(COMMISSION, 100000, 0)], balance=100500)
        [item] = reconciliation.check_wallet(wallet)
        assert item.type == reconciliation.WALLET_BALANCE_MISMATCH
        assert item.expected == 100000
        assert item.actual == 100500

    def test_pending_mismatch(self):
        wallet = make_wallet("seller-1", [(SELLER_ESCROW, 0, 900000)], pending_balance=0)
        types = [item.type for item in reconciliation.check_wallet(wallet)]
        assert types == [reconciliation.WALLET_PENDING_MISMATCH]

    def test_negative_balance_is_a_warning(self):
        wallet = make_wallet("seller-1", [("refund", -5000, 0)])
        [item] = reconciliation.check_wallet(wallet)
        assert item.type == reconciliation.NEGATIVE_BALANCE
        assert item.severity == reconciliation.SEVERITY_WARNING

    def test_missing_posting(self):
        wallets = {w.id: w for w in consistent_wallets()}
        wallets["admin-1"] = make_wallet("admin-1")
        [item] = reconciliation.check_order_postings(settled_running_order(), wallets)
        assert item.type == reconciliation.MISSING_POSTING
        assert item.posting_id == COMMISSION

    def test_unsettled_postings_are_not_expected_on_wallets(self):
        order = settled_running_order(settlement_state="pending", unsettled_posting_ids=[COMMISSION])
        wallets = {"seller-1": consistent_wallets()[0]}
        assert reconciliation.check_order_postings(order, wallets) == []

    def test_recently_updated_unsettled_order_is_a_warning(self):
        order = settled_running_order(settlement_state="pending", unsettled_posting_ids=[COMMISSION])
        stale_before = order.updated_at - timedelta(minutes=1)
        [item] = reconciliation.check_unsettled(order, stale_before)
        assert item.severity == reconciliation.SEVERITY_WARNING

    def test_stale_unsettled_order_is_an_error(self):
        order = settled_running_order(settlement_state="pending", unsettled_posting_ids=[COMMISSION])
        [item] = reconciliation.check_unsettled(order, order.updated_at + timedelta(minutes=1))
        assert item.severity == reconciliation.SEVERITY_ERROR

    def test_pending_invariant_violation(self):
        wallets = {w.id: w for w in consistent_wallets()}
        delivered = settled_running_order(status="delivered")
        [item] = reconciliation.check_pending_invariant(wallets, [delivered])
        assert item.type == reconciliation.PENDING_INVARIANT_VIOLATION
        assert item.wallet_id == "seller-1"
        assert item.expected == 0
        assert item.actual == 900000

    def test_pending_invariant_skips_sellers_with_unsettled_orders(self):
        wallets = {"seller-1": make_wallet("seller-1")}
        order = settled_running_order(settlement_state="pending", unsettled_posting_ids=[SELLER_ESCROW])
        assert reconciliation.check_pending_invariant(wallets, [order]) == []

    def test_seller_without_wallet(self):
        [item] = reconciliation.check_pending_invariant({}, [settled_running_order()])
        assert item.detail == "Seller has running orders but no wallet"
        assert item.expected == 900000

    def test_warnings_alone_are_not_drift(self):
        result = reconciliation.ReconciliationResult(items=[
            reconciliation.DriftItem(type="negative_balance", severity="warning", detail="x")
        ])
        assert not result.has_drift
        assert result.to_dict()["warningCount"] == 1
        assert result.counts_by_type() == {"negative_balance": 1}


class TestReconciliationService:
    """Runs against the ledger stored in MongoDB."""

    def test_clean_run_stores_report(self, app, place_order, admin_context, amqp_service):
        place_order()
        report = app.reconciliation_service.run(admin_context)

        assert report["hasDrift"] is False
        assert report["walletsChecked"] == 2
        assert report["ordersChecked"] == 1
        assert report["requestedBy"] == admin_context.user_id
        assert app.reconciliation_service.latest_report()["_id"] == report["_id"]

        published = [call.args[0] for call in amqp_service.publish_event.call_args_list]
        assert events.LEDGER_DRIFT_DETECTED not in published

        audits = app.audit_service.list_for_entity("ledger", report["_id"])
        assert [entry["action"] for entry in audits] == ["reconcile"]

    def test_tampered_wallet_is_reported(self, app, mongo_service, place_order, amqp_service):
        place_order()
        mongo_service.update_one("wallets", {"_id": "seller-1"}, {"$inc": {"balance": 500}})

        report = app.reconciliation_service.run()

        assert report["hasDrift"] is True
        assert report["countsByType"] == {"wallet_balance_mismatch": 1}
        assert report["requestedBy"] is None
        amqp_service.publish_event.assert_any_call(events.LEDGER_DRIFT_DETECTED, {
            "reportId": report["_id"],
            "errorCount": 1,
            "countsByType": {"wallet_balance_mismatch": 1}
        })

    def test_interrupted_settlement_is_finished_by_run(self, app, mongo_service, place_order):
        with patch.object(app.wallet_service, 'apply_posting', side_effect=PyMongoError("primary stepped down")):
            order = place_order()
        assert not order.is_settled()

        # Make the order old enough to count as stuck
        mongo_service.update_one("orders", {"_id": order.id},
                                 {"$set": {"updatedAt": utcnow() - timedelta(minutes=5)}})

        before = app.reconciliation_service.check()
        assert before.counts_by_type() == {"unsettled_order": 1}
        assert before.has_drift

        report = app.reconciliation_service.run(settle=True)
        assert report["settlement"]["settled"] == 1
        assert report["hasDrift"] is False
        assert app.settlement_service.load_order(order.id).is_settled()


class TestReconcileScript:
    """Command-line runner exit codes."""

    @pytest.fixture(autouse=True)
    def use_test_database(self, mongo_service):
        with patch.object(reconcile_ledger, 'MongoDBService', return_value=mongo_service):
            yield

    def test_clean_ledger_exits_zero(self, place_order, capsys):
        place_order()
        assert reconcile_ledger.main([]) == reconcile_ledger.EXIT_CLEAN
        assert "0 errors" in capsys.readouterr().out

    def test_drift_exits_two(self, mongo_service, place_order, capsys):
        place_order()
        mongo_service.update_one("wallets", {"_id": "admin-1"}, {"$inc": {"balance": 1}})

        assert reconcile_ledger.main(["--json"]) == reconcile_ledger.EXIT_DRIFT
        report = json.loads(capsys.readouterr().out)
        assert report["countsByType"] == {"wallet_balance_mismatch": 1}

    def test_failure_exits_one(self, mongo_service):
        with patch.object(mongo_service, 'find_many', side_effect=PyMongoError("unreachable")):
            assert reconcile_ledger.main([]) == reconcile_ledger.EXIT_FAILED
