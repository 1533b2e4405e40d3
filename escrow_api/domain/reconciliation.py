# SPDX-License-Identifier: Apache-2.0

"""
Ledger reconciliation checks.

Compares wallet balances against their transaction logs, order postings
against the wallets they target, and seller pending balances against the
running orders that should be holding them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from escrow_api.models.entities import Order, Wallet
from escrow_api.models.enums import OrderStatus

WALLET_BALANCE_MISMATCH = "wallet_balance_mismatch"
WALLET_PENDING_MISMATCH = "wallet_pending_mismatch"
MISSING_POSTING = "missing_posting"
PENDING_INVARIANT_VIOLATION = "pending_invariant_violation"
UNSETTLED_ORDER = "unsettled_order"
NEGATIVE_BALANCE = "negative_balance"

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"


@dataclass
class DriftItem:
    """One disagreement found by reconciliation."""
    type: str
    severity: str
    detail: str
    wallet_id: Optional[str] = None
    order_id: Optional[str] = None
    posting_id: Optional[str] = None
    expected: Optional[int] = None
    actual: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'severity': self.severity,
            'detail': self.detail,
            'walletId': self.wallet_id,
            'orderId': self.order_id,
            'postingId': self.posting_id,
            'expected': self.expected,
            'actual': self.actual,
        }


@dataclass
class ReconciliationResult:
    """Outcome of a reconciliation run."""
    wallets_checked: int = 0
    orders_checked: int = 0
    items: List[DriftItem] = field(default_factory=list)

    @property
    def errors(self) -> List[DriftItem]:
        return [item for item in self.items if item.severity == SEVERITY_ERROR]

    @property
    def warnings(self) -> List[DriftItem]:
        return [item for item in self.items if item.severity == SEVERITY_WARNING]

    @property
    def has_drift(self) -> bool:
        """Warnings alone do not count as drift."""
        return bool(self.errors)

    def counts_by_type(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for item in self.items:
            counts[item.type] = counts.get(item.type, 0) + 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            'walletsChecked': self.wallets_checked,
            'ordersChecked': self.orders_checked,
            'hasDrift': self.has_drift,
            'errorCount': len(self.errors),
            'warningCount': len(self.warnings),
            'countsByType': self.counts_by_type(),
            'items': [item.to_dict() for item in self.items],
        }


def check_wallet(wallet: Wallet) -> List[DriftItem]:
    """Compare a wallet's balances with the sums of its transaction log."""
    items = []
    logged_balance = sum(tx.balance_delta for tx in wallet.transactions)
    logged_pending = sum(tx.pending_delta for tx in wallet.transactions)

    if wallet.balance != logged_balance:
        items.append(DriftItem(
            type=WALLET_BALANCE_MISMATCH,
            severity=SEVERITY_ERROR,
            detail="Wallet balance does not match its transaction log",
            wallet_id=wallet.id,
            expected=logged_balance,
            actual=wallet.balance
        ))
    if wallet.pending_balance != logged_pending:
        items.append(DriftItem(
            type=WALLET_PENDING_MISMATCH,
            severity=SEVERITY_ERROR,
            detail="Wallet pending balance does not match its transaction log",
            wallet_id=wallet.id,
            expected=logged_pending,
            actual=wallet.pending_balance
        ))
    if wallet.balance < 0:
        items.append(DriftItem(
            type=NEGATIVE_BALANCE,
            severity=SEVERITY_WARNING,
            detail="Wallet balance is negative",
            wallet_id=wallet.id,
            expected=0,
            actual=wallet.balance
        ))
    return items


def check_order_postings(order: Order, wallets: Dict[str, Wallet]) -> List[DriftItem]:
    """Every posting of a settled order must be recorded on its wallet."""
    items = []
    unsettled = set(order.unsettled_posting_ids)
    for posting in order.ledger_postings:
        if posting.posting_id in unsettled:
            continue
        wallet = wallets.get(posting.wallet_id)
        if wallet is None or posting.posting_id not in wallet.posting_ids:
            items.append(DriftItem(
                type=MISSING_POSTING,
                severity=SEVERITY_ERROR,
                detail="Settled posting is missing from its wallet",
                wallet_id=posting.wallet_id,
                order_id=order.id,
                posting_id=posting.posting_id
            ))
    return items


def check_unsettled(order: Order, stale_before: Optional[datetime] = None) -> List[DriftItem]:
    """
    Flag orders whose postings have not all been applied.

    Orders updated after ``stale_before`` may still be settling and are
    reported as warnings.
    """
    if order.is_settled() and not order.unsettled_posting_ids:
        return []
    stale = stale_before is None or order.updated_at <= stale_before
    return [DriftItem(
        type=UNSETTLED_ORDER,
        severity=SEVERITY_ERROR if stale else SEVERITY_WARNING,
        detail=f"Order has {len(order.unsettled_posting_ids)} unsettled postings",
        order_id=order.id
    )]


def check_pending_invariant(wallets: Dict[str, Wallet], orders: Iterable[Order]) -> List[DriftItem]:
    """
    A seller's pending balance equals the seller amounts of their running orders.

    Sellers with unsettled orders are skipped; those orders are reported on
    their own.
    """
    expected: Dict[str, int] = {}
    skipped = set()

    for order in orders:
        if not order.is_settled() or order.unsettled_posting_ids:
            skipped.add(order.seller_id)
            continue
        if order.status == OrderStatus.RUNNING:
            expected[order.seller_id] = expected.get(order.seller_id, 0) + order.seller_amount

    items = []
    for wallet_id, wallet in wallets.items():
        if wallet_id in skipped:
            continue
        want = expected.pop(wallet_id, 0)
        if wallet.pending_balance != want:
            items.append(DriftItem(
                type=PENDING_INVARIANT_VIOLATION,
                severity=SEVERITY_ERROR,
                detail="Pending balance does not match running orders",
                wallet_id=wallet_id,
                expected=want,
                actual=wallet.pending_balance
            ))

    # Sellers holding running orders but no wallet at all
    for seller_id, want in expected.items():
        if seller_id in skipped or want == 0:
            continue
        items.append(DriftItem(
            type=PENDING_INVARIANT_VIOLATION,
            severity=SEVERITY_ERROR,
            detail="Seller has running orders but no wallet",
            wallet_id=seller_id,
            expected=want,
            actual=0
        ))
    return items


def reconcile(
    wallets: Iterable[Wallet],
    orders: Iterable[Order],
    stale_before: Optional[datetime] = None
) -> ReconciliationResult:
    """
    Run every reconciliation check.

    Args:
        wallets: All wallets
        orders: All orders
        stale_before: Orders last updated before this time are expected to
            be settled

    Returns:
        ReconciliationResult with every drift item found
    """
    wallet_map = {wallet.id: wallet for wallet in wallets}
    order_list = list(orders)
    result = ReconciliationResult(wallets_checked=len(wallet_map), orders_checked=len(order_list))

    for wallet in wallet_map.values():
        result.items.extend(check_wallet(wallet))
    for order in order_list:
        result.items.extend(check_unsettled(order, stale_before))
        result.items.extend(check_order_postings(order, wallet_map))
    result.items.extend(check_pending_invariant(wallet_map, order_list))

    return result
