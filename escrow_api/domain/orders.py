# SPDX-License-Identifier: Apache-2.0

"""
Order domain logic for checkout pricing, transition guards and ledger plans.

This module contains pure functions: they read entities and return results or
posting plans, and never touch storage. Services persist what these functions
decide.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from escrow_api.domain import money
from escrow_api.models.entities import (
    Coupon, LedgerPosting, Order, OrderItem, Product, UserContext
)
from escrow_api.models.enums import (
    LedgerTransition, OrderStatus, TrackingStatus,
    TransactionStatus, TransactionType
)
from escrow_api.models.requests import OrderItemRequest


TRACKING_MESSAGES = {
    TrackingStatus.ACKNOWLEDGED.value: "Seller has acknowledged your order and is preparing it for delivery.",
    TrackingStatus.ENROUTE.value: "Your order is on the way! The delivery is in progress.",
    TrackingStatus.READY_FOR_PICKUP.value: "Your order has arrived and is ready for pickup/delivery confirmation.",
}
DEFAULT_TRACKING_MESSAGE = "Order status updated."


@dataclass
class ValidationResult:
    """Result of checkout validation."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)


@dataclass
class OrderPricing:
    """Priced share of a cart belonging to one seller."""
    seller_id: str
    items: List[OrderItem]
    subtotal: int
    discount: int
    total_amount: int
    commission: int
    seller_amount: int


@dataclass
class TransitionCheck:
    """Whether a caller may move an order through a transition."""
    allowed: bool
    reason: Optional[str] = None
    forbidden: bool = False

    @classmethod
    def ok(cls) -> "TransitionCheck":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> "TransitionCheck":
        return cls(allowed=False, reason=reason, forbidden=True)

    @classmethod
    def invalid(cls, reason: str) -> "TransitionCheck":
        return cls(allowed=False, reason=reason)


# Checkout

def validate_cart(
    requested: List[OrderItemRequest],
    products: Dict[str, Product],
    buyer_id: str
) -> ValidationResult:
    """
    Validate a cart against the current catalog.

    Args:
        requested: Cart lines from the request
        products: Products found in storage, keyed by ID
        buyer_id: Purchasing user

    Returns:
        ValidationResult listing every problem found
    """
    errors = []

    for item in requested:
        product = products.get(item.product_id)
        if product is None:
            errors.append(f"Product {item.product_id} no longer exists")
            continue
        if product.stock < item.quantity:
            errors.append(f"Insufficient stock for {product.name}. Only {product.stock} left.")

    seller_ids = {product.seller_id for product in products.values()}
    if buyer_id in seller_ids:
        errors.append("You cannot order your own products")

    return ValidationResult(is_valid=not errors, errors=errors)


def group_by_seller(
    requested: List[OrderItemRequest],
    products: Dict[str, Product]
) -> Dict[str, List[OrderItemRequest]]:
    """Split cart lines into one group per seller, in the order sellers first appear."""
    groups: Dict[str, List[OrderItemRequest]] = {}
    for item in requested:
        groups.setdefault(products[item.product_id].seller_id, []).append(item)
    return groups


def price_cart(
    requested: List[OrderItemRequest],
    products: Dict[str, Product],
    coupon: Optional[Coupon],
    commission_rate_bps: int
) -> List[OrderPricing]:
    """
    Price a validated cart as one order per seller.

    Unit prices carry the product-level discount. The coupon discount is
    computed on the whole cart subtotal and split across the sellers' orders
    in proportion to their subtotals. Commission is taken from each order's
    discounted total.

    Raises:
        ValueError: If any order would total zero or less
    """
    grouped = []
    for seller_id, lines in group_by_seller(requested, products).items():
        items = []
        for line in lines:
            product = products[line.product_id]
            items.append(OrderItem(
                product_id=product.id,
                product_name=product.name,
                quantity=line.quantity,
                unit_price=money.discounted_unit_price(product.price, product.discount)
            ))
        grouped.append((seller_id, items, sum(item.line_total for item in items)))

    subtotals = [subtotal for _, _, subtotal in grouped]
    if sum(subtotals) <= 0:
        raise ValueError("Order total must be greater than zero")
    discounts = money.allocate(money.coupon_discount(coupon, sum(subtotals)), subtotals)

    pricings = []
    for (seller_id, items, subtotal), discount in zip(grouped, discounts):
        total_amount = subtotal - discount
        if total_amount <= 0:
            raise ValueError("Order total must be greater than zero")
        commission = money.compute_commission(total_amount, commission_rate_bps)
        pricings.append(OrderPricing(
            seller_id=seller_id,
            items=items,
            subtotal=subtotal,
            discount=discount,
            total_amount=total_amount,
            commission=commission,
            seller_amount=total_amount - commission
        ))
    return pricings


# Transition guards

def _running_without_dispute(order: Order) -> Optional[TransitionCheck]:
    if order.status != OrderStatus.RUNNING:
        return TransitionCheck.invalid("Order is not in running status")
    if order.has_open_dispute():
        return TransitionCheck.invalid("Order has an open dispute awaiting admin resolution")
    return None


def check_confirm_delivery(order: Order, user_context: UserContext) -> TransitionCheck:
    """Only the buyer confirms delivery of a running order."""
    if order.buyer_id != user_context.user_id:
        return TransitionCheck.deny("Only the buyer can confirm delivery")
    return _running_without_dispute(order) or TransitionCheck.ok()


def check_admin_release(order: Order, user_context: UserContext) -> TransitionCheck:
    """Admins may release a running order's funds to the seller."""
    if not user_context.is_admin():
        return TransitionCheck.deny("Only admins can release orders")
    return _running_without_dispute(order) or TransitionCheck.ok()


def check_cancel(order: Order, user_context: UserContext) -> TransitionCheck:
    """Buyer or seller may cancel a running order until the seller acknowledges it."""
    if not order.is_participant(user_context.user_id):
        return TransitionCheck.deny("Only the buyer or seller can cancel this order")
    blocked = _running_without_dispute(order)
    if blocked:
        return blocked
    if order.tracking_status is not None:
        return TransitionCheck.invalid("Order can no longer be cancelled after the seller acknowledged it")
    return TransitionCheck.ok()


def check_tracking_update(order: Order, user_context: UserContext) -> TransitionCheck:
    """Only the seller updates tracking, and only while the order runs."""
    if order.seller_id != user_context.user_id:
        return TransitionCheck.deny("Only the seller can update tracking")
    if order.status != OrderStatus.RUNNING:
        return TransitionCheck.invalid("Order is not in running status")
    return TransitionCheck.ok()


def tracking_message(status: str) -> str:
    """Buyer-facing message for a tracking status."""
    return TRACKING_MESSAGES.get(status, DEFAULT_TRACKING_MESSAGE)


# Posting plans

def posting_id(order_id: str, transition: LedgerTransition, leg: str) -> str:
    return f"{order_id}:{transition.value}:{leg}"


def _posting(
    order: Order,
    transition: LedgerTransition,
    leg: str,
    wallet_id: str,
    type: TransactionType,
    amount: int,
    description: str,
    balance_delta: int = 0,
    pending_delta: int = 0,
    status: TransactionStatus = TransactionStatus.COMPLETED
) -> LedgerPosting:
    return LedgerPosting(
        posting_id=posting_id(order.id, transition, leg),
        wallet_id=wallet_id,
        balance_delta=balance_delta,
        pending_delta=pending_delta,
        type=type,
        amount=amount,
        description=description,
        status=status,
        order_id=order.id
    )


def plan_creation(order: Order) -> List[LedgerPosting]:
    """Escrow the seller's share and credit the platform commission."""
    ref = order.short_ref
    postings = []
    if order.seller_amount > 0:
        postings.append(_posting(
            order, LedgerTransition.CREATE, "seller", order.seller_id,
            TransactionType.CREDIT, order.seller_amount,
            f"Pending payment for order #{ref}",
            pending_delta=order.seller_amount,
            status=TransactionStatus.PENDING
        ))
    if order.commission > 0:
        postings.append(_posting(
            order, LedgerTransition.CREATE, "commission", order.commission_wallet_id,
            TransactionType.CREDIT, order.commission,
            f"Commission from order #{ref}",
            balance_delta=order.commission
        ))
    return postings


def plan_release(order: Order, transition: LedgerTransition) -> List[LedgerPosting]:
    """Move the seller's share from pending to available balance."""
    ref = order.short_ref
    descriptions = {
        LedgerTransition.DELIVER: f"Payment received for order #{ref} (Buyer confirmed delivery)",
        LedgerTransition.ADMIN_RELEASE: f"Payment for order #{ref} (Released by admin)",
        LedgerTransition.DISPUTE_RELEASE: f"Payment released: Admin resolved dispute in your favor - Order #{ref}",
    }
    if transition not in descriptions:
        raise ValueError(f"Not a release transition: {transition}")
    if order.seller_amount == 0:
        return []
    return [
        _posting(
            order, transition, "seller", order.seller_id,
            TransactionType.CREDIT, order.seller_amount,
            descriptions[transition],
            balance_delta=order.seller_amount,
            pending_delta=-order.seller_amount
        )
    ]


def plan_cancellation(order: Order, cancelled_by_seller: bool) -> List[LedgerPosting]:
    """Refund the buyer, drop the seller's escrow and reverse the commission."""
    ref = order.short_ref
    seller_description = (
        f"Cancelled order #{ref} - Refunded to buyer" if cancelled_by_seller
        else f"Buyer cancelled order #{ref}"
    )
    return _reversal(
        order,
        LedgerTransition.CANCEL,
        buyer_description=f"Refund for cancelled order #{ref}",
        seller_description=seller_description,
        commission_description=f"Commission refund for cancelled order #{ref}",
        seller_from_pending=True
    )


def plan_dispute_refund(order: Order) -> List[LedgerPosting]:
    """
    Refund the buyer after a dispute.

    A running order still holds the seller's share in pending; a delivered
    order already released it, so it is clawed back from available balance.
    """
    ref = order.short_ref
    return _reversal(
        order,
        LedgerTransition.DISPUTE_REFUND,
        buyer_description=f"Refund: Admin resolved dispute in your favor - Order #{ref}",
        seller_description=f"Dispute lost: Refunded to buyer (Admin resolution) - Order #{ref}",
        commission_description=f"Commission reversed: Dispute resolved for buyer - Order #{ref}",
        seller_from_pending=order.status == OrderStatus.RUNNING
    )


def plan_dispute_release(order: Order) -> List[LedgerPosting]:
    """Release funds after a dispute; nothing moves if already delivered."""
    if order.status == OrderStatus.DELIVERED:
        return []
    return plan_release(order, LedgerTransition.DISPUTE_RELEASE)


def _reversal(
    order: Order,
    transition: LedgerTransition,
    buyer_description: str,
    seller_description: str,
    commission_description: str,
    seller_from_pending: bool
) -> List[LedgerPosting]:
    postings = [
        _posting(
            order, transition, "buyer", order.buyer_id,
            TransactionType.CREDIT, order.total_amount, buyer_description,
            balance_delta=order.total_amount
        )
    ]
    if order.seller_amount > 0:
        if seller_from_pending:
            postings.append(_posting(
                order, transition, "seller", order.seller_id,
                TransactionType.DEBIT, order.seller_amount, seller_description,
                pending_delta=-order.seller_amount,
                status=TransactionStatus.PENDING
            ))
        else:
            postings.append(_posting(
                order, transition, "seller", order.seller_id,
                TransactionType.DEBIT, order.seller_amount, seller_description,
                balance_delta=-order.seller_amount
            ))
    if order.commission > 0:
        postings.append(_posting(
            order, transition, "commission", order.commission_wallet_id,
            TransactionType.DEBIT, order.commission, commission_description,
            balance_delta=-order.commission
        ))
    return postings
