# SPDX-License-Identifier: Apache-2.0

"""
Dispute domain logic: who may open, talk on and resolve a dispute, and what
a resolution does to the order and its ledger.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from escrow_api.domain.orders import TransitionCheck, plan_dispute_refund, plan_dispute_release
from escrow_api.models.entities import LedgerPosting, Order, UserContext
from escrow_api.models.enums import (
    DisputeResolution, DisputeStatus, LedgerTransition, OrderStatus, UserRole
)


@dataclass
class ResolutionPlan:
    """Order changes and postings produced by an admin resolution."""
    transition: LedgerTransition
    new_status: OrderStatus
    updates: Dict[str, Any]
    postings: List[LedgerPosting] = field(default_factory=list)


def check_open_dispute(order: Order, user_context: UserContext) -> TransitionCheck:
    """Buyer or seller may open one dispute on a running or delivered order."""
    if not order.is_participant(user_context.user_id):
        return TransitionCheck.deny("Only the buyer or seller can open a dispute")
    if order.status == OrderStatus.CANCELLED:
        return TransitionCheck.invalid("Cannot dispute a cancelled order")
    if order.dispute_status != DisputeStatus.NONE:
        return TransitionCheck.invalid("A dispute has already been raised for this order")
    return TransitionCheck.ok()


def check_send_message(order: Order, user_context: UserContext) -> TransitionCheck:
    if not (user_context.is_admin() or order.is_participant(user_context.user_id)):
        return TransitionCheck.deny("Only dispute participants can post messages")
    if not order.has_open_dispute():
        return TransitionCheck.invalid("Dispute is not open")
    return TransitionCheck.ok()


def check_resolve(order: Order, user_context: UserContext) -> TransitionCheck:
    if not user_context.is_admin():
        return TransitionCheck.deny("Only admins can resolve disputes")
    if not order.has_open_dispute():
        return TransitionCheck.invalid("Dispute is not open")
    return TransitionCheck.ok()


def sender_role(order: Order, user_context: UserContext) -> UserRole:
    """Role a sender speaks with in this dispute."""
    if user_context.is_admin():
        return UserRole.ADMIN
    if user_context.user_id == order.buyer_id:
        return UserRole.BUYER
    return UserRole.SELLER


def plan_resolution(order: Order, resolution: str, admin_notes: str = None) -> ResolutionPlan:
    """
    Decide the outcome of an admin resolution.

    Refunds reuse the cancellation legs and releases reuse the delivery leg.
    The plan is computed from the order as read, so it must be committed
    against that same version.

    Args:
        order: Order with an open dispute
        resolution: refund_buyer or release_to_seller
        admin_notes: Optional notes recorded on the order

    Returns:
        ResolutionPlan with the $set fields and postings to commit
    """
    notes = admin_notes.strip() if admin_notes and admin_notes.strip() else None
    updates = {
        'disputeStatus': DisputeStatus.RESOLVED.value,
        'resolvedByAdmin': True,
        'adminNotes': notes,
    }

    if resolution == DisputeResolution.REFUND_BUYER:
        updates['status'] = OrderStatus.CANCELLED.value
        updates['adminResolution'] = OrderStatus.CANCELLED.value
        return ResolutionPlan(
            transition=LedgerTransition.DISPUTE_REFUND,
            new_status=OrderStatus.CANCELLED,
            updates=updates,
            postings=plan_dispute_refund(order)
        )

    if resolution == DisputeResolution.RELEASE_TO_SELLER:
        updates['status'] = OrderStatus.DELIVERED.value
        updates['adminResolution'] = OrderStatus.DELIVERED.value
        return ResolutionPlan(
            transition=LedgerTransition.DISPUTE_RELEASE,
            new_status=OrderStatus.DELIVERED,
            updates=updates,
            postings=plan_dispute_release(order)
        )

    raise ValueError(f"Unknown dispute resolution: {resolution}")
