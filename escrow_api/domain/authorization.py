# SPDX-License-Identifier: Apache-2.0

"""
Order visibility rules.

Authorization is by participation: buyers and sellers see their own orders,
admins see everything.
"""

from typing import Any, Dict, Optional

from escrow_api.models.entities import Order, UserContext
from escrow_api.models.enums import UserRole


def can_view_order(order: Order, user_context: UserContext) -> bool:
    """Check whether a user may read an order."""
    return user_context.is_admin() or order.is_participant(user_context.user_id)


def role_on_order(order: Order, user_context: UserContext) -> Optional[str]:
    """Return the caller's part in an order: buyer, seller, admin or None."""
    if user_context.user_id == order.buyer_id:
        return UserRole.BUYER.value
    if user_context.user_id == order.seller_id:
        return UserRole.SELLER.value
    if user_context.is_admin():
        return UserRole.ADMIN.value
    return None


def resolve_list_view(user_context: UserContext, requested: Optional[str] = None) -> str:
    """
    Pick the order list view for a caller.

    Defaults to the caller's role. Non-admins may switch between their buyer
    and seller views but never to the admin view.
    """
    if requested is None:
        return user_context.role
    if requested == UserRole.ADMIN and not user_context.is_admin():
        raise PermissionError("Only admins can list all orders")
    return requested


def build_order_query(
    user_context: UserContext,
    view: str,
    status: Optional[str] = None
) -> Dict[str, Any]:
    """Build the MongoDB filter for an order list view."""
    if view == UserRole.ADMIN:
        query: Dict[str, Any] = {}
    elif view == UserRole.SELLER:
        query = {'sellerId': user_context.user_id}
    else:
        query = {'buyerId': user_context.user_id}

    if status:
        query['status'] = status
    return query
