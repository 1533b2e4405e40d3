# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
HAL (Hypertext Application Language) response formatting utilities.
Implements HATEOAS Level-3 API responses with conditional affordance links.
"""

from typing import Dict, List, Any, Optional
from urllib.parse import urlencode
import math

from escrow_api.domain import disputes as dispute_rules
from escrow_api.domain import orders as order_rules
from escrow_api.models.entities import Coupon, Order, UserContext, Wallet
from escrow_api.models.enums import DisputeStatus
from escrow_api.models.responses import HalLink


class HalLinkBuilder:
    """Builder for HAL links with proper URL construction."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/')

    def build_link(
        self,
        path: str,
        method: str = "GET",
        content_type: Optional[str] = None,
        title: Optional[str] = None,
        templated: bool = False
    ) -> HalLink:
        """Build a HAL link with proper URL construction."""
        href = f"{self.base_url}/{path.lstrip('/')}"

        return HalLink(
            href=href,
            method=method,
            type=content_type,
            title=title,
            templated=templated
        )

    def build_self_link(self, resource_path: str) -> HalLink:
        """Build self link for a resource."""
        return self.build_link(resource_path, title="Self")

    def build_collection_link(self, collection_path: str) -> HalLink:
        """Build link to parent collection."""
        return self.build_link(collection_path, title="Collection")

    def build_action_link(
        self,
        resource_path: str,
        action: str,
        method: str = "POST",
        title: Optional[str] = None
    ) -> HalLink:
        """Build action link for a resource."""
        action_path = f"{resource_path}/{action}"
        return self.build_link(
            action_path,
            method=method,
            content_type="application/json",
            title=title or action.title()
        )


class PaginationLinkBuilder:
    """Builder for pagination links in HAL collections."""

    def __init__(self, base_url: str):
        self.link_builder = HalLinkBuilder(base_url)

    def _page_link(self, base_path: str, params: Dict[str, Any], page: int,
                   page_size: int, title: str) -> HalLink:
        query = urlencode({**params, 'page': page, 'page_size': page_size})
        return self.link_builder.build_link(f"{base_path}?{query}", title=title)

    def build_pagination_links(
        self,
        base_path: str,
        current_page: int,
        total_pages: int,
        page_size: int,
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, HalLink]:
        """Build pagination links for a collection."""
        params = {key: value for key, value in (query_params or {}).items() if value is not None}
        links = {
            'self': self._page_link(base_path, params, current_page, page_size, "Current page")
        }

        if current_page > 1:
            links['first'] = self._page_link(base_path, params, 1, page_size, "First page")
            links['prev'] = self._page_link(base_path, params, current_page - 1, page_size, "Previous page")

        if current_page < total_pages:
            links['next'] = self._page_link(base_path, params, current_page + 1, page_size, "Next page")
            links['last'] = self._page_link(base_path, params, total_pages, page_size, "Last page")

        return links


class AffordanceLinkBuilder:
    """Builder for conditional affordance links based on role and order state."""

    def __init__(self, base_url: str):
        self.link_builder = HalLinkBuilder(base_url)

    def build_order_affordances(self, order: Order, user_context: UserContext) -> Dict[str, HalLink]:
        """Build the links a caller may follow from an order."""
        links = {}
        base_path = f"/api/orders/{order.id}"

        links['self'] = self.link_builder.build_self_link(base_path)
        links['collection'] = self.link_builder.build_collection_link("/api/orders")

        if order_rules.check_confirm_delivery(order, user_context).allowed:
            links['confirm'] = self.link_builder.build_action_link(
                base_path, "confirm", title="Confirm delivery"
            )

        if order_rules.check_cancel(order, user_context).allowed:
            links['cancel'] = self.link_builder.build_action_link(
                base_path, "cancel", title="Cancel order"
            )

        if order_rules.check_admin_release(order, user_context).allowed:
            links['release'] = self.link_builder.build_action_link(
                base_path, "release", title="Release funds to seller"
            )

        if order_rules.check_tracking_update(order, user_context).allowed:
            links['tracking'] = self.link_builder.build_action_link(
                base_path, "tracking", title="Update tracking"
            )

        if dispute_rules.check_open_dispute(order, user_context).allowed:
            links['dispute'] = self.link_builder.build_action_link(
                base_path, "dispute", title="Open dispute"
            )

        if order.dispute_status != DisputeStatus.NONE:
            links['dispute_messages'] = self.link_builder.build_link(
                f"{base_path}/dispute/messages",
                title="Dispute messages"
            )

        if dispute_rules.check_resolve(order, user_context).allowed:
            links['resolve'] = self.link_builder.build_action_link(
                f"{base_path}/dispute", "resolve", title="Resolve dispute"
            )

        if user_context.is_admin() and not order.is_settled():
            links['settle'] = self.link_builder.build_action_link(
                f"/api/admin/orders/{order.id}", "settle", title="Retry settlement"
            )

        return links

    def build_wallet_affordances(self, wallet: Wallet, user_context: UserContext) -> Dict[str, HalLink]:
        """Build links for a wallet; money movement only on the caller's own wallet."""
        links = {}
        is_own = wallet.user_id == user_context.user_id
        base_path = "/api/wallets/me" if is_own else f"/api/wallets/{wallet.user_id}"

        links['self'] = self.link_builder.build_self_link(base_path)

        if is_own:
            links['transactions'] = self.link_builder.build_link(
                f"{base_path}/transactions",
                title="Transactions"
            )
            links['deposit'] = self.link_builder.build_action_link(
                base_path, "deposits", title="Deposit funds"
            )
            links['withdraw'] = self.link_builder.build_action_link(
                base_path, "withdrawals", title="Withdraw funds"
            )

        return links


class HalResponseBuilder:
    """Main HAL response builder with comprehensive formatting capabilities."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/')
        self.link_builder = HalLinkBuilder(base_url)
        self.pagination_builder = PaginationLinkBuilder(base_url)
        self.affordance_builder = AffordanceLinkBuilder(base_url)

    @staticmethod
    def _links(links: Dict[str, HalLink]) -> Dict[str, Any]:
        return {rel: link.model_dump(exclude_none=True) for rel, link in links.items()}

    def build_resource_response(self, data: Dict[str, Any], links: Dict[str, HalLink]) -> Dict[str, Any]:
        """Attach ``_links`` to a resource representation."""
        response = dict(data)
        response['_links'] = self._links(links)
        return response

    def build_collection_response(
        self,
        items: List[Dict[str, Any]],
        total: int,
        page: int,
        page_size: int,
        collection_path: str,
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Build a HAL collection response with pagination links."""
        total_pages = math.ceil(total / page_size) if page_size > 0 else 1

        pagination_links = self.pagination_builder.build_pagination_links(
            collection_path,
            page,
            total_pages,
            page_size,
            query_params
        )

        return {
            'total': total,
            'page': page,
            'page_size': page_size,
            'total_pages': total_pages,
            '_links': self._links(pagination_links),
            '_embedded': {
                'items': items
            }
        }

    def build_error_response(
        self,
        error_type: str,
        title: str,
        status: int,
        detail: str,
        instance: str,
        validation_errors: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """Build RFC 7807 compliant error response with HAL links."""
        error_response = {
            'type': f"https://api.escrow-ledger.dev/problems/{error_type}",
            'title': title,
            'status': status,
            'detail': detail,
            'instance': instance
        }

        if validation_errors:
            error_response['errors'] = validation_errors

        links = {
            'help': self.link_builder.build_link(
                f"/docs/errors#{error_type}",
                title="Error documentation"
            )
        }

        if error_type == "validation-error":
            links['schema'] = self.link_builder.build_link(
                "/api/docs",
                title="API reference"
            )
        elif error_type == "insufficient-funds":
            links['wallet'] = self.link_builder.build_link(
                "/api/wallets/me",
                title="Wallet"
            )

        error_response['_links'] = self._links(links)
        return error_response


class HalFormatter:
    """High-level HAL formatter with convenience methods."""

    def __init__(self, base_url: str):
        self.builder = HalResponseBuilder(base_url)

    def format_order(self, order: Order, user_context: UserContext) -> Dict[str, Any]:
        """Format an order with HAL links."""
        links = self.builder.affordance_builder.build_order_affordances(order, user_context)
        return self.builder.build_resource_response(order.model_dump(by_alias=True, mode='json'), links)

    def format_order_collection(
        self,
        orders: List[Order],
        total: int,
        page: int,
        page_size: int,
        user_context: UserContext,
        filters: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Format a page of orders with HAL links."""
        items = [self.format_order(order, user_context) for order in orders]
        return self.builder.build_collection_response(
            items, total, page, page_size, "/api/orders", filters
        )

    def format_checkout(self, orders: List[Order], user_context: UserContext) -> Dict[str, Any]:
        """Orders created by one checkout, one per seller, with cart totals."""
        return {
            'total': len(orders),
            'totalAmount': sum(order.total_amount for order in orders),
            'discount': sum(order.discount for order in orders),
            '_links': HalResponseBuilder._links({
                'collection': self.builder.link_builder.build_link("/api/orders?role=buyer", title="Your orders"),
            }),
            '_embedded': {'items': [self.format_order(order, user_context) for order in orders]}
        }

    def format_wallet(self, wallet: Wallet, user_context: UserContext) -> Dict[str, Any]:
        """Format wallet balances without the transaction log."""
        data = {
            'userId': wallet.user_id,
            'balance': wallet.balance,
            'pendingBalance': wallet.pending_balance,
            'transactionCount': len(wallet.transactions),
        }
        links = self.builder.affordance_builder.build_wallet_affordances(wallet, user_context)
        return self.builder.build_resource_response(data, links)

    def format_transaction_collection(
        self,
        transactions: List[Dict[str, Any]],
        total: int,
        page: int,
        page_size: int
    ) -> Dict[str, Any]:
        return self.builder.build_collection_response(
            transactions, total, page, page_size, "/api/wallets/me/transactions"
        )

    def format_coupon(self, coupon: Coupon) -> Dict[str, Any]:
        """Coupon terms without the list of users who redeemed it."""
        data = {
            'code': coupon.code,
            'discount': coupon.discount,
            'type': coupon.type,
            'expiresAt': coupon.expires_at.isoformat(),
        }
        links = {'self': self.builder.link_builder.build_self_link(f"/api/coupons/{coupon.code}")}
        return self.builder.build_resource_response(data, links)

    def format_dispute_messages(self, order_id: str, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        path = f"/api/orders/{order_id}/dispute/messages"
        return {
            'total': len(messages),
            '_links': HalResponseBuilder._links({
                'self': self.builder.link_builder.build_self_link(path),
                'order': self.builder.link_builder.build_link(f"/api/orders/{order_id}", title="Order"),
            }),
            '_embedded': {'items': messages}
        }

    def format_validation_error(
        self,
        detail: str,
        instance: str,
        validation_errors: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Format a validation error response."""
        return self.builder.build_error_response(
            "validation-error",
            "Validation Error",
            400,
            detail,
            instance,
            validation_errors
        )

    def format_rate_limit_error(self, detail: str, instance: str) -> Dict[str, Any]:
        return self.builder.build_error_response(
            "rate-limit-exceeded", "Rate Limit Exceeded", 429, detail, instance
        )

    def format_problem(self, error_type: str, title: str, status: int, detail: str,
                       instance: str) -> Dict[str, Any]:
        """Any other problem document; links depend on the problem type."""
        return self.builder.build_error_response(error_type, title, status, detail, instance)


# Convenience function for creating HAL formatter
def create_hal_formatter(base_url: str) -> HalFormatter:
    """Create a HAL formatter instance."""
    return HalFormatter(base_url)
