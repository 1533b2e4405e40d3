# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request models for API endpoints.

Bodies accept camelCase keys (as sent by the mobile client) or snake_case.
"""

import re
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from .enums import DisputeResolution, TrackingStatus, UserRole, OrderStatus


class RequestModel(BaseModel):
    """Base model for JSON request bodies."""

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        use_enum_values=True,
        str_strip_whitespace=True,
        extra='forbid'
    )


class OrderItemRequest(RequestModel):
    """Single cart line."""

    product_id: str = Field(..., min_length=1, description="Product identifier")
    quantity: int = Field(..., ge=1, le=1000, description="Units to order")


class CreateOrderRequest(RequestModel):
    """Request model for checking out a cart; items may come from several sellers."""

    items: List[OrderItemRequest] = Field(..., min_length=1, max_length=100, description="Cart lines")
    delivery_address: str = Field(..., min_length=1, max_length=500, description="Delivery address")
    phone_number: Optional[str] = Field(None, description="Contact phone number")
    coupon_code: Optional[str] = Field(None, min_length=1, max_length=64, description="Coupon code")

    @field_validator('items')
    @classmethod
    def validate_unique_products(cls, v):
        """Each product may appear once per cart."""
        product_ids = [item.product_id for item in v]
        if len(product_ids) != len(set(product_ids)):
            raise ValueError('Duplicate products in cart items')
        return v

    @field_validator('phone_number')
    @classmethod
    def validate_phone_number(cls, v):
        """Validate phone number format."""
        if v is None:
            return v
        if not re.match(r'^\+?[0-9]{7,15}$', v):
            raise ValueError('Invalid phone number')
        return v


class CancelOrderRequest(RequestModel):
    """Request model for cancelling a running order."""

    reason: str = Field(..., min_length=1, max_length=500, description="Cancellation reason")


class TrackingUpdateRequest(RequestModel):
    """Request model for seller tracking updates."""

    status: TrackingStatus = Field(..., description="New tracking status")


class OpenDisputeRequest(RequestModel):
    """Request model for opening a dispute."""

    details: str = Field(..., min_length=1, max_length=2000, description="Dispute details")


class DisputeMessageRequest(RequestModel):
    """Request model for a dispute chat message."""

    message: str = Field(..., min_length=1, max_length=2000, description="Message text")


class ResolveDisputeRequest(RequestModel):
    """Request model for admin dispute resolution."""

    resolution: DisputeResolution = Field(..., description="refund_buyer or release_to_seller")
    admin_notes: Optional[str] = Field(None, max_length=2000, description="Admin notes")


class DepositRequest(RequestModel):
    """Request model for funding a wallet."""

    amount: int = Field(..., gt=0, description="Amount in minor units")
    reference: str = Field(..., min_length=1, max_length=128, description="Payment reference")


class WithdrawalRequest(RequestModel):
    """Request model for withdrawing to a bank account."""

    amount: int = Field(..., gt=0, description="Amount in minor units")
    bank_name: str = Field(..., min_length=1, max_length=120, description="Bank name")
    account_number: str = Field(..., description="NUBAN account number")
    account_name: str = Field(..., min_length=1, max_length=120, description="Account holder name")

    @field_validator('account_number')
    @classmethod
    def validate_account_number(cls, v):
        """NUBAN numbers are ten digits."""
        if not re.match(r'^[0-9]{10}$', v):
            raise ValueError('Account number must be 10 digits')
        return v


class PaginationParams(BaseModel):
    """Pagination parameters."""

    page: int = Field(default=1, ge=1, description="Page number")
    page_size: int = Field(default=20, ge=1, le=100, description="Items per page")


class OrderFilters(PaginationParams):
    """Query parameters for order listing."""

    model_config = ConfigDict(use_enum_values=True)

    role: Optional[UserRole] = Field(None, description="View orders as buyer, seller or admin")
    status: Optional[OrderStatus] = Field(None, description="Filter by order status")
