# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas and data models for the escrow ledger.
"""

# Base models
from .base import BaseEntity, LedgerModel, generate_object_id, utcnow

# Enumerations
from .enums import (
    UserRole,
    OrderStatus,
    DisputeStatus,
    DisputeResolution,
    TrackingStatus,
    TransactionType,
    TransactionStatus,
    SettlementState,
    LedgerTransition,
    CouponType
)

# Core entities
from .entities import (
    OrderItem,
    TrackingEvent,
    LedgerPosting,
    Order,
    WalletTransaction,
    Wallet,
    DisputeMessage,
    Product,
    Coupon,
    AuditLog,
    UserContext
)

# Request models
from .requests import (
    OrderItemRequest,
    CreateOrderRequest,
    CancelOrderRequest,
    TrackingUpdateRequest,
    OpenDisputeRequest,
    DisputeMessageRequest,
    ResolveDisputeRequest,
    DepositRequest,
    WithdrawalRequest,
    PaginationParams,
    OrderFilters
)

# Response models
from .responses import (
    HalLink,
    SettlementSummary
)

__all__ = [
    # Base
    "BaseEntity",
    "LedgerModel",
    "generate_object_id",
    "utcnow",

    # Enums
    "UserRole",
    "OrderStatus",
    "DisputeStatus",
    "DisputeResolution",
    "TrackingStatus",
    "TransactionType",
    "TransactionStatus",
    "SettlementState",
    "LedgerTransition",
    "CouponType",

    # Entities
    "OrderItem",
    "TrackingEvent",
    "LedgerPosting",
    "Order",
    "WalletTransaction",
    "Wallet",
    "DisputeMessage",
    "Product",
    "Coupon",
    "AuditLog",
    "UserContext",

    # Requests
    "OrderItemRequest",
    "CreateOrderRequest",
    "CancelOrderRequest",
    "TrackingUpdateRequest",
    "OpenDisputeRequest",
    "DisputeMessageRequest",
    "ResolveDisputeRequest",
    "DepositRequest",
    "WithdrawalRequest",
    "PaginationParams",
    "OrderFilters",

    # Responses
    "HalLink",
    "SettlementSummary"
]
