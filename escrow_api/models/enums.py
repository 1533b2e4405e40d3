# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the escrow ledger.
"""

from enum import Enum


class UserRole(str, Enum):
    """Marketplace user roles."""
    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    """Order lifecycle status."""
    RUNNING = "running"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DisputeStatus(str, Enum):
    """Dispute flag carried on an order."""
    NONE = "none"
    OPEN = "open"
    RESOLVED = "resolved"


class DisputeResolution(str, Enum):
    """Admin decision for an open dispute."""
    REFUND_BUYER = "refund_buyer"
    RELEASE_TO_SELLER = "release_to_seller"


class TrackingStatus(str, Enum):
    """Seller-reported delivery progress."""
    ACKNOWLEDGED = "acknowledged"
    ENROUTE = "enroute"
    READY_FOR_PICKUP = "ready_for_pickup"


class TransactionType(str, Enum):
    """Direction of a wallet transaction."""
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionStatus(str, Enum):
    """Whether a transaction moved available or pending funds."""
    PENDING = "pending"
    COMPLETED = "completed"


class SettlementState(str, Enum):
    """Whether every posting of an order has reached its wallet."""
    PENDING = "pending"
    SETTLED = "settled"


class LedgerTransition(str, Enum):
    """Order transitions that produce wallet postings."""
    CREATE = "create"
    DELIVER = "deliver"
    ADMIN_RELEASE = "admin_release"
    CANCEL = "cancel"
    DISPUTE_REFUND = "dispute_refund"
    DISPUTE_RELEASE = "dispute_release"


class CouponType(str, Enum):
    """Coupon discount kind."""
    PERCENTAGE = "percentage"
    FIXED = "fixed"
