# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the escrow ledger.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from .base import BaseEntity, LedgerModel, generate_object_id, utcnow
from .enums import (
    UserRole,
    OrderStatus,
    DisputeStatus,
    TrackingStatus,
    TransactionType,
    TransactionStatus,
    SettlementState,
    CouponType
)


class OrderItem(LedgerModel):
    """Priced order line captured at checkout."""

    product_id: str = Field(..., description="Product identifier")
    product_name: str = Field(..., description="Product name at time of purchase")
    quantity: int = Field(..., ge=1, description="Units ordered")
    unit_price: int = Field(..., ge=0, description="Discounted unit price in minor units")

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity


class TrackingEvent(LedgerModel):
    """Delivery progress event appended by the seller."""

    status: TrackingStatus = Field(..., description="Tracking status")
    message: str = Field(..., description="Buyer-facing message")
    timestamp: datetime = Field(default_factory=utcnow, description="Event timestamp")


class LedgerPosting(LedgerModel):
    """One planned wallet mutation belonging to an order transition."""

    posting_id: str = Field(..., description="Deterministic posting identifier")
    wallet_id: str = Field(..., description="Wallet (user) receiving the mutation")
    balance_delta: int = Field(default=0, description="Change to available balance")
    pending_delta: int = Field(default=0, description="Change to pending balance")
    type: TransactionType = Field(..., description="Credit or debit")
    amount: int = Field(..., ge=0, description="Absolute amount for display")
    description: str = Field(..., description="Human-readable description")
    status: TransactionStatus = Field(default=TransactionStatus.COMPLETED, description="Transaction status")
    order_id: Optional[str] = Field(None, description="Owning order")

    @model_validator(mode='after')
    def validate_movement(self):
        """A posting must move money."""
        if self.balance_delta == 0 and self.pending_delta == 0:
            raise ValueError('Posting must change balance or pending balance')
        return self


class Order(BaseEntity):
    """Marketplace order carrying its own ledger postings."""

    buyer_id: str = Field(..., description="Buyer user ID")
    seller_id: str = Field(..., description="Seller user ID")
    items: List[OrderItem] = Field(..., min_length=1, description="Ordered products")
    subtotal: int = Field(..., ge=0, description="Sum of line totals")
    discount: int = Field(default=0, ge=0, description="Coupon discount")
    coupon_code: Optional[str] = Field(None, description="Applied coupon")
    total_amount: int = Field(..., gt=0, description="Amount paid by the buyer")
    commission: int = Field(..., ge=0, description="Platform commission")
    seller_amount: int = Field(..., ge=0, description="Amount owed to the seller")
    commission_wallet_id: str = Field(..., description="Wallet credited with the commission")
    status: OrderStatus = Field(default=OrderStatus.RUNNING, description="Lifecycle status")
    dispute_status: DisputeStatus = Field(default=DisputeStatus.NONE, description="Dispute flag")
    dispute_details: Optional[str] = Field(None, description="Dispute description")
    dispute_opened_by: Optional[str] = Field(None, description="User who opened the dispute")
    admin_notes: Optional[str] = Field(None, description="Admin notes on resolution")
    resolved_by_admin: bool = Field(default=False, description="Whether an admin resolved a dispute")
    admin_resolution: Optional[OrderStatus] = Field(None, description="Outcome chosen by the admin")
    buyer_confirmed: bool = Field(default=False, description="Buyer confirmed delivery")
    admin_released: bool = Field(default=False, description="Admin released funds")
    seller_cancelled: bool = Field(default=False, description="Seller cancelled the order")
    cancelled_by: Optional[str] = Field(None, description="User who cancelled")
    cancel_reason: Optional[str] = Field(None, description="Cancellation reason")
    delivery_address: str = Field(..., min_length=1, description="Delivery address")
    phone_number: Optional[str] = Field(None, description="Contact phone number")
    tracking_status: Optional[TrackingStatus] = Field(None, description="Latest tracking status")
    tracking_history: List[TrackingEvent] = Field(default_factory=list, description="Tracking events")
    ledger_postings: List[LedgerPosting] = Field(default_factory=list, description="All planned postings")
    unsettled_posting_ids: List[str] = Field(default_factory=list, description="Postings not yet applied")
    settlement_state: SettlementState = Field(default=SettlementState.PENDING, description="Settlement state")
    version: int = Field(default=1, ge=1, description="Optimistic concurrency version")

    @field_validator('delivery_address')
    @classmethod
    def validate_delivery_address(cls, v):
        """Validate delivery address."""
        if not v.strip():
            raise ValueError('Delivery address cannot be empty')
        return v.strip()

    @model_validator(mode='after')
    def validate_amounts(self):
        """Validate the money split."""
        if self.total_amount != self.subtotal - self.discount:
            raise ValueError('total_amount must equal subtotal minus discount')
        if self.commission > self.total_amount:
            raise ValueError('commission cannot exceed total_amount')
        if self.seller_amount != self.total_amount - self.commission:
            raise ValueError('seller_amount must equal total_amount minus commission')
        return self

    @property
    def short_ref(self) -> str:
        """Short reference used in transaction descriptions."""
        return self.id[-6:]

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.buyer_id, self.seller_id)

    def has_open_dispute(self) -> bool:
        return self.dispute_status == DisputeStatus.OPEN

    def is_settled(self) -> bool:
        return self.settlement_state == SettlementState.SETTLED

    def postings_for(self, posting_ids: List[str]) -> List[LedgerPosting]:
        """Return postings matching the given identifiers, in plan order."""
        wanted = set(posting_ids)
        return [posting for posting in self.ledger_postings if posting.posting_id in wanted]


class WalletTransaction(LedgerModel):
    """Entry in a wallet's append-only transaction log."""

    id: str = Field(..., description="Posting identifier")
    type: TransactionType = Field(..., description="Credit or debit")
    amount: int = Field(..., ge=0, description="Absolute amount")
    description: str = Field(..., description="Human-readable description")
    balance_delta: int = Field(default=0, description="Change to available balance")
    pending_delta: int = Field(default=0, description="Change to pending balance")
    status: TransactionStatus = Field(default=TransactionStatus.COMPLETED, description="Transaction status")
    order_id: Optional[str] = Field(None, description="Related order")
    timestamp: datetime = Field(default_factory=utcnow, description="Application timestamp")

    @classmethod
    def from_posting(cls, posting: LedgerPosting) -> "WalletTransaction":
        return cls(
            id=posting.posting_id,
            type=posting.type,
            amount=posting.amount,
            description=posting.description,
            balance_delta=posting.balance_delta,
            pending_delta=posting.pending_delta,
            status=posting.status,
            order_id=posting.order_id
        )


class Wallet(BaseEntity):
    """Per-user wallet; the document ID is the user ID."""

    user_id: str = Field(..., description="Owner user ID")
    balance: int = Field(default=0, description="Available balance in minor units")
    pending_balance: int = Field(default=0, description="Escrowed balance in minor units")
    transactions: List[WalletTransaction] = Field(default_factory=list, description="Transaction log")
    posting_ids: List[str] = Field(default_factory=list, description="Applied posting identifiers")
    transaction_count: int = Field(default=0, ge=0, description="Length of the transaction log")
    version: int = Field(default=0, ge=0, description="Mutation counter")

    @classmethod
    def empty(cls, user_id: str) -> "Wallet":
        """A wallet that has never been written."""
        return cls(id=user_id, user_id=user_id)

    def recent_transactions(self) -> List[WalletTransaction]:
        """Transactions newest first; same-millisecond entries keep append order reversed."""
        return sorted(reversed(self.transactions), key=lambda tx: tx.timestamp, reverse=True)


class DisputeMessage(BaseEntity):
    """Chat message exchanged on an open dispute."""

    order_id: str = Field(..., description="Disputed order")
    sender_id: str = Field(..., description="Sender user ID")
    sender_role: UserRole = Field(..., description="Sender role in this dispute")
    message: str = Field(..., min_length=1, max_length=2000, description="Message text")
    timestamp: datetime = Field(default_factory=utcnow, description="Send timestamp")

    @field_validator('message')
    @classmethod
    def validate_message(cls, v):
        """Validate message text."""
        if not v.strip():
            raise ValueError('Message cannot be empty')
        return v.strip()


class Product(BaseEntity):
    """Catalog product as seen by checkout."""

    name: str = Field(..., description="Product name")
    seller_id: str = Field(..., description="Owning seller")
    price: int = Field(..., ge=0, description="List price in minor units")
    discount: int = Field(default=0, ge=0, le=100, description="Discount percentage")
    stock: int = Field(default=0, ge=0, description="Units in stock")
    category: Optional[str] = Field(None, description="Catalog category")


class Coupon(BaseModel):
    """Single-use-per-user coupon keyed by its code."""

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True
    )

    code: str = Field(..., description="Coupon code")
    discount: int = Field(..., ge=0, description="Percentage or fixed minor-unit amount")
    type: CouponType = Field(..., description="Discount kind")
    expires_at: datetime = Field(..., alias="expiresAt", description="Expiry timestamp")
    used_by: List[str] = Field(default_factory=list, alias="usedBy", description="Users who used it")

    @model_validator(mode='after')
    def validate_percentage(self):
        """Percentages are capped at 100."""
        if self.type == CouponType.PERCENTAGE and self.discount > 100:
            raise ValueError('Percentage coupon discount cannot exceed 100')
        return self

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Coupon":
        data = dict(document)
        data['code'] = data.pop('_id', data.get('code'))
        return cls.model_validate(data)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or utcnow())

    def is_usable_by(self, user_id: str, now: Optional[datetime] = None) -> bool:
        return not self.is_expired(now) and user_id not in self.used_by


class AuditLog(BaseModel):
    """Audit log entry for ledger accountability."""

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    timestamp: datetime = Field(default_factory=utcnow, description="Action timestamp")
    user_id: str = Field(..., description="User who performed the action")
    entity: str = Field(..., description="Entity type")
    entity_id: str = Field(..., description="Entity identifier")
    action: str = Field(..., description="Action performed")
    before: Optional[Dict[str, Any]] = Field(None, description="State before action")
    after: Optional[Dict[str, Any]] = Field(None, description="State after action")
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client user agent")
    trace_id: Optional[str] = Field(None, description="OpenTelemetry trace ID")
    span_id: Optional[str] = Field(None, description="OpenTelemetry span ID")
    schema_version: int = Field(default=1, description="Schema version")

    model_config = ConfigDict(
        use_enum_values=True
    )

    @field_validator('entity')
    @classmethod
    def validate_entity(cls, v):
        """Validate entity type."""
        valid_entities = ['order', 'wallet', 'dispute', 'ledger']
        if v not in valid_entities:
            raise ValueError(f'Invalid entity type: {v}')
        return v

    @field_validator('action')
    @classmethod
    def validate_action(cls, v):
        """Validate action type."""
        valid_actions = [
            'create', 'confirm', 'release', 'cancel', 'track',
            'open', 'message', 'resolve', 'deposit', 'withdraw',
            'settle', 'reconcile'
        ]
        if v not in valid_actions:
            raise ValueError(f'Invalid action type: {v}')
        return v


class UserContext(BaseModel):
    """User context for request processing with authentication data."""

    user_id: str = Field(..., description="Authenticated user ID")
    role: UserRole = Field(..., description="User role")
    email: Optional[str] = Field(None, description="User email")
    name: Optional[str] = Field(None, description="User display name")
    token_payload: Optional[Dict[str, Any]] = Field(None, description="Original JWT payload")
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client user agent")
    session_id: Optional[str] = Field(None, description="Session identifier")

    model_config = ConfigDict(
        use_enum_values=True
    )

    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def has_role(self, *roles: str) -> bool:
        """Check if user holds any of the given roles."""
        return self.role in [getattr(r, 'value', r) for r in roles]
