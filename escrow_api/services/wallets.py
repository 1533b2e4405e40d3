# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Wallet service: idempotent posting application, deposits and withdrawals.

Every balance change is one atomic single-document update that increments
the balances and appends the transaction and its posting ID together. A
posting whose ID is already recorded on the wallet never matches the update
filter, so applying the same posting twice is a no-op.
"""

import logging
from typing import Any, Dict, Optional
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from escrow_api.domain.money import format_amount
from escrow_api.middleware.error_handler import (
    ConflictException, InsufficientFundsException, ValidationException
)
from escrow_api.models.base import generate_object_id, utcnow
from escrow_api.models.entities import LedgerPosting, UserContext, Wallet, WalletTransaction
from escrow_api.models.enums import TransactionType
from escrow_api.services import amqp as events
from escrow_api.services.mongodb import DuplicateDocumentError, MongoDBService, PaginationResult

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class WalletService:
    """Wallet reads and atomic wallet mutations."""

    collection_name = "wallets"
    deposits_collection = "deposit_references"

    def __init__(self, mongo_service: MongoDBService, amqp_service=None, audit_service=None,
                 min_withdrawal_minor: int = 100000):
        self.mongo_service = mongo_service
        self.amqp_service = amqp_service
        self.audit_service = audit_service
        self.min_withdrawal_minor = min_withdrawal_minor

    def get_wallet(self, user_id: str) -> Wallet:
        """Read a wallet; a wallet that was never written reads as zeros."""
        document = self.mongo_service.find_by_id(self.collection_name, user_id)
        if document is None:
            return Wallet.empty(user_id)
        return Wallet.from_document(document)

    def ensure_wallet(self, user_id: str) -> None:
        """Create an empty wallet unless one exists."""
        document = Wallet.empty(user_id).to_document()
        document.pop('_id')
        self.mongo_service.update_one(
            self.collection_name,
            {"_id": user_id},
            {"$setOnInsert": document},
            upsert=True
        )

    def apply_posting(self, posting: LedgerPosting, guard: Optional[Dict[str, Any]] = None) -> bool:
        """
        Apply a posting to its wallet exactly once.

        Args:
            posting: Posting to apply
            guard: Extra wallet conditions, e.g. a minimum balance

        Returns:
            True if this call applied the posting, False if it was already
            applied or the guard failed
        """
        with tracer.start_as_current_span("wallet.apply_posting") as span:
            span.set_attributes({
                "wallet.id": posting.wallet_id,
                "posting.id": posting.posting_id,
                "posting.balance_delta": posting.balance_delta,
                "posting.pending_delta": posting.pending_delta
            })

            self.ensure_wallet(posting.wallet_id)

            query = {"_id": posting.wallet_id, "postingIds": {"$nin": [posting.posting_id]}}
            if guard:
                query.update(guard)

            transaction = WalletTransaction.from_posting(posting).to_document()
            applied = self.mongo_service.update_one(
                self.collection_name,
                query,
                {
                    "$inc": {
                        "balance": posting.balance_delta,
                        "pendingBalance": posting.pending_delta,
                        "transactionCount": 1,
                        "version": 1
                    },
                    "$push": {
                        "transactions": transaction,
                        "postingIds": posting.posting_id
                    },
                    "$set": {"updatedAt": utcnow()}
                }
            )

            span.set_attribute("posting.applied", applied)
            if applied:
                logger.info(
                    "Posting applied",
                    extra={
                        "wallet_id": posting.wallet_id,
                        "posting_id": posting.posting_id,
                        "balance_delta": posting.balance_delta,
                        "pending_delta": posting.pending_delta
                    }
                )
            return applied

    def has_posting(self, wallet_id: str, posting_id: str) -> bool:
        document = self.mongo_service.find_one(
            self.collection_name, {"_id": wallet_id, "postingIds": posting_id}
        )
        return document is not None

    def list_transactions(self, user_id: str, page: int = 1, page_size: int = 20) -> PaginationResult:
        """
        Transactions newest first, paginated.

        The log is append-only in application order, so a page is read with a
        ``$slice`` from the end of the array instead of loading the whole log.
        """
        start = (page - 1) * page_size
        document = self.mongo_service.find_one(
            self.collection_name,
            {"_id": user_id},
            projection={"transactionCount": 1, "transactions": {"$slice": -(start + page_size)}}
        )
        if document is None:
            return PaginationResult([], 0, page, page_size)

        total = document.get("transactionCount", 0)
        newest_first = list(reversed(document.get("transactions", [])))[start:start + page_size]
        items = [
            WalletTransaction.model_validate(tx).model_dump(by_alias=True, mode='json')
            for tx in newest_first
        ]
        return PaginationResult(items, total, page, page_size)

    def deposit(self, user_context: UserContext, amount: int, reference: str) -> Wallet:
        """
        Credit a wallet from an external payment reference.

        A reference credits at most one wallet, once.

        Raises:
            ConflictException: If the reference was already used differently
        """
        with tracer.start_as_current_span("wallet.deposit") as span:
            user_id = user_context.user_id
            span.set_attributes({"user.id": user_id, "deposit.amount": amount})

            try:
                self.mongo_service.insert(self.deposits_collection, {
                    "_id": reference,
                    "userId": user_id,
                    "amount": amount,
                    "createdAt": utcnow()
                })
            except DuplicateDocumentError:
                existing = self.mongo_service.find_by_id(self.deposits_collection, reference)
                if existing is None or existing.get("userId") != user_id or existing.get("amount") != amount:
                    span.set_status(Status(StatusCode.ERROR, "reference reused"))
                    raise ConflictException(f"Payment reference {reference} has already been used")

            posting = LedgerPosting(
                posting_id=f"deposit:{reference}",
                wallet_id=user_id,
                balance_delta=amount,
                type=TransactionType.CREDIT,
                amount=amount,
                description=f"Deposit via Paystack - Ref: {reference}"
            )
            applied = self.apply_posting(posting)
            wallet = self.get_wallet(user_id)

            if applied:
                self._after_change(
                    user_context, "deposit", events.WALLET_DEPOSITED,
                    {"userId": user_id, "amount": amount, "reference": reference, "balance": wallet.balance}
                )
            return wallet

    def withdraw(self, user_context: UserContext, amount: int, bank_name: str,
                 account_number: str, account_name: str) -> Wallet:
        """
        Debit available balance for a bank withdrawal.

        Raises:
            ValidationException: If the amount is below the minimum
            InsufficientFundsException: If the balance does not cover the amount
        """
        with tracer.start_as_current_span("wallet.withdraw") as span:
            user_id = user_context.user_id
            span.set_attributes({"user.id": user_id, "withdrawal.amount": amount})

            if amount < self.min_withdrawal_minor:
                raise ValidationException(
                    f"Minimum withdrawal is {format_amount(self.min_withdrawal_minor)}",
                    [{"field": "amount", "message": "Below minimum withdrawal", "type": "value_error",
                      "input": amount}]
                )

            posting = LedgerPosting(
                posting_id=f"withdrawal:{generate_object_id()}",
                wallet_id=user_id,
                balance_delta=-amount,
                type=TransactionType.DEBIT,
                amount=amount,
                description=f"Withdrawal to {account_name} - {bank_name}"
            )

            if not self.apply_posting(posting, guard={"balance": {"$gte": amount}}):
                span.set_status(Status(StatusCode.ERROR, "insufficient funds"))
                logger.info("Withdrawal rejected for insufficient funds", extra={"user_id": user_id, "amount": amount})
                raise InsufficientFundsException("Insufficient balance")

            wallet = self.get_wallet(user_id)
            self._after_change(
                user_context, "withdraw", events.WALLET_WITHDRAWN,
                {
                    "userId": user_id,
                    "amount": amount,
                    "bankName": bank_name,
                    "accountNumberLast4": account_number[-4:],
                    "accountName": account_name,
                    "balance": wallet.balance
                }
            )
            return wallet

    def _after_change(self, user_context: UserContext, action: str, event_type: str,
                      payload: Dict[str, Any]) -> None:
        if self.audit_service:
            self.audit_service.record(
                user_id=user_context.user_id,
                entity="wallet",
                entity_id=user_context.user_id,
                action=action,
                after=payload,
                user_context=user_context
            )
        if self.amqp_service:
            self.amqp_service.publish_event(event_type, payload)
