# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Wallet endpoints: balances, transaction history, deposits and withdrawals.
"""

from flask import Blueprint, current_app
import logging

from escrow_api.middleware.auth import require_jwt, require_role
from escrow_api.middleware.idempotency import idempotent
from escrow_api.middleware.rate_limit import rate_limit_money
from escrow_api.middleware.validation import validate_json, validate_query
from escrow_api.models.entities import UserContext
from escrow_api.models.enums import UserRole
from escrow_api.models.requests import DepositRequest, PaginationParams, WithdrawalRequest

logger = logging.getLogger(__name__)

wallets_bp = Blueprint('wallets', __name__, url_prefix='/api/wallets')


@wallets_bp.get('/me')
@require_jwt
def get_my_wallet(user_context: UserContext):
    """Caller's balances; a wallet never written reads as zeros."""
    wallet = current_app.wallet_service.get_wallet(user_context.user_id)
    return current_app.hal_formatter.format_wallet(wallet, user_context)


@wallets_bp.get('/<user_id>')
@require_jwt
@require_role(UserRole.ADMIN)
def get_wallet(user_context: UserContext, user_id: str):
    wallet = current_app.wallet_service.get_wallet(user_id)
    return current_app.hal_formatter.format_wallet(wallet, user_context)


@wallets_bp.get('/me/transactions')
@require_jwt
@validate_query(PaginationParams)
def list_transactions(user_context: UserContext, query: PaginationParams):
    """Caller's transaction log, newest first."""
    result = current_app.wallet_service.list_transactions(
        user_context.user_id, page=query.page, page_size=query.page_size
    )
    return current_app.hal_formatter.format_transaction_collection(
        result.items, result.total, result.page, result.page_size
    )


@wallets_bp.post('/me/deposits')
@require_jwt
@rate_limit_money
@idempotent('wallets.deposit', required=True)
@validate_json(DepositRequest)
def deposit(user_context: UserContext, body: DepositRequest):
    wallet = current_app.wallet_service.deposit(user_context, body.amount, body.reference)
    return current_app.hal_formatter.format_wallet(wallet, user_context), 201


@wallets_bp.post('/me/withdrawals')
@require_jwt
@rate_limit_money
@idempotent('wallets.withdraw', required=True)
@validate_json(WithdrawalRequest)
def withdraw(user_context: UserContext, body: WithdrawalRequest):
    """Debit available balance to a bank account; pending funds are not withdrawable."""
    wallet = current_app.wallet_service.withdraw(
        user_context, body.amount, body.bank_name, body.account_number, body.account_name
    )
    return current_app.hal_formatter.format_wallet(wallet, user_context), 201
