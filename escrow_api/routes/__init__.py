# SPDX-License-Identifier: Apache-2.0

"""
API blueprints for orders, disputes, wallets, coupons and ledger administration.
"""
