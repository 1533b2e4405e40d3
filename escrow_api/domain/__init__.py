# SPDX-License-Identifier: Apache-2.0

"""
Domain logic package for the escrow ledger.

This package contains pure business logic functions with no side effects:
pricing, transition guards, posting plans and reconciliation checks.
"""
