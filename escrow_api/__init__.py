# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Escrow Ledger API.

Order lifecycle and escrow wallet ledger for a multi-vendor marketplace.
"""

__version__ = "1.0.0"
