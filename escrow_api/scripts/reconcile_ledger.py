#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Run a ledger reconciliation from the command line.

Exits 0 when wallets and orders agree, 2 when drift was found and 1 when the
run itself failed.

Usage: python -m escrow_api.scripts.reconcile_ledger [--settle] [--json]
"""

import argparse
import json
import logging
import sys

from escrow_api.config import LedgerSettings
from escrow_api.services.mongodb import MongoDBService
from escrow_api.services.wallets import WalletService
from escrow_api.services.settlement import SettlementService
from escrow_api.services.reconciliation import ReconciliationService

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

EXIT_CLEAN = 0
EXIT_FAILED = 1
EXIT_DRIFT = 2


def build_reconciliation_service(settings: LedgerSettings, mongodb_service: MongoDBService) -> ReconciliationService:
    wallet_service = WalletService(mongodb_service, min_withdrawal_minor=settings.min_withdrawal_minor)
    settlement_service = SettlementService(
        mongodb_service, wallet_service,
        commission_wallet_user_id=settings.commission_wallet_user_id,
        retry_age_seconds=settings.settlement_retry_age_seconds
    )
    return ReconciliationService(mongodb_service, settlement_service)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Check wallets and orders for ledger drift.")
    parser.add_argument('--settle', action='store_true',
                        help="retry pending settlements before checking")
    parser.add_argument('--json', action='store_true', dest='as_json',
                        help="print the full report as JSON")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    settings = LedgerSettings.from_env()
    mongodb_service = MongoDBService(settings.mongodb_uri, settings.mongodb_database)

    try:
        service = build_reconciliation_service(settings, mongodb_service)
        report = service.run(settle=args.settle)
    except Exception as e:
        logger.error(f"Reconciliation failed: {e}")
        return EXIT_FAILED
    finally:
        mongodb_service.close_connection()

    if args.as_json:
        print(json.dumps(report, indent=2, default=str))
    else:
        print(f"Report {report['_id']}: {report['walletsChecked']} wallets, "
              f"{report['ordersChecked']} orders, {report['errorCount']} errors, "
              f"{report['warningCount']} warnings")
        for drift_type, count in sorted(report['countsByType'].items()):
            print(f"  {drift_type}: {count}")

    return EXIT_DRIFT if report['hasDrift'] else EXIT_CLEAN


if __name__ == "__main__":
    sys.exit(main())
