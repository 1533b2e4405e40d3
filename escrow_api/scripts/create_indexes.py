#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Create the MongoDB indexes the ledger relies on.

Usage: python -m escrow_api.scripts.create_indexes
"""

import sys
import logging

from escrow_api.config import LedgerSettings
from escrow_api.services.mongodb import MongoDBService

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main() -> int:
    """Create MongoDB indexes."""
    settings = LedgerSettings.from_env()
    mongodb_service = MongoDBService(settings.mongodb_uri, settings.mongodb_database)

    try:
        health = mongodb_service.health_check()
        if health['status'] != 'healthy':
            logger.error(f"MongoDB is not healthy: {health}")
            return 1

        logger.info(f"Connected to MongoDB {health['version']} - Database: {health['database']}")
        mongodb_service.create_indexes(idempotency_ttl_seconds=settings.idempotency_ttl_seconds)
        return 0

    except Exception as e:
        logger.error(f"Failed to create indexes: {e}")
        return 1
    finally:
        mongodb_service.close_connection()


if __name__ == "__main__":
    sys.exit(main())
