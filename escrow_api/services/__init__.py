# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - Persistence, messaging and ledger operations.
"""

from .mongodb import MongoDBService, PaginationResult
from .amqp import AMQPService, AMQPConfig, PublishResult, create_amqp_service

__all__ = [
    "MongoDBService",
    "PaginationResult",
    "AMQPService",
    "AMQPConfig",
    "PublishResult",
    "create_amqp_service"
]
