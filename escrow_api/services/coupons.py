# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Coupon lookup and single-use-per-user consumption.
"""

import logging
from typing import Optional
from opentelemetry import trace

from escrow_api.middleware.error_handler import NotFoundException
from escrow_api.models.base import utcnow
from escrow_api.models.entities import Coupon
from escrow_api.services.mongodb import MongoDBService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class CouponService:
    """Coupons are keyed by code; ``usedBy`` records every user who redeemed one."""

    collection_name = "coupons"

    def __init__(self, mongo_service: MongoDBService):
        self.mongo_service = mongo_service

    def get_coupon(self, code: str) -> Optional[Coupon]:
        document = self.mongo_service.find_by_id(self.collection_name, code)
        return Coupon.from_document(document) if document else None

    def validate_for_user(self, code: str, user_id: str) -> Coupon:
        """
        Return a coupon the user can still redeem.

        Raises:
            NotFoundException: If the coupon is unknown, expired or already used
        """
        with tracer.start_as_current_span("coupon.validate") as span:
            span.set_attributes({"coupon.code": code, "user.id": user_id})
            coupon = self.get_coupon(code)
            if coupon is None or not coupon.is_usable_by(user_id):
                span.set_attribute("coupon.valid", False)
                raise NotFoundException("Invalid or expired coupon")
            span.set_attribute("coupon.valid", True)
            return coupon

    def consume(self, code: str, user_id: str) -> bool:
        """Atomically mark a coupon used by a user; False if it was not usable."""
        consumed = self.mongo_service.update_one(
            self.collection_name,
            {"_id": code, "usedBy": {"$nin": [user_id]}, "expiresAt": {"$gt": utcnow()}},
            {"$addToSet": {"usedBy": user_id}}
        )
        logger.info("Coupon consumption", extra={"coupon_code": code, "user_id": user_id, "consumed": consumed})
        return consumed

    def release(self, code: str, user_id: str) -> None:
        """Undo a consumption when the order it was applied to failed."""
        self.mongo_service.update_one(
            self.collection_name,
            {"_id": code},
            {"$pull": {"usedBy": user_id}}
        )
        logger.info("Coupon released", extra={"coupon_code": code, "user_id": user_id})
