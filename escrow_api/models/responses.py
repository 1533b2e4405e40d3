# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Response models for API endpoints with HAL support.
"""

from typing import List, Optional
from pydantic import BaseModel, Field


class HalLink(BaseModel):
    """HAL link representation."""

    href: str = Field(..., description="Link URL")
    method: Optional[str] = Field(None, description="HTTP method")
    type: Optional[str] = Field(None, description="Content type")
    title: Optional[str] = Field(None, description="Link title")
    templated: Optional[bool] = Field(None, description="Whether URL is templated")


class SettlementSummary(BaseModel):
    """Outcome of a settlement sweep."""

    examined: int = Field(..., description="Orders examined")
    settled: int = Field(..., description="Orders fully settled")
    failed: int = Field(..., description="Orders that still have unsettled postings")
    failed_order_ids: List[str] = Field(default_factory=list, description="Orders left pending")
