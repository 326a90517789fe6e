from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProgramCreate(BaseModel):
    product_id: Optional[int] = None
    commission_rate: Decimal = Field(..., gt=0, le=100)


class ProgramOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    creator_id: int
    product_id: Optional[int]
    commission_rate: Decimal
    is_active: bool
    created_at: datetime


class LinkCreate(BaseModel):
    program_id: int
    code: str = Field(..., min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_-]+$")


class LinkOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    program_id: int
    code: str
    url: str
    clicks: int
    conversions: int
    created_at: datetime


class CommissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    affiliate_user_id: int
    link_id: int
    order_id: int
    total_amount_cents: int
    earned_amount_cents: int
    currency: str
    status: str
    created_at: datetime


class AffiliateStatsOut(BaseModel):
    links: List[LinkOut]
    commissions: List[CommissionOut]
    total_earned_cents: int
