from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CouponCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    discount_type: Literal["fixed", "percent"]
    # fixed: cents, percent: 0-100
    discount_amount: Decimal = Field(..., gt=0)
    applicable_plan_ids: List[int] = Field(default_factory=list)
    max_uses: int = Field(default=0, ge=0)
    expiry_date: Optional[datetime] = None

    @model_validator(mode="after")
    def _percent_cap(self) -> "CouponCreate":
        if self.discount_type == "percent" and self.discount_amount > 100:
            raise ValueError("percentage discount cannot exceed 100%")
        return self


class CouponUpdate(BaseModel):
    is_active: Optional[bool] = None
    max_uses: Optional[int] = Field(default=None, ge=0)
    expiry_date: Optional[datetime] = None
    applicable_plan_ids: Optional[List[int]] = None


class CouponOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    discount_type: str
    discount_amount: Decimal
    applicable_plan_ids: List[int]
    max_uses: int
    used_count: int
    expiry_date: Optional[datetime]
    is_active: bool
    created_at: datetime


class CouponValidateIn(BaseModel):
    code: str
    plan_id: int
    quantity: Optional[int] = None
    custom_amount_cents: Optional[int] = Field(default=None, ge=0)


class CouponValidateOut(BaseModel):
    code: str
    plan_id: int
    base_price_cents: int
    discount_cents: int
    final_price_cents: int
