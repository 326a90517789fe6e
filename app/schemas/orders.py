from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    payment_ref: str
    plan_id: Optional[int]
    quantity: int
    amount_cents: int
    currency: str
    status: str
    coupon_code: Optional[str]
    affiliate_code: Optional[str]
    subscription_id: Optional[str]
    subscription_cancelled_at: Optional[datetime]
    access_expires_at: Optional[datetime]
    created_at: datetime
