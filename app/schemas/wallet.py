from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class WalletBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    balance_cents: int
    currency: str = "USD"
    updated_at: Optional[datetime] = None


class WalletTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount_cents: int
    balance_after_cents: int
    type: str
    reference_id: Optional[str]
    description: str
    created_at: datetime


class WalletTransactionListOut(BaseModel):
    items: List[WalletTransactionOut]
    offset: int
    limit: int


class PayoutIn(BaseModel):
    amount_cents: int = Field(..., ge=1)
    method: Literal["stripe", "paypal"] = "stripe"


class PayoutStatusIn(BaseModel):
    status: Literal["paid", "failed", "cancelled"]


class PayoutOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    amount_cents: int
    currency: str
    method: str
    status: str
    processed_at: Optional[datetime]
    created_at: datetime
