from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class CheckoutIn(BaseModel):
    plan_id: int
    affiliate_code: Optional[str] = Field(default=None, max_length=64)
    coupon_code: Optional[str] = Field(default=None, max_length=64)
    custom_amount_cents: Optional[int] = Field(default=None, ge=0)  # donation
    quantity: Optional[int] = None  # tiered


class CheckoutOut(BaseModel):
    client_secret: Optional[str]
    mode: Literal["payment", "subscription"]
    amount_cents: Optional[int] = None
    currency: Optional[str] = None
    fee_cents: Optional[int] = None
    destination_account: Optional[str] = None
    upsell_product_ids: List[int] = Field(default_factory=list)


class ConnectStatusOut(BaseModel):
    connected: bool
    connect_account_id: Optional[str]
    status: Optional[str]


class ConnectUrlOut(BaseModel):
    url: str
