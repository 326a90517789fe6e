# app/schemas/plans.py
from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

UNBOUNDED = -1

Interval = Literal["day", "week", "month", "year"]


# -------------------------
# Type-specific configs
# -------------------------

class OneTimeConfig(BaseModel):
    type: Literal["one_time"] = "one_time"
    price_cents: int = Field(..., ge=0)
    original_price_cents: Optional[int] = Field(default=None, ge=0)
    currency: str = "USD"


class SubscriptionConfig(BaseModel):
    type: Literal["subscription"] = "subscription"
    price_cents: int = Field(..., ge=0)
    original_price_cents: Optional[int] = Field(default=None, ge=0)
    setup_fee_cents: int = Field(default=0, ge=0)
    currency: str = "USD"
    interval: Interval = "month"
    trial_days: int = Field(default=0, ge=0)
    trial_requires_card: bool = False


class SplitConfig(BaseModel):
    type: Literal["split"] = "split"
    total_amount_cents: int = Field(..., gt=0)
    original_price_cents: Optional[int] = Field(default=None, ge=0)
    currency: str = "USD"
    installment_count: int = Field(..., ge=1)
    interval: Interval = "month"
    upfront_payment_cents: int = Field(default=0, ge=0)


class TierBand(BaseModel):
    name: str = ""
    min_qty: int = Field(..., ge=0)
    max_qty: int = UNBOUNDED  # -1 = unbounded
    unit_price_cents: int = Field(..., ge=0)

    @property
    def upper(self) -> float:
        return float("inf") if self.max_qty == UNBOUNDED else self.max_qty

    def contains(self, quantity: int) -> bool:
        return self.min_qty <= quantity <= self.upper


class TieredConfig(BaseModel):
    type: Literal["tiered"] = "tiered"
    tiers: List[TierBand] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_bands(self) -> "TieredConfig":
        prev: Optional[TierBand] = None
        for i, band in enumerate(self.tiers):
            if band.max_qty != UNBOUNDED and band.max_qty < band.min_qty:
                raise ValueError(f"tier {i}: max_qty must be >= min_qty or -1")
            if band.max_qty == UNBOUNDED and i != len(self.tiers) - 1:
                raise ValueError("only the last tier may be unbounded")
            if prev is not None and band.min_qty <= prev.upper:
                raise ValueError(f"tier {i} overlaps or is out of order")
            prev = band
        return self


class DonationConfig(BaseModel):
    type: Literal["donation"] = "donation"
    min_amount_cents: int = Field(default=0, ge=0)
    suggested_amount_cents: Optional[int] = Field(default=None, ge=0)
    currency: str = "USD"


class BundleConfig(BaseModel):
    type: Literal["bundle"] = "bundle"
    price_cents: int = Field(..., ge=0)
    original_price_cents: Optional[int] = Field(default=None, ge=0)
    included_product_ids: List[int] = Field(..., min_length=1)


PlanConfig = Annotated[
    Union[OneTimeConfig, SubscriptionConfig, SplitConfig, TieredConfig, DonationConfig, BundleConfig],
    Field(discriminator="type"),
]

plan_config_adapter: TypeAdapter[PlanConfig] = TypeAdapter(PlanConfig)


# -------------------------
# Constraints
# -------------------------

class LimitedSellIn(BaseModel):
    max_quantity: int = Field(..., gt=0)


class EarlyBirdIn(BaseModel):
    discount_cents: int = Field(..., gt=0)
    deadline: datetime


class AccessDurationIn(BaseModel):
    duration_days: int = Field(..., gt=0)


class UpsellIn(BaseModel):
    product_ids: List[int] = Field(..., min_length=1)

    @field_validator("product_ids")
    @classmethod
    def _distinct_positive(cls, v: List[int]) -> List[int]:
        if any(pid <= 0 for pid in v):
            raise ValueError("upsell product ids must be positive")
        if len(set(v)) != len(v):
            raise ValueError("upsell product ids must be unique")
        return v


# -------------------------
# Payloads
# -------------------------

class PlanCreate(BaseModel):
    product_id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    values: List[str] = Field(default_factory=list)
    allow_coupons: bool = True
    is_private: bool = False

    config: PlanConfig

    limited_sell: Optional[LimitedSellIn] = None
    early_bird: Optional[EarlyBirdIn] = None
    access_duration: Optional[AccessDurationIn] = None
    upsell: Optional[UpsellIn] = None


class PlanUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""


class PlanActiveIn(BaseModel):
    is_active: bool


class PlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: Optional[int]
    creator_id: Optional[int]
    name: str
    description: str
    type: str
    config: dict
    values: List[str]
    is_active: bool
    allow_coupons: bool
    is_private: bool
    processor_product_id: Optional[str]
    processor_price_id: Optional[str]
    max_quantity: Optional[int]
    sold_count: int
    early_bird_discount_cents: Optional[int]
    early_bird_deadline: Optional[datetime]
    access_duration_days: Optional[int]
    upsell_product_ids: List[int]
    created_at: datetime
