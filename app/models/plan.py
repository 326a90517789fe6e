# app/models/plan.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base, BigIntPK, JSONType


PLAN_TYPES = ("one_time", "subscription", "split", "tiered", "donation", "bundle")


class PricingPlan(Base):
    __tablename__ = "pricing_plans"
    __table_args__ = (
        CheckConstraint(
            "type IN ('one_time','subscription','split','tiered','donation','bundle')",
            name="pricing_plans_type_check",
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    product_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True, index=True)
    creator_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(32), nullable=False)

    # The single type-specific config, validated through schemas.plans.PlanConfig
    config: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    values: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_coupons: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Processor mirror
    processor_product_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    processor_price_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Constraints (orthogonal to type)
    max_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sold_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    early_bird_discount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    early_bird_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    access_duration_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # products offered after purchase
    upsell_product_ids: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
