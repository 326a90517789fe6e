"""Pricing resolver: plan data -> base charge amount.

Pure functions of the plan row. Discounts and fees live in the checkout layer.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.core.errors import BusinessRuleError, ValidationError
from app.models.plan import PricingPlan
from app.schemas.plans import (
    BundleConfig,
    DonationConfig,
    OneTimeConfig,
    PlanConfig,
    SplitConfig,
    SubscriptionConfig,
    TierBand,
    TieredConfig,
    plan_config_adapter,
)


class InvalidPlanConfig(ValidationError):
    reason = "InvalidPlanConfig"


class BelowMinimum(BusinessRuleError):
    reason = "BelowMinimum"


class NoMatchingTier(BusinessRuleError):
    reason = "NoMatchingTier"


@dataclass(frozen=True)
class BasePrice:
    amount_cents: int
    currency: str


# -------------------------
# Money helpers
# -------------------------

def round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent_of(amount_cents: int, percent) -> int:
    """`percent`% of `amount_cents`, rounded half-up to a whole cent."""
    return round_cents(Decimal(int(amount_cents)) * Decimal(str(percent)) / Decimal(100))


# -------------------------
# Config access
# -------------------------

def plan_config(plan: PricingPlan) -> PlanConfig:
    try:
        return plan_config_adapter.validate_python({**(plan.config or {}), "type": plan.type})
    except PydanticValidationError as e:
        raise InvalidPlanConfig(
            f"Plan {plan.id} has an invalid '{plan.type}' configuration ({e.error_count()} error(s))."
        ) from e


def select_tier(tiers: Sequence[TierBand], quantity: int) -> TierBand:
    # Bands are ordered and non-overlapping, so the first hit is the only hit.
    for band in tiers:
        if band.contains(quantity):
            return band
    raise NoMatchingTier(f"No pricing tier matches quantity {quantity}.")


def resolve_base_price(
    plan: PricingPlan,
    *,
    quantity: Optional[int] = None,
    custom_amount_cents: Optional[int] = None,
) -> BasePrice:
    config = plan_config(plan)

    match config:
        case OneTimeConfig():
            return BasePrice(config.price_cents, config.currency)

        case SubscriptionConfig():
            return BasePrice(config.price_cents, config.currency)

        case BundleConfig():
            return BasePrice(config.price_cents, settings.DEFAULT_CURRENCY)

        case SplitConfig():
            if config.upfront_payment_cents > 0:
                return BasePrice(config.upfront_payment_cents, config.currency)
            per_installment = round_cents(
                Decimal(config.total_amount_cents) / Decimal(config.installment_count)
            )
            return BasePrice(per_installment, config.currency)

        case DonationConfig():
            amount = int(custom_amount_cents or 0)
            if amount < config.min_amount_cents:
                raise BelowMinimum(
                    f"Donation amount {amount} is below the minimum of {config.min_amount_cents}."
                )
            return BasePrice(amount, config.currency)

        case TieredConfig():
            qty = int(quantity or 0)
            if qty <= 0:
                qty = 1
            band = select_tier(config.tiers, qty)
            return BasePrice(band.unit_price_cents * qty, settings.DEFAULT_CURRENCY)

    raise InvalidPlanConfig(f"Unsupported plan type '{plan.type}'.")
