"""Checkout orchestration: plan + constraints + coupon + fee split -> processor intent.

Nothing is persisted here apart from a processor customer id created on first
subscription checkout. Money only moves in settlement.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import BusinessRuleError, NotFoundError
from app.core.time_utils import as_utc, utcnow
from app.integrations.stripe_gateway import StripeGateway
from app.models.plan import PricingPlan
from app.models.user import User
from app.services.coupons import CouponNotApplicable, InvalidCoupon, validate_coupon
from app.services.plans import get_plan_or_404
from app.services.pricing import percent_of, resolve_base_price

logger = logging.getLogger(__name__)


class SoldOut(BusinessRuleError):
    reason = "SoldOut"


class BuyerNotFound(NotFoundError):
    pass


@dataclass
class CheckoutResult:
    client_secret: Optional[str]
    mode: str  # payment | subscription
    amount_cents: int
    currency: str
    fee_cents: int = 0
    destination_account: Optional[str] = None
    upsell_product_ids: list[int] = field(default_factory=list)


def platform_fee_percent() -> float:
    return max(0.0, float(settings.PLATFORM_FEE_PERCENT))


async def resolve_destination(db: AsyncSession, plan: PricingPlan) -> tuple[Optional[str], float]:
    """
    (connected account, fee percent) for the plan's creator.
    Without an active connected account the sale stays with the platform.
    """
    if plan.creator_id is None:
        logger.warning("plan %s has no creator, proceeding as platform-only sale", plan.id)
        return None, 0.0

    creator = await db.get(User, plan.creator_id)
    if not creator:
        logger.warning(
            "creator %s of plan %s not found, proceeding as platform-only sale",
            plan.creator_id, plan.id,
        )
        return None, 0.0

    if not creator.has_active_connect_account:
        logger.info(
            "creator %s has no active connected account (status=%s), platform-only sale",
            creator.id, creator.connect_status,
        )
        return None, 0.0

    return creator.connect_account_id, platform_fee_percent()


def _metadata(
    *,
    plan_id: int,
    user_id: int,
    affiliate_code: Optional[str],
    coupon_code: Optional[str],
) -> dict[str, str]:
    metadata = {"plan_id": str(plan_id), "user_id": str(user_id)}
    if affiliate_code:
        metadata["affiliate_code"] = affiliate_code
    if coupon_code:
        metadata["coupon_code"] = coupon_code
    return metadata


def _early_bird_discount(plan: PricingPlan) -> int:
    if not plan.early_bird_discount_cents or plan.early_bird_deadline is None:
        return 0
    if utcnow() >= as_utc(plan.early_bird_deadline):
        return 0
    return int(plan.early_bird_discount_cents)


async def _ensure_processor_customer(db: AsyncSession, gateway: StripeGateway, user_id: int) -> str:
    user = await db.get(User, user_id)
    if not user:
        raise BuyerNotFound("User not found")

    if user.processor_customer_id:
        return user.processor_customer_id

    customer_id = await gateway.create_customer(user.email, user.full_name or "")
    user.processor_customer_id = customer_id
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("created processor customer %s for user %s", customer_id, user_id)
    return customer_id


async def initiate_checkout(
    db: AsyncSession,
    gateway: StripeGateway,
    *,
    user_id: int,
    plan_id: int,
    affiliate_code: Optional[str] = None,
    coupon_code: Optional[str] = None,
    custom_amount_cents: Optional[int] = None,
    quantity: Optional[int] = None,
) -> CheckoutResult:
    """
    Build the processor-side charge for one purchase and return its client handle.

    Subscription plans mirrored on the processor go through the subscription path
    (no coupon or early-bird math). Everything else is a single payment intent for
    base - early bird - coupon, floored at zero, with the platform fee computed on
    the discounted amount when the creator can receive funds.
    The affiliate code is only carried in metadata; settlement resolves it.
    """
    plan = await get_plan_or_404(db, plan_id, active_only=True)

    base = resolve_base_price(plan, quantity=quantity, custom_amount_cents=custom_amount_cents)

    qty = quantity if quantity and quantity > 0 else 1
    if plan.max_quantity is not None and plan.sold_count + qty > plan.max_quantity:
        raise SoldOut(f"Plan {plan.id} is sold out")

    destination, fee_percent = await resolve_destination(db, plan)

    metadata = _metadata(
        plan_id=plan.id,
        user_id=user_id,
        affiliate_code=affiliate_code,
        coupon_code=coupon_code,
    )

    if plan.type == "subscription" and plan.processor_price_id:
        customer_id = await _ensure_processor_customer(db, gateway, user_id)
        client_secret = await gateway.create_subscription(
            customer_id,
            plan.processor_price_id,
            metadata,
            destination_account=destination,
            fee_percent=fee_percent if destination else None,
        )
        return CheckoutResult(
            client_secret=client_secret,
            mode="subscription",
            amount_cents=base.amount_cents,
            currency=base.currency,
            fee_cents=percent_of(base.amount_cents, fee_percent) if destination else 0,
            destination_account=destination,
            upsell_product_ids=list(plan.upsell_product_ids or []),
        )

    amount = max(0, base.amount_cents - _early_bird_discount(plan))

    if coupon_code:
        if not plan.allow_coupons:
            raise InvalidCoupon(CouponNotApplicable("Coupons are not accepted for this plan"))
        try:
            _, discount = await validate_coupon(db, coupon_code, plan.id, base_price_cents=amount)
        except (NotFoundError, BusinessRuleError) as e:
            raise InvalidCoupon(e) from e
        amount = max(0, amount - discount)

    fee_cents = percent_of(amount, fee_percent) if destination else 0

    metadata["quantity"] = str(qty)
    client_secret = await gateway.create_payment_intent(
        amount,
        base.currency,
        metadata,
        destination_account=destination,
        fee_amount_cents=fee_cents if destination else None,
    )

    logger.info(
        "checkout plan=%s user=%s amount=%d %s fee=%d destination=%s",
        plan.id, user_id, amount, base.currency, fee_cents, destination,
    )
    return CheckoutResult(
        client_secret=client_secret,
        mode="payment",
        amount_cents=amount,
        currency=base.currency,
        fee_cents=fee_cents,
        destination_account=destination,
        upsell_product_ids=list(plan.upsell_product_ids or []),
    )
