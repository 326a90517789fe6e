# app/services/coupons.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import insert_ignore
from app.core.errors import BusinessRuleError, ConflictError, DomainError, NotFoundError, ValidationError
from app.core.time_utils import as_utc, utcnow
from app.models.coupon import Coupon, CouponRedemption
from app.schemas.coupons import CouponCreate, CouponUpdate
from app.services.plans import get_plan_or_404
from app.services.pricing import percent_of, resolve_base_price

logger = logging.getLogger(__name__)


class CouponNotFound(NotFoundError):
    pass


class CouponInactive(BusinessRuleError):
    reason = "Inactive"


class CouponExpired(BusinessRuleError):
    reason = "Expired"


class CouponLimitReached(BusinessRuleError):
    reason = "LimitReached"


class CouponNotApplicable(BusinessRuleError):
    reason = "NotApplicable"


class InvalidCoupon(BusinessRuleError):
    """Raised by checkout; keeps the validator's reason and status."""

    reason = "InvalidCoupon"

    def __init__(self, cause: DomainError):
        super().__init__(f"Invalid coupon: {cause.message}", reason=cause.reason)
        self.status_code = cause.status_code
        self.cause = cause


def _normalize_code(code: str) -> str:
    return (code or "").strip()


async def get_coupon_by_code(db: AsyncSession, code: str) -> Coupon:
    res = await db.execute(select(Coupon).where(Coupon.code == _normalize_code(code)))
    coupon = res.scalar_one_or_none()
    if not coupon:
        raise CouponNotFound("Coupon not found")
    return coupon


def compute_discount(coupon: Coupon, base_price_cents: int) -> int:
    if coupon.discount_type == "fixed":
        discount = int(Decimal(coupon.discount_amount))
    else:
        discount = percent_of(base_price_cents, coupon.discount_amount)
    # never more than the price, never negative
    return max(0, min(discount, base_price_cents))


async def validate_coupon(
    db: AsyncSession,
    code: str,
    plan_id: int,
    *,
    base_price_cents: Optional[int] = None,
    quantity: Optional[int] = None,
    custom_amount_cents: Optional[int] = None,
) -> tuple[Coupon, int]:
    """
    Check the coupon against a plan and compute its discount in cents.

    Rules run in a fixed order and the first failure wins:
    exists, active, not expired, under its usage cap, applicable to the plan.
    When base_price_cents is not given the plan's own base price is resolved.
    Read-only: usage is counted later by redeem_coupon.
    """
    coupon = await get_coupon_by_code(db, code)

    if not coupon.is_active:
        raise CouponInactive("Coupon is inactive")

    expiry = as_utc(coupon.expiry_date)
    if expiry is not None and expiry <= utcnow():
        raise CouponExpired("Coupon has expired")

    if coupon.max_uses > 0 and coupon.used_count >= coupon.max_uses:
        raise CouponLimitReached("Coupon usage limit reached")

    applicable = [int(x) for x in (coupon.applicable_plan_ids or [])]
    if applicable and int(plan_id) not in applicable:
        raise CouponNotApplicable("Coupon not applicable to this plan")

    if base_price_cents is None:
        plan = await get_plan_or_404(db, plan_id)
        base_price_cents = resolve_base_price(
            plan, quantity=quantity, custom_amount_cents=custom_amount_cents
        ).amount_cents

    return coupon, compute_discount(coupon, int(base_price_cents))


async def redeem_coupon(
    db: AsyncSession,
    code: str,
    payment_ref: str,
    *,
    commit: bool = True,
) -> bool:
    """
    Count one use of a coupon for a settled payment.
    Returns False when this payment was already counted.
    """
    coupon = await get_coupon_by_code(db, code)

    try:
        res = await db.execute(
            insert_ignore(db, CouponRedemption)
            .values(coupon_id=coupon.id, payment_ref=payment_ref)
            .on_conflict_do_nothing(index_elements=["coupon_id", "payment_ref"])
        )
        if res.rowcount == 0:
            logger.info("coupon %s already redeemed for payment %s", coupon.code, payment_ref)
            if commit:
                await db.commit()
            return False

        res = await db.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon.id,
                or_(Coupon.max_uses == 0, Coupon.used_count < Coupon.max_uses),
            )
            .values(used_count=Coupon.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise CouponLimitReached("Coupon usage limit reached")

        if commit:
            await db.commit()
    except Exception:
        if commit:
            await db.rollback()
        raise

    logger.info("coupon %s redeemed for payment %s", coupon.code, payment_ref)
    return True


# -------------------------
# CRUD
# -------------------------
async def create_coupon(db: AsyncSession, payload: CouponCreate) -> Coupon:
    coupon = Coupon(
        code=_normalize_code(payload.code),
        discount_type=payload.discount_type,
        discount_amount=payload.discount_amount,
        applicable_plan_ids=list(payload.applicable_plan_ids),
        max_uses=payload.max_uses,
        used_count=0,
        expiry_date=payload.expiry_date,
        is_active=True,
    )
    db.add(coupon)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError("Coupon code already exists") from e
    except Exception:
        await db.rollback()
        raise

    await db.refresh(coupon)
    return coupon


async def list_coupons(db: AsyncSession) -> list[Coupon]:
    res = await db.execute(select(Coupon).order_by(Coupon.id.desc()))
    return list(res.scalars().all())


async def get_coupon(db: AsyncSession, coupon_id: int) -> Coupon:
    coupon = await db.get(Coupon, coupon_id)
    if not coupon:
        raise CouponNotFound("Coupon not found")
    return coupon


async def update_coupon(db: AsyncSession, coupon_id: int, payload: CouponUpdate) -> Coupon:
    coupon = await get_coupon(db, coupon_id)

    data = payload.model_dump(exclude_unset=True)
    max_uses = data.get("max_uses")
    if max_uses and max_uses < coupon.used_count:
        raise ValidationError(
            f"max_uses {max_uses} is below the {coupon.used_count} uses already recorded"
        )

    for field, value in data.items():
        setattr(coupon, field, value)

    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(coupon)
    return coupon


async def delete_coupon(db: AsyncSession, coupon_id: int) -> None:
    coupon = await get_coupon(db, coupon_id)
    try:
        await db.delete(coupon)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
