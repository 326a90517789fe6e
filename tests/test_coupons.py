from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.errors import ConflictError, ValidationError
from app.core.time_utils import utcnow
from app.models.coupon import Coupon, CouponRedemption
from app.schemas.coupons import CouponCreate, CouponUpdate
from app.services.coupons import (
    CouponExpired,
    CouponInactive,
    CouponLimitReached,
    CouponNotApplicable,
    CouponNotFound,
    create_coupon,
    redeem_coupon,
    update_coupon,
    validate_coupon,
)


async def _coupon(db, **kw) -> Coupon:
    data = {
        "code": "SAVE20",
        "discount_type": "fixed",
        "discount_amount": Decimal("2000"),
        "applicable_plan_ids": [],
        "max_uses": 0,
        "used_count": 0,
        "is_active": True,
    }
    data.update(kw)
    coupon = Coupon(**data)
    db.add(coupon)
    await db.commit()
    await db.refresh(coupon)
    return coupon


@pytest.fixture
async def plan(make_plan):
    return await make_plan("one_time", {"price_cents": 10000, "currency": "USD"})


async def test_fixed_discount_on_one_time_plan(db, plan):
    await _coupon(db)
    coupon, discount = await validate_coupon(db, "SAVE20", plan.id)
    assert coupon.code == "SAVE20"
    assert discount == 2000
    assert 10000 - discount == 8000


async def test_percent_discount(db, plan):
    await _coupon(db, code="QUARTER", discount_type="percent", discount_amount=Decimal("25"))
    _, discount = await validate_coupon(db, "QUARTER", plan.id)
    assert discount == 2500


async def test_discount_is_clamped_to_base_price(db, plan):
    await _coupon(db, code="HUGE", discount_amount=Decimal("50000"))
    _, discount = await validate_coupon(db, "HUGE", plan.id)
    assert discount == 10000


async def test_discount_uses_given_base_price(db, plan):
    await _coupon(db, code="HALF", discount_type="percent", discount_amount=Decimal("50"))
    _, discount = await validate_coupon(db, "HALF", plan.id, base_price_cents=3001)
    assert discount == 1501


async def test_unknown_code(db, plan):
    with pytest.raises(CouponNotFound):
        await validate_coupon(db, "NOPE", plan.id)


async def test_inactive_is_reported_before_expiry(db, plan):
    await _coupon(db, is_active=False, expiry_date=utcnow() - timedelta(days=1))
    with pytest.raises(CouponInactive) as exc:
        await validate_coupon(db, "SAVE20", plan.id)
    assert exc.value.reason == "Inactive"


async def test_expired_is_reported_before_limit(db, plan):
    await _coupon(db, expiry_date=utcnow() - timedelta(minutes=1), max_uses=1, used_count=1)
    with pytest.raises(CouponExpired):
        await validate_coupon(db, "SAVE20", plan.id)


async def test_limit_reached(db, plan):
    await _coupon(db, max_uses=3, used_count=3)
    with pytest.raises(CouponLimitReached):
        await validate_coupon(db, "SAVE20", plan.id)


async def test_not_applicable_to_other_plans(db, plan):
    await _coupon(db, applicable_plan_ids=[plan.id + 100])
    with pytest.raises(CouponNotApplicable) as exc:
        await validate_coupon(db, "SAVE20", plan.id)
    assert exc.value.reason == "NotApplicable"


async def test_applicable_plan_list_accepts_member(db, plan):
    await _coupon(db, applicable_plan_ids=[plan.id])
    _, discount = await validate_coupon(db, "SAVE20", plan.id)
    assert discount == 2000


async def test_future_expiry_is_valid(db, plan):
    await _coupon(db, expiry_date=utcnow() + timedelta(days=1))
    _, discount = await validate_coupon(db, "SAVE20", plan.id)
    assert discount == 2000


async def test_validation_does_not_consume_usage(db, plan):
    coupon = await _coupon(db, max_uses=1)
    for _ in range(3):
        await validate_coupon(db, "SAVE20", plan.id)
    await db.refresh(coupon)
    assert coupon.used_count == 0


async def test_redeem_counts_once_per_payment(db, plan):
    coupon = await _coupon(db)

    assert await redeem_coupon(db, "SAVE20", "pi_1") is True
    assert await redeem_coupon(db, "SAVE20", "pi_1") is False
    assert await redeem_coupon(db, "SAVE20", "pi_2") is True

    await db.refresh(coupon)
    assert coupon.used_count == 2


async def test_redeem_never_exceeds_max_uses(db, plan):
    coupon = await _coupon(db, max_uses=1)

    await redeem_coupon(db, "SAVE20", "pi_1")
    with pytest.raises(CouponLimitReached):
        await redeem_coupon(db, "SAVE20", "pi_2")

    await db.refresh(coupon)
    assert coupon.used_count == 1
    count = await db.scalar(select(func.count()).select_from(CouponRedemption))
    assert count == 1


async def test_create_starts_active_and_unused(db):
    coupon = await create_coupon(
        db,
        CouponCreate(code="WELCOME", discount_type="percent", discount_amount=Decimal("10")),
    )
    assert coupon.is_active is True
    assert coupon.used_count == 0


async def test_create_duplicate_code_conflicts(db):
    payload = CouponCreate(code="DUP", discount_type="fixed", discount_amount=Decimal("100"))
    await create_coupon(db, payload)
    with pytest.raises(ConflictError):
        await create_coupon(db, payload)


def test_percent_over_100_is_rejected():
    with pytest.raises(ValueError):
        CouponCreate(code="BAD", discount_type="percent", discount_amount=Decimal("120"))


async def test_update_cannot_lower_max_uses_below_used_count(db):
    coupon = await _coupon(db, max_uses=5, used_count=5)

    with pytest.raises(ValidationError):
        await update_coupon(db, coupon.id, CouponUpdate(max_uses=3))

    await db.refresh(coupon)
    assert coupon.max_uses == 5


async def test_update_can_raise_or_lift_max_uses(db):
    coupon = await _coupon(db, max_uses=5, used_count=5)

    coupon = await update_coupon(db, coupon.id, CouponUpdate(max_uses=8))
    assert coupon.max_uses == 8
    coupon = await update_coupon(db, coupon.id, CouponUpdate(max_uses=0))
    assert coupon.max_uses == 0
