# app/routers/coupons.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import get_current_user, require_admin
from app.schemas.coupons import CouponCreate, CouponOut, CouponUpdate, CouponValidateIn, CouponValidateOut
from app.services import coupons as coupon_service
from app.services.plans import get_plan_or_404
from app.services.pricing import resolve_base_price

router = APIRouter(prefix="/coupons", tags=["Coupons"])


@router.post("", response_model=CouponOut, status_code=201)
async def create_coupon(
    body: CouponCreate,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await coupon_service.create_coupon(db, body)


@router.get("", response_model=list[CouponOut])
async def list_coupons(
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await coupon_service.list_coupons(db)


@router.post("/validate", response_model=CouponValidateOut)
async def validate_coupon(
    body: CouponValidateIn,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
):
    plan = await get_plan_or_404(db, body.plan_id)
    base = resolve_base_price(plan, quantity=body.quantity, custom_amount_cents=body.custom_amount_cents)
    coupon, discount = await coupon_service.validate_coupon(
        db, body.code, plan.id, base_price_cents=base.amount_cents
    )
    return CouponValidateOut(
        code=coupon.code,
        plan_id=plan.id,
        base_price_cents=base.amount_cents,
        discount_cents=discount,
        final_price_cents=base.amount_cents - discount,
    )


@router.get("/{coupon_id}", response_model=CouponOut)
async def get_coupon(
    coupon_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await coupon_service.get_coupon(db, coupon_id)


@router.patch("/{coupon_id}", response_model=CouponOut)
async def update_coupon(
    coupon_id: int,
    body: CouponUpdate,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await coupon_service.update_coupon(db, coupon_id, body)


@router.delete("/{coupon_id}", status_code=204)
async def delete_coupon(
    coupon_id: int,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    await coupon_service.delete_coupon(db, coupon_id)
    return Response(status_code=204)
