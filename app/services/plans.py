# app/services/plans.py
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import NotFoundError, PermissionDenied, ValidationError
from app.core.time_utils import utcnow
from app.integrations.stripe_gateway import StripeGateway
from app.models.plan import PricingPlan
from app.models.user import User
from app.schemas.plans import BundleConfig, OneTimeConfig, PlanCreate, PlanUpdate, SubscriptionConfig

logger = logging.getLogger(__name__)


class PlanNotFound(NotFoundError):
    pass


async def get_plan_or_404(db: AsyncSession, plan_id: int, *, active_only: bool = False) -> PricingPlan:
    res = await db.execute(select(PricingPlan).where(PricingPlan.id == plan_id))
    plan = res.scalar_one_or_none()
    if not plan or (active_only and not plan.is_active):
        raise PlanNotFound("Plan not found")
    return plan


def _ensure_can_manage(plan: PricingPlan, user: User) -> None:
    if user.role == "admin":
        return
    if plan.creator_id != user.id:
        raise PermissionDenied("Only the plan's creator can modify it")


async def _mirror_to_processor(
    gateway: StripeGateway,
    payload: PlanCreate,
) -> tuple[Optional[str], Optional[str]]:
    """Product + price on the processor for fixed-price plans. Other types are not mirrored."""
    config = payload.config

    if isinstance(config, SubscriptionConfig):
        currency, interval = config.currency, config.interval
    elif isinstance(config, OneTimeConfig):
        currency, interval = config.currency, None
    elif isinstance(config, BundleConfig):
        currency, interval = settings.DEFAULT_CURRENCY, None
    else:
        return None, None

    if config.price_cents <= 0:
        return None, None

    product_id = await gateway.create_product(payload.name, payload.description)
    price_id = await gateway.create_price(product_id, config.price_cents, currency, interval=interval)
    logger.info("mirrored plan '%s' as product %s price %s", payload.name, product_id, price_id)
    return product_id, price_id


async def create_plan(
    db: AsyncSession,
    gateway: StripeGateway,
    *,
    creator_id: int,
    payload: PlanCreate,
) -> PricingPlan:
    """
    Validate and persist a plan owned by `creator_id`.

    The processor mirror is created first; if the processor refuses, the
    GatewayError propagates and no row is written.
    """
    if not payload.name.strip():
        raise ValidationError("Plan name is required")
    if payload.early_bird and payload.early_bird.deadline <= utcnow():
        raise ValidationError("Early bird deadline must be in the future")
    if payload.upsell and payload.product_id in payload.upsell.product_ids:
        raise ValidationError("A plan cannot upsell its own product")

    processor_product_id, processor_price_id = await _mirror_to_processor(gateway, payload)

    config = payload.config.model_dump()
    plan_type = config.pop("type")

    plan = PricingPlan(
        product_id=payload.product_id,
        creator_id=creator_id,
        name=payload.name.strip(),
        description=payload.description,
        type=plan_type,
        config=config,
        values=list(payload.values),
        is_active=True,
        allow_coupons=payload.allow_coupons,
        is_private=payload.is_private,
        processor_product_id=processor_product_id,
        processor_price_id=processor_price_id,
        max_quantity=payload.limited_sell.max_quantity if payload.limited_sell else None,
        sold_count=0,
        early_bird_discount_cents=payload.early_bird.discount_cents if payload.early_bird else None,
        early_bird_deadline=payload.early_bird.deadline if payload.early_bird else None,
        access_duration_days=payload.access_duration.duration_days if payload.access_duration else None,
        upsell_product_ids=list(payload.upsell.product_ids) if payload.upsell else [],
    )

    db.add(plan)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(plan)
    logger.info("plan %s (%s) created by user %s", plan.id, plan.type, creator_id)
    return plan


async def list_plans(
    db: AsyncSession,
    *,
    product_id: int | None = None,
    active_only: bool = False,
    include_private: bool = True,
    creator_id: int | None = None,
) -> list[PricingPlan]:
    stmt = select(PricingPlan)

    if product_id is not None:
        stmt = stmt.where(PricingPlan.product_id == product_id)
    if active_only:
        stmt = stmt.where(PricingPlan.is_active.is_(True))
    if not include_private:
        stmt = stmt.where(PricingPlan.is_private.is_(False))
    if creator_id is not None:
        stmt = stmt.where(PricingPlan.creator_id == creator_id)

    stmt = stmt.order_by(PricingPlan.id.asc())

    res = await db.execute(stmt)
    return list(res.scalars().all())


async def update_plan(
    db: AsyncSession,
    gateway: StripeGateway,
    *,
    plan_id: int,
    user: User,
    payload: PlanUpdate,
) -> PricingPlan:
    plan = await get_plan_or_404(db, plan_id)
    _ensure_can_manage(plan, user)

    if plan.processor_product_id:
        await gateway.update_product(plan.processor_product_id, payload.name, payload.description)

    plan.name = payload.name.strip()
    plan.description = payload.description

    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(plan)
    return plan


async def delete_plan(
    db: AsyncSession,
    gateway: StripeGateway,
    *,
    plan_id: int,
    user: User,
) -> None:
    plan = await get_plan_or_404(db, plan_id)
    _ensure_can_manage(plan, user)

    # archive the mirror before the row goes away
    if plan.processor_price_id:
        await gateway.archive_price(plan.processor_price_id)
    if plan.processor_product_id:
        await gateway.archive_product(plan.processor_product_id)

    try:
        await db.delete(plan)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("plan %s deleted by user %s", plan_id, user.id)


async def set_plan_active(
    db: AsyncSession,
    *,
    plan_id: int,
    user: User,
    is_active: bool,
) -> PricingPlan:
    plan = await get_plan_or_404(db, plan_id)
    _ensure_can_manage(plan, user)

    plan.is_active = is_active
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(plan)
    return plan
