# app/services/affiliates.py
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import ConflictError, NotFoundError
from app.models.affiliate import AffiliateLink, AffiliateProgram, Commission
from app.models.order import Order
from app.services.pricing import percent_of
from app.services.wallet import CurrencyMismatch, credit_wallet

logger = logging.getLogger(__name__)


class AffiliateLinkNotFound(NotFoundError):
    pass


class AffiliateProgramNotFound(NotFoundError):
    pass


def build_link_url(code: str) -> str:
    return f"{settings.AFFILIATE_LINK_BASE_URL.rstrip('/')}/{code}"


async def create_program(
    db: AsyncSession,
    *,
    creator_id: int,
    commission_rate,
    product_id: Optional[int] = None,
) -> AffiliateProgram:
    program = AffiliateProgram(
        creator_id=creator_id,
        product_id=product_id,
        commission_rate=commission_rate,
        is_active=True,
    )
    db.add(program)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(program)
    return program


async def list_programs(db: AsyncSession, *, creator_id: Optional[int] = None) -> list[AffiliateProgram]:
    stmt = select(AffiliateProgram).where(AffiliateProgram.is_active.is_(True))
    if creator_id is not None:
        stmt = stmt.where(AffiliateProgram.creator_id == creator_id)
    res = await db.execute(stmt.order_by(AffiliateProgram.id.asc()))
    return list(res.scalars().all())


async def generate_link(db: AsyncSession, *, user_id: int, program_id: int, code: str) -> AffiliateLink:
    program = await db.get(AffiliateProgram, program_id)
    if not program or not program.is_active:
        raise AffiliateProgramNotFound("Affiliate program not found")

    res = await db.execute(select(AffiliateLink.id).where(AffiliateLink.code == code))
    if res.scalar_one_or_none() is not None:
        raise ConflictError("Affiliate code already taken")

    link = AffiliateLink(
        user_id=user_id,
        program_id=program_id,
        code=code,
        url=build_link_url(code),
        clicks=0,
        conversions=0,
    )
    db.add(link)
    try:
        await db.commit()
    except IntegrityError as e:
        # lost a race on the unique code
        await db.rollback()
        raise ConflictError("Affiliate code already taken") from e
    except Exception:
        await db.rollback()
        raise

    await db.refresh(link)
    return link


async def get_link_by_code(db: AsyncSession, code: str) -> AffiliateLink:
    res = await db.execute(select(AffiliateLink).where(AffiliateLink.code == code))
    link = res.scalar_one_or_none()
    if not link:
        raise AffiliateLinkNotFound(f"Affiliate code '{code}' not found")
    return link


async def track_click(db: AsyncSession, code: str) -> None:
    link = await get_link_by_code(db, code)
    try:
        await db.execute(
            update(AffiliateLink)
            .where(AffiliateLink.id == link.id)
            .values(clicks=AffiliateLink.clicks + 1)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise


async def _commission_for_order(db: AsyncSession, order_id: int) -> Optional[Commission]:
    res = await db.execute(select(Commission).where(Commission.order_id == order_id))
    return res.scalar_one_or_none()


async def process_commission(db: AsyncSession, *, order: Order, code: str) -> Optional[Commission]:
    """
    Pay the referrer of `order` its program's share of the sale.

    Commission row, wallet credit (type commission, referencing the commission id)
    and the link's conversion counter commit together. One commission per order:
    a replay returns the existing record and moves no money.
    Returns None when the program has been deactivated.
    """
    existing = await _commission_for_order(db, order.id)
    if existing:
        logger.info("commission for order %s already recorded (%s)", order.id, existing.id)
        return existing

    link = await get_link_by_code(db, code)
    program = await db.get(AffiliateProgram, link.program_id)
    if not program:
        raise AffiliateProgramNotFound("Affiliate program not found")
    if not program.is_active:
        logger.warning("affiliate program %s inactive, no commission for order %s", program.id, order.id)
        return None

    earned = percent_of(order.amount_cents, program.commission_rate)
    # rollback expires every loaded instance; keep plain values for the error paths
    order_id, order_total, currency = order.id, order.amount_cents, order.currency
    affiliate_user_id, link_id = link.user_id, link.id

    try:
        commission = Commission(
            affiliate_user_id=affiliate_user_id,
            link_id=link_id,
            order_id=order_id,
            total_amount_cents=order_total,
            earned_amount_cents=earned,
            currency=currency,
            status="paid",
        )
        db.add(commission)
        await db.flush()

        if earned > 0:
            await credit_wallet(
                db,
                user_id=affiliate_user_id,
                amount_cents=earned,
                tx_type="commission",
                reference_id=str(commission.id),
                description=f"Commission for order {order_id}",
                currency=currency,
                commit=False,
            )

        await db.execute(
            update(AffiliateLink)
            .where(AffiliateLink.id == link_id)
            .values(conversions=AffiliateLink.conversions + 1)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        # a concurrent delivery of the same payment got there first
        existing = await _commission_for_order(db, order_id)
        if existing:
            logger.info("commission for order %s recorded concurrently (%s)", order_id, existing.id)
            return existing
        raise
    except CurrencyMismatch as e:
        await db.rollback()
        logger.error("no commission for order %s: %s", order_id, e.message)
        raise
    except Exception:
        await db.rollback()
        raise

    await db.refresh(commission)
    logger.info(
        "commission %s: %d of %d (%s%%) to user %s for order %s",
        commission.id, earned, order_total, program.commission_rate, affiliate_user_id, order_id,
    )
    return commission


async def get_my_stats(db: AsyncSession, user_id: int) -> dict:
    res = await db.execute(
        select(AffiliateLink).where(AffiliateLink.user_id == user_id).order_by(AffiliateLink.id.asc())
    )
    links = list(res.scalars().all())

    res = await db.execute(
        select(Commission)
        .where(Commission.affiliate_user_id == user_id)
        .order_by(Commission.id.desc())
    )
    commissions = list(res.scalars().all())

    total = sum(c.earned_amount_cents for c in commissions if c.status == "paid")
    return {"links": links, "commissions": commissions, "total_earned_cents": total}
