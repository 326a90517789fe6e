# app/services/settlement.py
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import insert_ignore
from app.core.errors import ValidationError
from app.core.time_utils import utcnow
from app.models.order import Order
from app.models.plan import PricingPlan
from app.models.user import User
from app.services.affiliates import process_commission
from app.services.coupons import redeem_coupon

logger = logging.getLogger(__name__)


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


async def _record_order(
    db: AsyncSession,
    *,
    payment_ref: str,
    amount_cents: int,
    currency: str,
    metadata: Mapping[str, str],
    subscription_id: Optional[str],
) -> tuple[Order, bool]:
    """Insert the order for this payment unless it exists. Returns (order, created)."""
    res = await db.execute(select(Order).where(Order.payment_ref == payment_ref))
    order = res.scalar_one_or_none()
    if order:
        return order, False

    plan_id = _int_or_none(metadata.get("plan_id"))
    plan = await db.get(PricingPlan, plan_id) if plan_id is not None else None

    buyer_id = _int_or_none(metadata.get("user_id"))
    if buyer_id is not None and await db.get(User, buyer_id) is None:
        buyer_id = None

    quantity = _int_or_none(metadata.get("quantity")) or 1
    paid_at = utcnow()
    access_expires_at = None
    if plan is not None and plan.access_duration_days:
        access_expires_at = paid_at + timedelta(days=plan.access_duration_days)

    try:
        res = await db.execute(
            insert_ignore(db, Order)
            .values(
                payment_ref=payment_ref,
                buyer_user_id=buyer_id,
                plan_id=plan.id if plan is not None else None,
                quantity=quantity,
                amount_cents=int(amount_cents),
                currency=(currency or "USD").upper(),
                status="paid",
                affiliate_code=metadata.get("affiliate_code") or None,
                coupon_code=metadata.get("coupon_code") or None,
                subscription_id=subscription_id,
                access_expires_at=access_expires_at,
                created_at=paid_at,
            )
            .on_conflict_do_nothing(index_elements=["payment_ref"])
        )
        created = res.rowcount == 1

        if created and plan is not None:
            await db.execute(
                update(PricingPlan)
                .where(PricingPlan.id == plan.id)
                .values(sold_count=PricingPlan.sold_count + quantity)
                .execution_options(synchronize_session=False)
            )

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    res = await db.execute(select(Order).where(Order.payment_ref == payment_ref))
    return res.scalar_one(), created


async def process_payment_success(
    db: AsyncSession,
    *,
    payment_ref: str,
    amount_cents: int,
    currency: str,
    metadata: Mapping[str, str],
    subscription_id: Optional[str] = None,
) -> Order:
    """
    Settle one captured payment. Safe to call again for the same payment_ref.

    Steps run independently: the affiliate commission, then coupon usage.
    A commission failure is raised after the coupon step has run; coupon
    usage failures are logged and dropped.
    """
    if not payment_ref:
        raise ValidationError("payment_ref is required to settle a payment")
    if amount_cents < 0:
        raise ValidationError("amount must not be negative")

    metadata = dict(metadata or {})
    order, created = await _record_order(
        db,
        payment_ref=payment_ref,
        amount_cents=amount_cents,
        currency=currency,
        metadata=metadata,
        subscription_id=subscription_id,
    )
    if created:
        logger.info("settled payment %s as order %s (%d %s)", payment_ref, order.id, order.amount_cents, order.currency)
    else:
        logger.info("payment %s already settled as order %s, replaying steps", payment_ref, order.id)

    commission_error: Optional[Exception] = None

    affiliate_code = metadata.get("affiliate_code")
    if affiliate_code:
        try:
            await process_commission(db, order=order, code=affiliate_code)
        except Exception as e:
            logger.error("commission for payment %s failed: %s", payment_ref, e)
            commission_error = e

    coupon_code = metadata.get("coupon_code")
    if coupon_code:
        try:
            await redeem_coupon(db, coupon_code, payment_ref)
        except Exception:
            logger.warning("coupon usage for %s on payment %s not recorded", coupon_code, payment_ref, exc_info=True)

    if commission_error is not None:
        raise commission_error
    # a step that rolled back has expired the loaded order
    await db.refresh(order)
    return order


def payment_from_event(event: Mapping[str, Any]) -> Optional[dict]:
    """
    Settlement arguments for a processor event, or None when the event is not a settled payment.

    Subscription payments settle on invoice.paid; the payment intent behind an
    invoice is skipped so the same money is not settled twice. Current API
    versions no longer link the invoice on the intent, so an intent without
    checkout metadata (no plan_id) is treated as invoice-backed as well.
    """
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == "payment_intent.succeeded":
        metadata = obj.get("metadata") or {}
        if obj.get("invoice") or not metadata.get("plan_id"):
            return None
        return {
            "payment_ref": obj["id"],
            "amount_cents": int(obj.get("amount_received") or obj.get("amount") or 0),
            "currency": (obj.get("currency") or "usd").upper(),
            "metadata": dict(metadata),
        }

    if event_type == "invoice.paid":
        # subscription_details moved under invoice.parent in current API versions
        parent = obj.get("parent") or {}
        details = parent.get("subscription_details") or obj.get("subscription_details") or {}
        metadata = details.get("metadata") or obj.get("metadata") or {}
        subscription = details.get("subscription") or obj.get("subscription")
        if isinstance(subscription, Mapping):
            subscription = subscription.get("id")
        return {
            "payment_ref": obj["id"],
            "amount_cents": int(obj.get("amount_paid") or 0),
            "currency": (obj.get("currency") or "usd").upper(),
            "metadata": dict(metadata),
            "subscription_id": subscription,
        }

    return None
