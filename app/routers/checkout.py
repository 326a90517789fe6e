# app/routers/checkout.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import get_current_user, get_payment_gateway
from app.integrations.stripe_gateway import StripeGateway
from app.models.user import User
from app.schemas.checkout import CheckoutIn, CheckoutOut
from app.services.checkout import initiate_checkout
from app.services.settlement import payment_from_event, process_payment_success

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Checkout"])


@router.post("/checkout", response_model=CheckoutOut)
async def checkout(
    body: CheckoutIn,
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
    current_user: User = Depends(get_current_user),
):
    result = await initiate_checkout(
        db,
        gateway,
        user_id=current_user.id,
        plan_id=body.plan_id,
        affiliate_code=body.affiliate_code,
        coupon_code=body.coupon_code,
        custom_amount_cents=body.custom_amount_cents,
        quantity=body.quantity,
    )
    return CheckoutOut(
        client_secret=result.client_secret,
        mode=result.mode,
        amount_cents=result.amount_cents,
        currency=result.currency,
        fee_cents=result.fee_cents,
        destination_account=result.destination_account,
        upsell_product_ids=result.upsell_product_ids,
    )


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    payload = await request.body()
    event = gateway.construct_webhook_event(payload, stripe_signature)

    payment = payment_from_event(event)
    if payment is None:
        logger.info("ignoring webhook event %s (%s)", event.get("id"), event.get("type"))
        return {"received": True, "settled": False}

    order = await process_payment_success(db, **payment)
    return {"received": True, "settled": True, "order_id": order.id}
