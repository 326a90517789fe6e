# app/services/subscriptions.py
from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import BusinessRuleError
from app.core.time_utils import utcnow
from app.integrations.stripe_gateway import StripeGateway
from app.models.order import Order
from app.services.invoices import get_order_for_buyer

logger = logging.getLogger(__name__)


class NotASubscription(BusinessRuleError):
    reason = "NotASubscription"


class SubscriptionAlreadyCancelled(BusinessRuleError):
    reason = "AlreadyCancelled"


async def cancel_order_subscription(
    db: AsyncSession,
    gateway: StripeGateway,
    *,
    order_id: int,
    user_id: int,
) -> Order:
    """
    Stop the recurring billing behind one of the buyer's subscription orders.

    Paid invoices stay paid; every order of the subscription is stamped as cancelled.
    The processor is called first, a GatewayError leaves the orders untouched.
    """
    order = await get_order_for_buyer(db, order_id=order_id, user_id=user_id)
    if not order.subscription_id:
        raise NotASubscription("Order is not a subscription payment")
    if order.subscription_cancelled_at is not None:
        raise SubscriptionAlreadyCancelled("Subscription is already cancelled")

    subscription_id = order.subscription_id
    await gateway.cancel_subscription(subscription_id)

    try:
        await db.execute(
            update(Order)
            .where(Order.subscription_id == subscription_id, Order.subscription_cancelled_at.is_(None))
            .values(subscription_cancelled_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(order)
    logger.info("user %s cancelled subscription %s (order %s)", user_id, subscription_id, order_id)
    return order
