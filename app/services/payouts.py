# app/services/payouts.py
from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import BusinessRuleError, NotFoundError, ValidationError
from app.core.time_utils import utcnow
from app.models.wallet import PAYOUT_METHODS, PayoutRequest
from app.services.wallet import credit_wallet, debit_wallet

logger = logging.getLogger(__name__)

# payouts that give the money back to the wallet
_REVERSING_STATUSES = ("failed", "cancelled")


class PayoutNotFound(NotFoundError):
    pass


class InvalidTransition(BusinessRuleError):
    reason = "InvalidTransition"


async def request_payout(
    db: AsyncSession,
    *,
    user_id: int,
    amount_cents: int,
    method: str,
) -> PayoutRequest:
    """
    Withdraw from the wallet: the debit and the pending request commit together.
    InsufficientFunds (or any other failure) leaves neither behind.
    """
    if method not in PAYOUT_METHODS:
        raise ValidationError(f"Unsupported payout method '{method}'")

    try:
        entry = await debit_wallet(
            db,
            user_id=user_id,
            amount_cents=amount_cents,
            tx_type="payout",
            description=f"Payout request via {method}",
            commit=False,
        )

        payout = PayoutRequest(
            user_id=user_id,
            amount_cents=int(amount_cents),
            currency=settings.DEFAULT_CURRENCY,
            method=method,
            status="pending",
        )
        db.add(payout)
        await db.flush()

        entry.reference_id = str(payout.id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(payout)
    logger.info("payout %s requested by user %s: %d via %s", payout.id, user_id, amount_cents, method)
    return payout


async def get_payout(db: AsyncSession, payout_id: int) -> PayoutRequest:
    payout = await db.get(PayoutRequest, payout_id)
    if not payout:
        raise PayoutNotFound("Payout request not found")
    return payout


async def update_payout_status(
    db: AsyncSession,
    *,
    payout_id: int,
    status: str,
) -> PayoutRequest:
    """
    Operator decision on a pending payout: paid, failed or cancelled.
    failed/cancelled re-credit the wallet (type refund) in the same transaction.
    """
    if status not in ("paid", *_REVERSING_STATUSES):
        raise ValidationError(f"Unsupported payout status '{status}'")

    payout = await get_payout(db, payout_id)

    try:
        # only one operator can move it out of pending
        res = await db.execute(
            update(PayoutRequest)
            .where(PayoutRequest.id == payout_id, PayoutRequest.status == "pending")
            .values(status=status, processed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise InvalidTransition(f"Payout {payout_id} is no longer pending")

        if status in _REVERSING_STATUSES:
            await credit_wallet(
                db,
                user_id=payout.user_id,
                amount_cents=payout.amount_cents,
                tx_type="refund",
                reference_id=str(payout.id),
                description=f"Payout {payout.id} {status}",
                commit=False,
            )

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(payout)
    logger.info("payout %s -> %s", payout.id, status)
    return payout


async def list_my_payouts(db: AsyncSession, user_id: int) -> list[PayoutRequest]:
    res = await db.execute(
        select(PayoutRequest)
        .where(PayoutRequest.user_id == user_id)
        .order_by(PayoutRequest.id.desc())
    )
    return list(res.scalars().all())


async def list_pending_payouts(db: AsyncSession) -> list[PayoutRequest]:
    res = await db.execute(
        select(PayoutRequest)
        .where(PayoutRequest.status == "pending")
        .order_by(PayoutRequest.id.asc())
    )
    return list(res.scalars().all())
