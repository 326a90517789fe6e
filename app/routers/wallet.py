# app/routers/wallet.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import get_current_user
from app.models.user import User
from app.schemas.wallet import (
    PayoutIn,
    PayoutOut,
    WalletBalanceOut,
    WalletTransactionListOut,
    WalletTransactionOut,
)
from app.services.payouts import list_my_payouts, request_payout
from app.services.wallet import get_balance, list_transactions

router = APIRouter(prefix="/wallet", tags=["Wallet"])


@router.get("", response_model=WalletBalanceOut)
async def my_balance(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> WalletBalanceOut:
    wa = await get_balance(db, current_user.id)
    return WalletBalanceOut(
        user_id=wa.user_id,
        balance_cents=wa.balance_cents,
        currency=wa.currency,
        updated_at=wa.updated_at,
    )


@router.get("/transactions", response_model=WalletTransactionListOut)
async def my_transactions(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> WalletTransactionListOut:
    items = await list_transactions(db, current_user.id, limit=limit, offset=offset)
    return WalletTransactionListOut(
        items=[WalletTransactionOut.model_validate(tx) for tx in items],
        offset=offset,
        limit=limit,
    )


@router.post("/payouts", response_model=PayoutOut, status_code=201)
async def create_payout(
    body: PayoutIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await request_payout(
        db,
        user_id=current_user.id,
        amount_cents=body.amount_cents,
        method=body.method,
    )


@router.get("/payouts", response_model=list[PayoutOut])
async def my_payouts(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await list_my_payouts(db, current_user.id)
