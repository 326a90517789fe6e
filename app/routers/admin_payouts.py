# app/routers/admin_payouts.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import require_admin
from app.schemas.wallet import PayoutOut, PayoutStatusIn
from app.services.payouts import list_pending_payouts, update_payout_status

router = APIRouter(prefix="/admin/payouts", tags=["Admin - Payouts"])


@router.get("", response_model=list[PayoutOut])
async def pending_payouts(
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await list_pending_payouts(db)


@router.patch("/{payout_id}", response_model=PayoutOut)
async def set_payout_status(
    payout_id: int,
    body: PayoutStatusIn,
    db: AsyncSession = Depends(get_db),
    admin_user=Depends(require_admin),
):
    return await update_payout_status(db, payout_id=payout_id, status=body.status)
