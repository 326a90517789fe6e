# app/routers/plans.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.schemas.plans import PlanOut
from app.services.plans import get_plan_or_404, list_plans

router = APIRouter(prefix="/plans", tags=["Plans"])


@router.get("", response_model=list[PlanOut])
async def list_public_plans(
    product_id: Optional[int] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    return await list_plans(db, product_id=product_id, active_only=True, include_private=False)


@router.get("/{plan_id}", response_model=PlanOut)
async def get_public_plan(
    plan_id: int,
    db: AsyncSession = Depends(get_db),
):
    return await get_plan_or_404(db, plan_id, active_only=True)
