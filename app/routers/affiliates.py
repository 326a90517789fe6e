# app/routers/affiliates.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import get_current_user
from app.models.user import User
from app.schemas.affiliates import AffiliateStatsOut, LinkCreate, LinkOut, ProgramCreate, ProgramOut
from app.services import affiliates as affiliate_service

router = APIRouter(prefix="/affiliates", tags=["Affiliates"])


@router.post("/programs", response_model=ProgramOut, status_code=201)
async def create_program(
    body: ProgramCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await affiliate_service.create_program(
        db,
        creator_id=current_user.id,
        commission_rate=body.commission_rate,
        product_id=body.product_id,
    )


@router.get("/programs", response_model=list[ProgramOut])
async def list_programs(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await affiliate_service.list_programs(db)


@router.post("/links", response_model=LinkOut, status_code=201)
async def create_link(
    body: LinkCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await affiliate_service.generate_link(
        db,
        user_id=current_user.id,
        program_id=body.program_id,
        code=body.code,
    )


@router.post("/click/{code}", status_code=204)
async def track_click(
    code: str,
    db: AsyncSession = Depends(get_db),
):
    # public: hit from the referral landing page
    await affiliate_service.track_click(db, code)


@router.get("/stats", response_model=AffiliateStatsOut)
async def my_stats(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await affiliate_service.get_my_stats(db, current_user.id)
