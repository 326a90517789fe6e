# app/routers/creator_plans.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import get_current_user, get_payment_gateway
from app.integrations.stripe_gateway import StripeGateway
from app.models.user import User
from app.schemas.plans import PlanActiveIn, PlanCreate, PlanOut, PlanUpdate
from app.services import plans as plan_service

router = APIRouter(prefix="/creator/plans", tags=["Creator - Plans"])


@router.post("", response_model=PlanOut, status_code=201)
async def create_plan(
    body: PlanCreate,
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
    current_user: User = Depends(get_current_user),
):
    return await plan_service.create_plan(db, gateway, creator_id=current_user.id, payload=body)


@router.get("", response_model=list[PlanOut])
async def list_my_plans(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await plan_service.list_plans(db, creator_id=current_user.id)


@router.patch("/{plan_id}", response_model=PlanOut)
async def update_plan(
    plan_id: int,
    body: PlanUpdate,
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
    current_user: User = Depends(get_current_user),
):
    return await plan_service.update_plan(db, gateway, plan_id=plan_id, user=current_user, payload=body)


@router.patch("/{plan_id}/active", response_model=PlanOut)
async def set_plan_active(
    plan_id: int,
    body: PlanActiveIn,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await plan_service.set_plan_active(db, plan_id=plan_id, user=current_user, is_active=body.is_active)


@router.delete("/{plan_id}", status_code=204)
async def delete_plan(
    plan_id: int,
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
    current_user: User = Depends(get_current_user),
):
    await plan_service.delete_plan(db, gateway, plan_id=plan_id, user=current_user)
    return Response(status_code=204)
