# app/routers/connect.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import get_current_user, get_payment_gateway
from app.integrations.stripe_gateway import StripeGateway
from app.models.user import User
from app.schemas.checkout import ConnectStatusOut, ConnectUrlOut
from app.services.connect import (
    build_oauth_url,
    connection_status,
    dashboard_login_link,
    handle_oauth_callback,
)

router = APIRouter(prefix="/connect", tags=["Connect"])


@router.get("/oauth-url", response_model=ConnectUrlOut)
async def oauth_url(current_user: User = Depends(get_current_user)):
    return ConnectUrlOut(url=build_oauth_url(current_user.id))


@router.get("/callback", response_model=ConnectStatusOut)
async def oauth_callback(
    code: str = Query(...),
    state: str = Query(...),
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    user = await handle_oauth_callback(db, gateway, code=code, state=state)
    return connection_status(user)


@router.get("/status", response_model=ConnectStatusOut)
async def status(current_user: User = Depends(get_current_user)):
    return connection_status(current_user)


@router.get("/dashboard-link", response_model=ConnectUrlOut)
async def dashboard_link(
    gateway: StripeGateway = Depends(get_payment_gateway),
    current_user: User = Depends(get_current_user),
):
    return ConnectUrlOut(url=await dashboard_login_link(gateway, current_user))
