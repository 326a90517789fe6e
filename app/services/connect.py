# app/services/connect.py
from __future__ import annotations

import logging
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import BusinessRuleError, NotFoundError, ValidationError
from app.core.security import TokenError, create_connect_state, decode_token
from app.integrations.stripe_gateway import StripeGateway
from app.models.user import User

logger = logging.getLogger(__name__)

CONNECT_AUTHORIZE_URL = "https://connect.stripe.com/oauth/authorize"


def build_oauth_url(user_id: int) -> str:
    params = {
        "response_type": "code",
        "client_id": settings.STRIPE_CONNECT_CLIENT_ID,
        "scope": "read_write",
        "state": create_connect_state(user_id=user_id),
        "redirect_uri": settings.STRIPE_CONNECT_REDIRECT_URL,
    }
    return f"{CONNECT_AUTHORIZE_URL}?{urlencode(params)}"


def _user_id_from_state(state: str) -> int:
    try:
        payload = decode_token(state)
    except TokenError as e:
        raise ValidationError("Invalid or expired OAuth state") from e

    if payload.get("type") != "connect_state":
        raise ValidationError("Invalid OAuth state")
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError("Invalid OAuth state") from e


async def handle_oauth_callback(
    db: AsyncSession,
    gateway: StripeGateway,
    *,
    code: str,
    state: str,
) -> User:
    user_id = _user_id_from_state(state)
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")

    account_id = await gateway.exchange_oauth_code(code)

    user.connect_account_id = account_id
    user.connect_status = "active"
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(user)
    logger.info("user %s connected payout account %s", user.id, account_id)
    return user


def connection_status(user: User) -> dict:
    return {
        "connected": bool(user.connect_account_id),
        "connect_account_id": user.connect_account_id,
        "status": user.connect_status,
    }


class NotConnected(BusinessRuleError):
    reason = "NotConnected"


async def dashboard_login_link(gateway: StripeGateway, user: User) -> str:
    if not user.connect_account_id:
        raise NotConnected("User is not connected to Stripe")
    return await gateway.create_login_link(user.connect_account_id)
