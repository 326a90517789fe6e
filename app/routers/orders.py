# app/routers/orders.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import get_current_user, get_payment_gateway
from app.integrations.stripe_gateway import StripeGateway
from app.models.user import User
from app.schemas.orders import OrderOut
from app.services.invoices import generate_invoice_pdf, list_orders_for_buyer
from app.services.subscriptions import cancel_order_subscription

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.get("", response_model=list[OrderOut])
async def my_orders(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await list_orders_for_buyer(db, current_user.id)


@router.get("/{order_id}/invoice.pdf")
async def invoice_pdf(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    pdf_bytes, number = await generate_invoice_pdf(db, order_id=order_id, user_id=current_user.id)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{number}.pdf"'},
    )


@router.post("/{order_id}/cancel-subscription", response_model=OrderOut)
async def cancel_subscription(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
    current_user: User = Depends(get_current_user),
):
    return await cancel_order_subscription(db, gateway, order_id=order_id, user_id=current_user.id)
