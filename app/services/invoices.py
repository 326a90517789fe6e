from __future__ import annotations

from datetime import datetime
from io import BytesIO
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError
from app.core.time_utils import as_utc, utcnow
from app.models.order import Order
from app.models.plan import PricingPlan
from app.models.user import User


class OrderNotFound(NotFoundError):
    pass


def _fmt_dt(dt: Optional[datetime]) -> str:
    if not dt:
        return ""
    return as_utc(dt).strftime("%Y-%m-%d %H:%M UTC")


def _money(cents: int, currency: str) -> str:
    return f"{cents / 100.0:,.2f} {currency.upper()}"


def invoice_number(order: Order) -> str:
    return f"INV-{order.id:06d}"


async def list_orders_for_buyer(db: AsyncSession, user_id: int) -> list[Order]:
    res = await db.execute(
        select(Order).where(Order.buyer_user_id == user_id).order_by(Order.id.desc())
    )
    return list(res.scalars().all())


async def get_order_for_buyer(db: AsyncSession, *, order_id: int, user_id: int) -> Order:
    res = await db.execute(
        select(Order).where(Order.id == order_id, Order.buyer_user_id == user_id)
    )
    order = res.scalar_one_or_none()
    if not order:
        raise OrderNotFound("Order not found")
    return order


def _build_pdf(*, title: str, subtitle_lines: list[str], rows: list[list[str]], total: str) -> bytes:
    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=15 * mm,
        rightMargin=15 * mm,
        topMargin=15 * mm,
        bottomMargin=15 * mm,
        title=title,
    )

    styles = getSampleStyleSheet()
    story = [Paragraph(f"<b>{title}</b>", styles["Title"]), Spacer(1, 6)]

    for line in subtitle_lines:
        story.append(Paragraph(line, styles["Normal"]))
    story.append(Spacer(1, 12))

    data = [["Item", "Qty", "Amount"]] + rows + [["", "Total", total]]
    tbl = Table(data, colWidths=[100 * mm, 20 * mm, 50 * mm], repeatRows=1)
    tbl.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#111827")),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("GRID", (0, 0), (-1, -2), 0.25, colors.grey),
                ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                ("LEFTPADDING", (0, 0), (-1, -1), 4),
                ("RIGHTPADDING", (0, 0), (-1, -1), 4),
            ]
        )
    )

    story.append(tbl)
    doc.build(story)
    return buf.getvalue()


async def generate_invoice_pdf(db: AsyncSession, *, order_id: int, user_id: int) -> tuple[bytes, str]:
    """One-page invoice for an order the user bought. Returns (pdf bytes, invoice number)."""
    order = await get_order_for_buyer(db, order_id=order_id, user_id=user_id)
    plan = await db.get(PricingPlan, order.plan_id) if order.plan_id else None
    buyer = await db.get(User, user_id)

    number = invoice_number(order)
    subtitle = [
        f"Invoice: <b>{number}</b>",
        f"Date: {_fmt_dt(order.created_at)}",
        f"Billed to: {buyer.full_name or buyer.email if buyer else ''}",
        f"Payment reference: {order.payment_ref}",
    ]
    if order.coupon_code:
        subtitle.append(f"Coupon: {order.coupon_code}")
    if order.access_expires_at:
        subtitle.append(f"Access until: {_fmt_dt(order.access_expires_at)}")
    subtitle.append(f"Generated at: {_fmt_dt(utcnow())}")

    item = plan.name if plan else f"Plan #{order.plan_id or '-'}"
    amount = _money(int(order.amount_cents), order.currency)

    pdf = _build_pdf(
        title="Invoice",
        subtitle_lines=subtitle,
        rows=[[item, str(int(order.quantity)), amount]],
        total=amount,
    )
    return pdf, number
