from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.errors import ValidationError
from app.core.time_utils import as_utc
from app.models.affiliate import Commission
from app.models.coupon import Coupon
from app.models.order import Order
from app.services.affiliates import AffiliateLinkNotFound, create_program, generate_link
from app.services.settlement import payment_from_event, process_payment_success
from app.services.wallet import get_balance


@pytest.fixture
async def affiliate(db, make_user):
    creator = await make_user()
    affiliate = await make_user()
    program = await create_program(db, creator_id=creator.id, commission_rate=Decimal("10"))
    await generate_link(db, user_id=affiliate.id, program_id=program.id, code="PARTNER")
    return affiliate


@pytest.fixture
async def coupon(db):
    c = Coupon(code="SAVE20", discount_type="fixed", discount_amount=Decimal("2000"), applicable_plan_ids=[])
    db.add(c)
    await db.commit()
    await db.refresh(c)
    return c


async def _count(db, model) -> int:
    return await db.scalar(select(func.count()).select_from(model))


async def test_affiliate_sale_pays_ten_percent(db, affiliate):
    await process_payment_success(
        db,
        payment_ref="pi_200",
        amount_cents=20000,
        currency="usd",
        metadata={"affiliate_code": "PARTNER"},
    )

    assert (await get_balance(db, affiliate.id)).balance_cents == 2000
    assert await _count(db, Commission) == 1


async def test_replayed_payment_changes_nothing(db, affiliate, coupon):
    metadata = {"affiliate_code": "PARTNER", "coupon_code": "SAVE20"}
    first = await process_payment_success(
        db, payment_ref="pi_1", amount_cents=20000, currency="USD", metadata=metadata
    )
    again = await process_payment_success(
        db, payment_ref="pi_1", amount_cents=20000, currency="USD", metadata=metadata
    )

    assert again.id == first.id
    assert await _count(db, Order) == 1
    assert await _count(db, Commission) == 1
    assert (await get_balance(db, affiliate.id)).balance_cents == 2000
    await db.refresh(coupon)
    assert coupon.used_count == 1


async def test_coupon_usage_counted_per_payment(db, coupon):
    for ref in ("pi_a", "pi_b"):
        await process_payment_success(
            db, payment_ref=ref, amount_cents=8000, currency="USD", metadata={"coupon_code": "SAVE20"}
        )
    await db.refresh(coupon)
    assert coupon.used_count == 2


async def test_coupon_failure_is_swallowed(db):
    order = await process_payment_success(
        db, payment_ref="pi_x", amount_cents=8000, currency="USD", metadata={"coupon_code": "GONE"}
    )
    assert order.coupon_code == "GONE"


async def test_commission_failure_raised_after_coupon_step(db, coupon):
    with pytest.raises(AffiliateLinkNotFound):
        await process_payment_success(
            db,
            payment_ref="pi_y",
            amount_cents=8000,
            currency="USD",
            metadata={"affiliate_code": "UNKNOWN", "coupon_code": "SAVE20"},
        )

    await db.refresh(coupon)
    assert coupon.used_count == 1
    # the order itself is recorded so a retry can finish the commission
    assert await _count(db, Order) == 1


async def test_order_records_plan_constraints(db, make_user, make_plan):
    buyer = await make_user()
    plan = await make_plan(
        "one_time",
        {"price_cents": 1000},
        max_quantity=10,
        sold_count=2,
        access_duration_days=30,
    )
    metadata = {"plan_id": str(plan.id), "user_id": str(buyer.id), "quantity": "3"}

    order = await process_payment_success(
        db, payment_ref="pi_q", amount_cents=3000, currency="usd", metadata=metadata
    )
    await process_payment_success(
        db, payment_ref="pi_q", amount_cents=3000, currency="usd", metadata=metadata
    )

    assert order.buyer_user_id == buyer.id
    assert order.currency == "USD"
    assert order.quantity == 3
    assert as_utc(order.access_expires_at) - as_utc(order.created_at) == timedelta(days=30)

    await db.refresh(plan)
    assert plan.sold_count == 5


async def test_payment_ref_is_required(db):
    with pytest.raises(ValidationError):
        await process_payment_success(db, payment_ref="", amount_cents=100, currency="USD", metadata={})


def test_payment_intent_event():
    event = {
        "id": "evt_1",
        "type": "payment_intent.succeeded",
        "data": {
            "object": {
                "id": "pi_123",
                "amount": 8000,
                "amount_received": 8000,
                "currency": "usd",
                "metadata": {"plan_id": "1", "user_id": "2"},
            }
        },
    }
    assert payment_from_event(event) == {
        "payment_ref": "pi_123",
        "amount_cents": 8000,
        "currency": "USD",
        "metadata": {"plan_id": "1", "user_id": "2"},
    }


def test_invoice_payment_intent_is_left_to_invoice_event():
    event = {
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_sub", "amount": 1500, "invoice": "in_1", "metadata": {}}},
    }
    assert payment_from_event(event) is None


def test_invoice_paid_uses_subscription_metadata():
    event = {
        "type": "invoice.paid",
        "data": {
            "object": {
                "id": "in_1",
                "amount_paid": 1500,
                "currency": "eur",
                "subscription_details": {"metadata": {"plan_id": "7", "affiliate_code": "PARTNER"}},
            }
        },
    }
    payment = payment_from_event(event)
    assert payment["payment_ref"] == "in_1"
    assert payment["currency"] == "EUR"
    assert payment["metadata"]["affiliate_code"] == "PARTNER"


def test_other_events_are_ignored():
    assert payment_from_event({"type": "customer.created", "data": {"object": {}}}) is None


def test_invoice_paid_reads_metadata_from_invoice_parent():
    event = {
        "type": "invoice.paid",
        "data": {
            "object": {
                "id": "in_2",
                "amount_paid": 2900,
                "currency": "usd",
                "parent": {
                    "type": "subscription_details",
                    "subscription_details": {
                        "subscription": "sub_1",
                        "metadata": {"plan_id": "7", "user_id": "3", "affiliate_code": "REF"},
                    },
                },
            }
        },
    }
    payment = payment_from_event(event)
    assert payment["payment_ref"] == "in_2"
    assert payment["amount_cents"] == 2900
    assert payment["metadata"] == {"plan_id": "7", "user_id": "3", "affiliate_code": "REF"}
    assert payment["subscription_id"] == "sub_1"


def test_intent_without_checkout_metadata_is_left_to_invoice_event():
    # current API versions carry no invoice link on the intent that pays a subscription invoice
    event = {
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_sub2", "amount": 2900, "currency": "usd", "metadata": {}}},
    }
    assert payment_from_event(event) is None


async def test_order_is_returned_after_coupon_step_rolled_back(db):
    coupon = Coupon(
        code="FULL",
        discount_type="fixed",
        discount_amount=Decimal("100"),
        applicable_plan_ids=[],
        max_uses=1,
        used_count=1,
    )
    db.add(coupon)
    await db.commit()

    order = await process_payment_success(
        db, payment_ref="pi_full", amount_cents=900, currency="USD", metadata={"coupon_code": "FULL"}
    )

    assert order.payment_ref == "pi_full"
    assert order.coupon_code == "FULL"
    assert await _count(db, Order) == 1
