from datetime import timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select

from app.core.errors import GatewayError, PermissionDenied, ValidationError
from app.core.time_utils import utcnow
from app.models.plan import PricingPlan
from app.schemas.plans import PlanCreate, PlanUpdate
from app.services.plans import (
    PlanNotFound,
    create_plan,
    delete_plan,
    get_plan_or_404,
    list_plans,
    set_plan_active,
    update_plan,
)


def _payload(config: dict, **kw) -> PlanCreate:
    return PlanCreate(name=kw.pop("name", "Course"), description="A course", config=config, **kw)


async def test_one_time_plan_is_mirrored(db, gateway, make_user):
    creator = await make_user()

    plan = await create_plan(
        db, gateway, creator_id=creator.id,
        payload=_payload({"type": "one_time", "price_cents": 4900, "currency": "USD"}),
    )

    assert plan.type == "one_time"
    assert plan.config["price_cents"] == 4900
    assert "type" not in plan.config
    assert plan.processor_product_id.startswith("prod_")
    assert plan.processor_price_id.startswith("price_")
    (price,) = gateway.calls_to("create_price")
    assert price["interval"] is None
    assert price["amount_cents"] == 4900


async def test_subscription_price_is_recurring(db, gateway, make_user):
    creator = await make_user()
    await create_plan(
        db, gateway, creator_id=creator.id,
        payload=_payload({"type": "subscription", "price_cents": 999, "interval": "year"}),
    )
    assert gateway.calls_to("create_price")[0]["interval"] == "year"


async def test_free_and_variable_plans_are_not_mirrored(db, gateway, make_user):
    creator = await make_user()
    await create_plan(
        db, gateway, creator_id=creator.id,
        payload=_payload({"type": "one_time", "price_cents": 0}),
    )
    plan = await create_plan(
        db, gateway, creator_id=creator.id,
        payload=_payload({"type": "donation", "min_amount_cents": 100}),
    )
    assert gateway.calls == []
    assert plan.processor_price_id is None


async def test_constraints_are_stored(db, gateway, make_user):
    creator = await make_user()
    plan = await create_plan(
        db, gateway, creator_id=creator.id,
        payload=_payload(
            {"type": "donation", "min_amount_cents": 100},
            limited_sell={"max_quantity": 50},
            early_bird={"discount_cents": 500, "deadline": utcnow() + timedelta(days=3)},
            access_duration={"duration_days": 90},
        ),
    )
    assert plan.max_quantity == 50
    assert plan.sold_count == 0
    assert plan.early_bird_discount_cents == 500
    assert plan.access_duration_days == 90


async def test_upsell_products_are_stored(db, gateway, make_user):
    creator = await make_user()
    plan = await create_plan(
        db, gateway, creator_id=creator.id,
        payload=_payload({"type": "one_time", "price_cents": 0}, product_id=1, upsell={"product_ids": [4, 9]}),
    )
    assert plan.upsell_product_ids == [4, 9]

    plain = await create_plan(
        db, gateway, creator_id=creator.id,
        payload=_payload({"type": "one_time", "price_cents": 0}),
    )
    assert plain.upsell_product_ids == []


async def test_plan_cannot_upsell_its_own_product(db, gateway, make_user):
    creator = await make_user()
    with pytest.raises(ValidationError):
        await create_plan(
            db, gateway, creator_id=creator.id,
            payload=_payload({"type": "one_time", "price_cents": 0}, product_id=4, upsell={"product_ids": [4]}),
        )


def test_upsell_ids_must_be_distinct():
    with pytest.raises(PydanticValidationError):
        _payload({"type": "one_time", "price_cents": 0}, upsell={"product_ids": [3, 3]})


async def test_early_bird_deadline_must_be_future(db, gateway, make_user):
    creator = await make_user()
    with pytest.raises(ValidationError):
        await create_plan(
            db, gateway, creator_id=creator.id,
            payload=_payload(
                {"type": "one_time", "price_cents": 100},
                early_bird={"discount_cents": 50, "deadline": utcnow() - timedelta(hours=1)},
            ),
        )


async def test_processor_failure_persists_nothing(db, gateway, make_user):
    creator = await make_user()
    gateway.fail_on["create_price"] = "Invalid currency"

    with pytest.raises(GatewayError):
        await create_plan(
            db, gateway, creator_id=creator.id,
            payload=_payload({"type": "one_time", "price_cents": 100, "currency": "XXX"}),
        )

    assert await db.scalar(select(func.count()).select_from(PricingPlan)) == 0


def test_plan_config_shape_is_validated():
    with pytest.raises(PydanticValidationError):
        _payload({"type": "split", "total_amount_cents": 0, "installment_count": 3})
    with pytest.raises(PydanticValidationError):
        _payload({"type": "bundle", "price_cents": 100, "included_product_ids": []})
    with pytest.raises(PydanticValidationError):
        _payload({"type": "one_time", "price_cents": -1})
    with pytest.raises(PydanticValidationError):
        _payload({"type": "one_time", "price_cents": 100}, limited_sell={"max_quantity": 0})


async def test_only_owner_can_update(db, gateway, make_user):
    owner = await make_user()
    stranger = await make_user()
    admin = await make_user(role="admin")
    plan = await create_plan(
        db, gateway, creator_id=owner.id,
        payload=_payload({"type": "one_time", "price_cents": 100}),
    )

    with pytest.raises(PermissionDenied):
        await update_plan(db, gateway, plan_id=plan.id, user=stranger, payload=PlanUpdate(name="Hijack"))

    updated = await update_plan(
        db, gateway, plan_id=plan.id, user=admin, payload=PlanUpdate(name="Renamed", description="New")
    )
    assert updated.name == "Renamed"
    (call,) = gateway.calls_to("update_product")
    assert call == {"product_id": plan.processor_product_id, "name": "Renamed", "description": "New"}


async def test_delete_archives_mirror(db, gateway, make_user):
    owner = await make_user()
    plan = await create_plan(
        db, gateway, creator_id=owner.id,
        payload=_payload({"type": "one_time", "price_cents": 100}),
    )
    price_id, product_id = plan.processor_price_id, plan.processor_product_id

    await delete_plan(db, gateway, plan_id=plan.id, user=owner)

    assert gateway.calls_to("archive_price") == [{"price_id": price_id}]
    assert gateway.calls_to("archive_product") == [{"product_id": product_id}]
    with pytest.raises(PlanNotFound):
        await get_plan_or_404(db, plan.id)


async def test_deactivated_plans_are_hidden(db, gateway, make_user):
    owner = await make_user()
    plan = await create_plan(
        db, gateway, creator_id=owner.id,
        payload=_payload({"type": "one_time", "price_cents": 0}, product_id=7),
    )

    await set_plan_active(db, plan_id=plan.id, user=owner, is_active=False)

    assert await list_plans(db, product_id=7, active_only=True) == []
    assert [p.id for p in await list_plans(db, product_id=7)] == [plan.id]
    with pytest.raises(PlanNotFound):
        await get_plan_or_404(db, plan.id, active_only=True)
