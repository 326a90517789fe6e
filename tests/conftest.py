import json
import os
from typing import Any, Optional

# Settings are read at import time; give the app a harmless environment first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ["DB_AUTO_CREATE"] = "false"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import app.models  # noqa: F401
from app.core.db import Base, get_db
from app.core.deps import get_payment_gateway
from app.core.errors import GatewayError
from app.core.security import create_access_token
from app.models.plan import PricingPlan
from app.models.user import User


class FakeGateway:
    """In-memory payment processor port. Records every call; `fail_on` makes a method raise."""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.fail_on: dict[str, str] = {}
        self._seq = 0

    def _record(self, name: str, /, **kwargs) -> str:
        if name in self.fail_on:
            raise GatewayError(self.fail_on[name])
        self.calls.append((name, kwargs))
        self._seq += 1
        return str(self._seq)

    def calls_to(self, name: str) -> list[dict]:
        return [kw for n, kw in self.calls if n == name]

    async def create_payment_intent(
        self, amount_cents, currency, metadata, destination_account=None, fee_amount_cents=None
    ):
        n = self._record(
            "create_payment_intent",
            amount_cents=amount_cents,
            currency=currency,
            metadata=dict(metadata),
            destination_account=destination_account,
            fee_amount_cents=fee_amount_cents,
        )
        return f"pi_{n}_secret"

    async def create_customer(self, email, name):
        return f"cus_{self._record('create_customer', email=email, name=name)}"

    async def create_subscription(
        self, customer_id, price_id, metadata, destination_account=None, fee_percent=None
    ):
        n = self._record(
            "create_subscription",
            customer_id=customer_id,
            price_id=price_id,
            metadata=dict(metadata),
            destination_account=destination_account,
            fee_percent=fee_percent,
        )
        return f"sub_pi_{n}_secret"

    async def cancel_subscription(self, subscription_id):
        self._record("cancel_subscription", subscription_id=subscription_id)

    async def create_product(self, name, description):
        return f"prod_{self._record('create_product', name=name, description=description)}"

    async def create_price(self, product_id, amount_cents, currency, interval=None):
        n = self._record(
            "create_price",
            product_id=product_id,
            amount_cents=amount_cents,
            currency=currency,
            interval=interval,
        )
        return f"price_{n}"

    async def update_product(self, product_id, name, description):
        self._record("update_product", product_id=product_id, name=name, description=description)

    async def archive_product(self, product_id):
        self._record("archive_product", product_id=product_id)

    async def archive_price(self, price_id):
        self._record("archive_price", price_id=price_id)

    async def exchange_oauth_code(self, code):
        self._record("exchange_oauth_code", code=code)
        return "acct_connected"

    async def create_login_link(self, account_id):
        self._record("create_login_link", account_id=account_id)
        return f"https://connect.stripe.com/express/{account_id}"

    def construct_webhook_event(self, payload, signature):
        if "construct_webhook_event" in self.fail_on:
            raise GatewayError(self.fail_on["construct_webhook_event"])
        return json.loads(payload)


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        connect_args={"timeout": 30},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    async def _make(
        *,
        role: str = "user",
        connect_account_id: Optional[str] = None,
        connect_status: Optional[str] = None,
        full_name: str = "Test User",
    ) -> User:
        counter["n"] += 1
        user = User(
            email=f"user{counter['n']}@example.com",
            password_hash="x",
            full_name=full_name,
            role=role,
            connect_account_id=connect_account_id,
            connect_status=connect_status,
            is_active=True,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_plan(db):
    async def _make(type: str, config: dict[str, Any], **extra) -> PricingPlan:
        plan = PricingPlan(
            name=extra.pop("name", f"{type} plan"),
            description="",
            type=type,
            config=config,
            values=[],
            is_active=extra.pop("is_active", True),
            sold_count=extra.pop("sold_count", 0),
            **extra,
        )
        db.add(plan)
        await db.commit()
        await db.refresh(plan)
        return plan

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id=user.id, role=user.role)}"}

    return _headers


@pytest.fixture
async def client(session_factory, gateway):
    from app.main import app

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
