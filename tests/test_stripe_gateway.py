from types import SimpleNamespace

import pytest
import stripe

from app.core.errors import GatewayError
from app.integrations.stripe_gateway import STANDARD_DASHBOARD_URL, StripeGateway


@pytest.fixture
def gateway():
    return StripeGateway(api_key="sk_test_dummy")


async def test_subscription_secret_comes_from_invoice_confirmation_secret(gateway, monkeypatch):
    seen = {}

    def fake_create(**params):
        seen.update(params)
        invoice = SimpleNamespace(confirmation_secret=SimpleNamespace(client_secret="pi_1_secret_x"))
        return SimpleNamespace(id="sub_1", latest_invoice=invoice)

    monkeypatch.setattr(stripe.Subscription, "create", fake_create)

    secret = await gateway.create_subscription(
        "cus_1", "price_1", {"plan_id": "3"}, destination_account="acct_1", fee_percent=10
    )

    assert secret == "pi_1_secret_x"
    assert seen["expand"] == ["latest_invoice.confirmation_secret"]
    assert seen["transfer_data"] == {"destination": "acct_1"}
    assert seen["application_fee_percent"] == 10.0
    assert seen["api_key"] == "sk_test_dummy"


async def test_trial_subscription_has_nothing_to_confirm(gateway, monkeypatch):
    invoice = SimpleNamespace(confirmation_secret=None)
    monkeypatch.setattr(
        stripe.Subscription, "create", lambda **params: SimpleNamespace(id="sub_2", latest_invoice=invoice)
    )

    assert await gateway.create_subscription("cus_1", "price_1", {}) is None


async def test_processor_error_message_is_passed_through(gateway, monkeypatch):
    def declined(**params):
        raise stripe.StripeError("Your card was declined.")

    monkeypatch.setattr(stripe.PaymentIntent, "create", declined)

    with pytest.raises(GatewayError) as exc:
        await gateway.create_payment_intent(500, "usd", {})
    assert "Your card was declined." in exc.value.message


async def test_login_link_for_express_account(gateway, monkeypatch):
    monkeypatch.setattr(stripe.Account, "retrieve", lambda account_id, **params: SimpleNamespace(type="express"))
    monkeypatch.setattr(
        stripe.Account,
        "create_login_link",
        lambda account_id, **params: SimpleNamespace(url=f"https://connect.stripe.com/express/{account_id}"),
    )

    assert await gateway.create_login_link("acct_9") == "https://connect.stripe.com/express/acct_9"


async def test_standard_account_goes_to_the_dashboard(gateway, monkeypatch):
    monkeypatch.setattr(stripe.Account, "retrieve", lambda account_id, **params: SimpleNamespace(type="standard"))

    def unexpected(*args, **params):
        raise AssertionError("standard accounts have no login links")

    monkeypatch.setattr(stripe.Account, "create_login_link", unexpected)

    assert await gateway.create_login_link("acct_std") == STANDARD_DASHBOARD_URL
