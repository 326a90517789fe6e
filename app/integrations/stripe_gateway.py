from __future__ import annotations

import json
import logging
from typing import Any, Optional

import stripe
from fastapi.concurrency import run_in_threadpool

from app.core.config import settings
from app.core.errors import GatewayError

logger = logging.getLogger(__name__)

STANDARD_DASHBOARD_URL = "https://dashboard.stripe.com/"


class StripeGateway:
    """Payment processor port backed by the stripe SDK.

    Amounts are integer cents. Every processor failure surfaces as GatewayError
    carrying the processor's own message; nothing is retried here.
    """

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        if not self.api_key:
            logger.warning("STRIPE_SECRET_KEY is empty; processor calls will fail")

    async def _call(self, fn, *args, **params) -> Any:
        try:
            return await run_in_threadpool(fn, *args, api_key=self.api_key, **params)
        except stripe.StripeError as e:
            msg = e.user_message or str(e)
            logger.error("stripe %s failed: %s", getattr(fn, "__qualname__", fn), msg)
            raise GatewayError(msg) from e

    # -------------------------
    # Payments
    # -------------------------
    async def create_payment_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        destination_account: Optional[str] = None,
        fee_amount_cents: Optional[int] = None,
    ) -> str:
        params: dict[str, Any] = {
            "amount": int(amount_cents),
            "currency": currency.lower(),
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
        }
        if destination_account:
            params["transfer_data"] = {"destination": destination_account}
            if fee_amount_cents:
                params["application_fee_amount"] = int(fee_amount_cents)

        pi = await self._call(stripe.PaymentIntent.create, **params)
        logger.info("created payment intent %s amount=%s %s", pi.id, amount_cents, currency)
        return pi.client_secret

    async def create_customer(self, email: str, name: str) -> str:
        c = await self._call(stripe.Customer.create, email=email, name=name)
        return c.id

    async def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        metadata: dict[str, str],
        destination_account: Optional[str] = None,
        fee_percent: Optional[float] = None,
    ) -> Optional[str]:
        params: dict[str, Any] = {
            "customer": customer_id,
            "items": [{"price": price_id}],
            "payment_behavior": "default_incomplete",
            "metadata": metadata,
            "expand": ["latest_invoice.confirmation_secret"],
        }
        if destination_account:
            params["transfer_data"] = {"destination": destination_account}
            if fee_percent:
                params["application_fee_percent"] = float(fee_percent)

        sub = await self._call(stripe.Subscription.create, **params)
        logger.info("created subscription %s for customer %s", sub.id, customer_id)

        invoice = sub.latest_invoice
        secret = getattr(invoice, "confirmation_secret", None) if invoice else None
        if not secret:
            # trial or zero-amount first invoice: nothing to confirm client-side
            return None
        return secret.client_secret

    async def cancel_subscription(self, subscription_id: str) -> None:
        await self._call(stripe.Subscription.cancel, subscription_id)

    # -------------------------
    # Catalog mirroring
    # -------------------------
    async def create_product(self, name: str, description: str) -> str:
        params: dict[str, Any] = {"name": name}
        if description:
            params["description"] = description
        prod = await self._call(stripe.Product.create, **params)
        return prod.id

    async def create_price(
        self,
        product_id: str,
        amount_cents: int,
        currency: str,
        interval: Optional[str] = None,
    ) -> str:
        params: dict[str, Any] = {
            "product": product_id,
            "unit_amount": int(amount_cents),
            "currency": currency.lower(),
        }
        if interval:
            params["recurring"] = {"interval": interval}
        price = await self._call(stripe.Price.create, **params)
        return price.id

    async def update_product(self, product_id: str, name: str, description: str) -> None:
        params: dict[str, Any] = {"name": name}
        if description:
            params["description"] = description
        await self._call(stripe.Product.modify, product_id, **params)

    async def archive_product(self, product_id: str) -> None:
        await self._call(stripe.Product.modify, product_id, active=False)

    async def archive_price(self, price_id: str) -> None:
        await self._call(stripe.Price.modify, price_id, active=False)

    # -------------------------
    # Connect + webhooks
    # -------------------------
    async def exchange_oauth_code(self, code: str) -> str:
        token = await self._call(stripe.OAuth.token, grant_type="authorization_code", code=code)
        return token["stripe_user_id"]

    async def create_login_link(self, account_id: str) -> str:
        """Dashboard URL for a connected account. Standard accounts sign in to Stripe directly."""
        account = await self._call(stripe.Account.retrieve, account_id)
        if account.type == "standard":
            return STANDARD_DASHBOARD_URL
        link = await self._call(stripe.Account.create_login_link, account_id)
        return link.url

    def construct_webhook_event(self, payload: bytes, signature: str | None) -> dict:
        """Verify the signature and return the event as a plain dict."""
        try:
            stripe.Webhook.construct_event(payload, signature or "", settings.STRIPE_WEBHOOK_SECRET)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise GatewayError(f"Invalid webhook payload: {e}") from e
        return json.loads(payload)
