"""
Billing Service
===============

One-time "supporter" unlock with a provider fallback chain:

1. Polar checkout link, when ``POLAR_PRODUCT_ID_SUPPORTER`` is configured
2. Stripe Checkout Session, when ``STRIPE_SECRET_KEY`` is configured
3. Dev mode: the subscription is activated immediately

A Polar failure is logged and falls through to Stripe/dev. Stripe failures
raise BillingError with the provider's message.
"""

import logging

import httpx
from sqlalchemy.orm import Session

from agentkit.config import get_settings
from hub.core.models import PlanEnum, Subscription, SubscriptionStatusEnum, to_ms, utcnow
from hub.resilience import BillingError, require_user

logger = logging.getLogger(__name__)

STRIPE_CHECKOUT_URL = "https://api.stripe.com/v1/checkout/sessions"
POLAR_API_URLS = {
    "production": "https://api.polar.sh/v1",
    "sandbox": "https://sandbox-api.polar.sh/v1",
}
SUPPORTER_PRODUCT_NAME = "Nodebench Supporter Unlock"
SUPPORTER_UNIT_AMOUNT_CENTS = 100
HTTP_TIMEOUT = httpx.Timeout(30.0)


def _free() -> dict:
    return {"plan": PlanEnum.FREE.value, "status": SubscriptionStatusEnum.NONE.value}


# =============================================================================
# POLAR
# =============================================================================


class PolarClient:
    """Thin REST client for the Polar checkout and subscription endpoints."""

    def __init__(self, access_token: str, server: str = "production", http_client: httpx.Client | None = None):
        self.access_token = access_token
        self.base_url = POLAR_API_URLS.get(server, POLAR_API_URLS["production"])
        self._http = http_client

    def _client(self) -> httpx.Client:
        if self._http is None:
            self._http = httpx.Client(timeout=HTTP_TIMEOUT)
        return self._http

    @property
    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.access_token}", "Accept": "application/json"}

    def create_checkout(self, product_id: str, success_url: str, user_id: str) -> str:
        response = self._client().post(
            f"{self.base_url}/checkouts/",
            headers=self._headers,
            json={"products": [product_id], "success_url": success_url, "external_customer_id": user_id},
        )
        response.raise_for_status()
        url = response.json().get("url")
        if not url:
            raise BillingError("Polar did not return a checkout URL")
        return url

    def get_current_subscription(self, user_id: str) -> dict | None:
        response = self._client().get(
            f"{self.base_url}/subscriptions/",
            headers=self._headers,
            params={"external_customer_id": user_id, "active": "true", "limit": 1},
        )
        response.raise_for_status()
        items = response.json().get("items") or []
        return items[0] if items else None


def get_polar_client(http_client: httpx.Client | None = None) -> PolarClient | None:
    settings = get_settings()
    if not settings.POLAR_ACCESS_TOKEN:
        return None
    return PolarClient(settings.POLAR_ACCESS_TOKEN, settings.POLAR_SERVER, http_client=http_client)


# =============================================================================
# SUBSCRIPTION STATE
# =============================================================================


def get_subscription(session: Session, user_id: str | None, polar: PolarClient | None = None) -> dict:
    """Current plan for the user, preferring Polar state over the local table."""
    if not user_id:
        return _free()

    polar = polar or get_polar_client()
    if polar is not None:
        try:
            current = polar.get_current_subscription(user_id)
            if current and current.get("status") == "active":
                return {
                    "plan": PlanEnum.SUPPORTER.value,
                    "status": SubscriptionStatusEnum.ACTIVE.value,
                    "activatedAt": current.get("current_period_start"),
                    "updatedAt": current.get("current_period_end"),
                }
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Polar subscription lookup failed, using local record: {e}")

    subscription = (
        session.query(Subscription)
        .filter(Subscription.user_id == user_id, Subscription.status == SubscriptionStatusEnum.ACTIVE)
        .first()
    )
    if subscription is None:
        return _free()
    return {
        "plan": (subscription.plan or PlanEnum.FREE).value,
        "status": SubscriptionStatusEnum.ACTIVE.value,
        "activatedAt": to_ms(subscription.created_at),
        "updatedAt": to_ms(subscription.updated_at),
    }


def activate_subscription(
    session: Session,
    user_id: str,
    source: str,
    session_id: str | None = None,
    payment_intent_id: str | None = None,
) -> None:
    """Upsert the user's subscription to supporter/active."""
    now = utcnow()
    subscription = session.query(Subscription).filter(Subscription.user_id == user_id).first()
    if subscription is None:
        subscription = Subscription(user_id=user_id, created_at=now)
        session.add(subscription)

    subscription.plan = PlanEnum.SUPPORTER
    subscription.status = SubscriptionStatusEnum.ACTIVE
    subscription.source = source
    subscription.updated_at = now
    subscription.stripe_session_id = session_id
    subscription.stripe_payment_intent_id = payment_intent_id
    session.flush()
    logger.info(f"Activated supporter plan for user {user_id} via {source}")


# =============================================================================
# CHECKOUT
# =============================================================================


def _billing_urls(origin: str) -> tuple[str, str, str]:
    success = f"{origin}/api/billing/success?session_id={{CHECKOUT_SESSION_ID}}"
    cancel = f"{origin}/?billing=canceled"
    upgraded = f"{origin}/?billing=upgraded"
    return success, cancel, upgraded


def build_stripe_form(user_id: str, success_url: str, cancel_url: str, price_id: str | None) -> list[tuple[str, str]]:
    """Form fields for the Stripe Checkout Session request."""
    form = [
        ("mode", "payment"),
        ("payment_method_types[]", "card"),
        ("success_url", success_url),
        ("cancel_url", cancel_url),
        ("metadata[userId]", str(user_id)),
    ]
    if price_id:
        form += [
            ("line_items[0][price]", price_id),
            ("line_items[0][quantity]", "1"),
        ]
    else:
        form += [
            ("line_items[0][price_data][currency]", "usd"),
            ("line_items[0][price_data][product_data][name]", SUPPORTER_PRODUCT_NAME),
            ("line_items[0][price_data][unit_amount]", str(SUPPORTER_UNIT_AMOUNT_CENTS)),
            ("line_items[0][quantity]", "1"),
        ]
    return form


def _stripe_or_dev_checkout(
    session: Session,
    user_id: str,
    origin: str,
    http_client: httpx.Client | None = None,
) -> dict:
    settings = get_settings()
    success_url, cancel_url, upgraded_url = _billing_urls(origin)

    if not settings.STRIPE_SECRET_KEY:
        activate_subscription(session, user_id, source="dev")
        return {"url": upgraded_url}

    form = build_stripe_form(user_id, success_url, cancel_url, settings.STRIPE_PRICE_ID)
    client = http_client or httpx.Client(timeout=HTTP_TIMEOUT)
    try:
        response = client.post(
            STRIPE_CHECKOUT_URL,
            headers={"Authorization": f"Bearer {settings.STRIPE_SECRET_KEY}"},
            data=form,
        )
    except httpx.HTTPError as e:
        raise BillingError(f"Stripe error: {e}") from e
    finally:
        if http_client is None:
            client.close()

    if not response.is_success:
        raise BillingError(f"Stripe error: {response.text}")
    url = response.json().get("url")
    if not url:
        raise BillingError("Stripe did not return a checkout URL")
    logger.info(f"Created Stripe checkout session for user {user_id}")
    return {"url": url}


def create_polar_checkout(
    session: Session,
    user_id: str | None,
    success_url: str,
    polar: PolarClient | None = None,
    http_client: httpx.Client | None = None,
) -> dict:
    """Polar checkout when configured, otherwise (or on Polar failure) Stripe/dev."""
    user_id = require_user(user_id)
    settings = get_settings()
    origin = settings.APP_BASE_URL or ""

    if settings.POLAR_PRODUCT_ID_SUPPORTER:
        polar = polar or get_polar_client()
        if polar is not None:
            try:
                return {"url": polar.create_checkout(settings.POLAR_PRODUCT_ID_SUPPORTER, success_url, user_id)}
            except (httpx.HTTPError, BillingError, ValueError) as e:
                logger.warning(f"Polar checkout failed, falling back to Stripe/dev: {e}")

    return _stripe_or_dev_checkout(session, user_id, origin, http_client)


def create_checkout_session(
    session: Session,
    user_id: str | None,
    return_url: str | None = None,
    http_client: httpx.Client | None = None,
) -> dict:
    """Stripe checkout (or dev activation) returning to ``return_url`` or APP_BASE_URL."""
    user_id = require_user(user_id)
    origin = return_url or get_settings().APP_BASE_URL or ""
    return _stripe_or_dev_checkout(session, user_id, origin, http_client)


def complete_checkout(session: Session, checkout_session_id: str, http_client: httpx.Client | None = None) -> bool:
    """Activate the subscription behind a paid Stripe Checkout Session."""
    settings = get_settings()
    if not settings.STRIPE_SECRET_KEY:
        return False

    client = http_client or httpx.Client(timeout=HTTP_TIMEOUT)
    try:
        response = client.get(
            f"{STRIPE_CHECKOUT_URL}/{checkout_session_id}",
            headers={"Authorization": f"Bearer {settings.STRIPE_SECRET_KEY}"},
        )
    except httpx.HTTPError as e:
        raise BillingError(f"Stripe error: {e}") from e
    finally:
        if http_client is None:
            client.close()

    if not response.is_success:
        raise BillingError(f"Stripe error: {response.text}")

    checkout = response.json()
    user_id = (checkout.get("metadata") or {}).get("userId")
    if checkout.get("payment_status") != "paid" or not user_id:
        logger.info(f"Checkout session {checkout_session_id} not paid yet")
        return False

    activate_subscription(
        session,
        user_id,
        source="stripe",
        session_id=checkout_session_id,
        payment_intent_id=checkout.get("payment_intent"),
    )
    return True
