"""Tests for supporter billing."""
import httpx
import pytest

from agentkit.config import get_settings
from hub.core.models import PlanEnum, Subscription
from hub.resilience import BillingError, NotAuthenticatedError
from hub.services import billing


def mock_client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def stripe_key(monkeypatch):
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setenv("APP_BASE_URL", "https://app.example.com")
    get_settings.cache_clear()


class TestSubscription:

    def test_anonymous_is_free(self, session):
        assert billing.get_subscription(session, None) == {"plan": "free", "status": "none"}

    def test_local_active_subscription(self, session, user):
        billing.activate_subscription(session, user.id, source="dev")
        result = billing.get_subscription(session, user.id)
        assert result["plan"] == "supporter"
        assert result["status"] == "active"
        assert result["activatedAt"] is not None

    def test_polar_state_wins(self, session, user):
        def handler(request):
            assert request.url.path == "/v1/subscriptions/"
            assert request.url.params["external_customer_id"] == user.id
            return httpx.Response(200, json={"items": [{"status": "active", "current_period_start": "2024-01-01"}]})

        polar = billing.PolarClient("token", http_client=mock_client(handler))
        result = billing.get_subscription(session, user.id, polar=polar)
        assert result["plan"] == "supporter"
        assert result["activatedAt"] == "2024-01-01"

    def test_polar_failure_falls_back_to_local(self, session, user):
        polar = billing.PolarClient("token", http_client=mock_client(lambda request: httpx.Response(500)))
        assert billing.get_subscription(session, user.id, polar=polar)["plan"] == "free"


class TestCheckout:

    def test_dev_mode_activates_immediately(self, session, user):
        result = billing.create_checkout_session(session, user.id, return_url="http://localhost:5173")
        assert result == {"url": "http://localhost:5173/?billing=upgraded"}
        subscription = session.query(Subscription).filter_by(user_id=user.id).one()
        assert subscription.plan == PlanEnum.SUPPORTER
        assert subscription.source == "dev"

    def test_requires_user(self, session):
        with pytest.raises(NotAuthenticatedError):
            billing.create_checkout_session(session, None)

    def test_stripe_form_with_inline_price(self):
        form = dict(billing.build_stripe_form("u1", "https://s", "https://c", None))
        assert form["metadata[userId]"] == "u1"
        assert form["line_items[0][price_data][unit_amount]"] == "100"
        assert form["line_items[0][price_data][product_data][name]"] == "Nodebench Supporter Unlock"

    def test_stripe_form_with_price_id(self):
        form = dict(billing.build_stripe_form("u1", "https://s", "https://c", "price_1"))
        assert form["line_items[0][price]"] == "price_1"
        assert "line_items[0][price_data][currency]" not in form

    def test_stripe_checkout(self, session, user, stripe_key):
        def handler(request):
            assert request.headers["Authorization"] == "Bearer sk_test_123"
            body = request.content.decode()
            assert "success_url=https%3A%2F%2Fapp.example.com%2Fapi%2Fbilling%2Fsuccess" in body
            return httpx.Response(200, json={"url": "https://checkout.stripe.com/c/pay/cs_1"})

        result = billing.create_checkout_session(session, user.id, http_client=mock_client(handler))
        assert result == {"url": "https://checkout.stripe.com/c/pay/cs_1"}

    def test_stripe_error_raises(self, session, user, stripe_key):
        client = mock_client(lambda request: httpx.Response(400, text="bad price"))
        with pytest.raises(BillingError, match="Stripe error: bad price"):
            billing.create_checkout_session(session, user.id, http_client=client)

    def test_polar_failure_falls_back_to_dev(self, session, user, monkeypatch):
        monkeypatch.setenv("POLAR_PRODUCT_ID_SUPPORTER", "prod_1")
        get_settings.cache_clear()
        polar = billing.PolarClient("token", http_client=mock_client(lambda request: httpx.Response(200, json={})))

        result = billing.create_polar_checkout(session, user.id, "https://app/success", polar=polar)
        assert result["url"].endswith("/?billing=upgraded")

    def test_complete_checkout_activates(self, session, user, stripe_key):
        def handler(request):
            assert request.url.path.endswith("/cs_1")
            return httpx.Response(200, json={"payment_status": "paid", "metadata": {"userId": user.id}, "payment_intent": "pi_1"})

        assert billing.complete_checkout(session, "cs_1", http_client=mock_client(handler)) is True
        subscription = session.query(Subscription).filter_by(user_id=user.id).one()
        assert subscription.stripe_payment_intent_id == "pi_1"

    def test_complete_checkout_unpaid(self, session, user, stripe_key):
        client = mock_client(lambda request: httpx.Response(200, json={"payment_status": "unpaid", "metadata": {"userId": user.id}}))
        assert billing.complete_checkout(session, "cs_1", http_client=client) is False

    def test_complete_checkout_without_stripe(self, session):
        assert billing.complete_checkout(session, "cs_1") is False
