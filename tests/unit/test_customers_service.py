import pytest

from storefront.customers import service as customers_service
from storefront.customers.service import NoBillingAccount, create_billing_portal, portal_return_url


@pytest.fixture(autouse=True)
def _site(monkeypatch):
    monkeypatch.setattr(customers_service, "SITE_URL", "https://shop.test")
    monkeypatch.setattr(customers_service, "STRIPE_BILLING_PORTAL_RETURN_URL", "")


def test_portal_for_known_customer(store, fake_stripe):
    store.profiles["u1"] = {"id": "u1", "email": "member@example.com", "stripe_customer_id": "cus_known"}

    result = create_billing_portal("u1", "/account/subscriptions")

    assert result == {"url": "https://billing.stripe.test/p/session/cus_known"}
    assert fake_stripe.portal_sessions[0]["customer"] == "cus_known"
    assert fake_stripe.portal_sessions[0]["return_url"] == "https://shop.test/account/subscriptions"


def test_portal_without_customer(store, fake_stripe):
    store.profiles["u2"] = {"id": "u2", "email": "new@example.com", "stripe_customer_id": None}

    with pytest.raises(NoBillingAccount):
        create_billing_portal("u2")
    with pytest.raises(NoBillingAccount):
        create_billing_portal("missing")
    assert fake_stripe.portal_sessions == []


@pytest.mark.parametrize("path", [None, "", "https://evil.test/", "//evil.test", "account", "/\\evil.test"])
def test_return_url_stays_on_site(path):
    assert portal_return_url(path) == "https://shop.test/account"


def test_configured_return_url_wins(monkeypatch):
    monkeypatch.setattr(customers_service, "STRIPE_BILLING_PORTAL_RETURN_URL", "https://shop.test/billing-done")
    assert portal_return_url("/elsewhere") == "https://shop.test/billing-done"
