import pytest
import stripe

# `admin_client` contourne l'authentification (require_admin surchargé)


def test_admin_routes_require_authentication(client):
    assert client.get("/admin/api/orders").status_code == 401
    assert client.get("/admin/api/sync-status").status_code == 401
    assert client.post("/admin/api/orders/x/refund").status_code == 401


def test_admin_responses_are_not_cached(admin_client, store):
    res = admin_client.get("/admin/api/orders/stats")
    assert res.headers["Cache-Control"].startswith("no-store")


class TestSyncAdmin:
    def test_sync_status(self, admin_client, store, fake_stripe, monkeypatch):
        monkeypatch.setattr("storefront.sync.service.STRIPE_CURRENCY", "usd")
        product = store.add_product()
        store.add_variant(product["id"], stripe_price_id=None)

        res = admin_client.get("/admin/api/sync-status")
        assert res.status_code == 200
        body = res.json()
        assert body["healthy"] is False
        assert body["issues"][0]["type"] == "missing_in_provider"

    def test_sync_status_stripe_down(self, admin_client, store, fake_stripe, monkeypatch):
        def _down(**kwargs):
            raise stripe.APIConnectionError("network down")

        monkeypatch.setattr("storefront.payments.stripe_client.list_prices", _down)
        res = admin_client.get("/admin/api/sync-status")
        assert res.status_code == 502
        assert res.json()["error"] == "Failed to check sync status"

    def test_sync_product(self, admin_client, store, fake_stripe, monkeypatch):
        monkeypatch.setattr("storefront.sync.service.STRIPE_CURRENCY", "usd")
        product = store.add_product()
        store.add_variant(product["id"], stripe_price_id=None)

        res = admin_client.post(f"/admin/api/products/{product['id']}/sync")
        assert res.status_code == 200
        assert res.json()["productAction"] == "created"

    def test_sync_unknown_product(self, admin_client, store, fake_stripe):
        assert admin_client.post("/admin/api/products/missing/sync").status_code == 404

    def test_sync_all_partial_failure(self, admin_client, store, fake_stripe, monkeypatch):
        monkeypatch.setattr("storefront.sync.service.STRIPE_CURRENCY", "usd")
        good = store.add_product("Good")
        store.add_variant(good["id"], stripe_price_id=None)
        bad = store.add_product("Bad")
        store.add_variant(bad["id"], stripe_price_id=None, price_usd="abc")

        res = admin_client.post("/admin/api/sync")
        assert res.status_code == 207
        assert [f["productId"] for f in res.json()["failures"]] == [bad["id"]]


class TestOrdersAdmin:
    def test_list_and_search(self, admin_client, store):
        store.add_order(customer_email="alice@example.com")
        store.add_order(customer_email="bob@example.com")

        res = admin_client.get("/admin/api/orders", params={"q": "alice"})
        assert res.status_code == 200
        assert [o["customer_email"] for o in res.json()["items"]] == ["alice@example.com"]

    def test_list_invalid_status(self, admin_client, store):
        res = admin_client.get("/admin/api/orders", params={"status": "shipped"})
        assert res.status_code == 400
        assert res.json() == {"success": False, "error": "Invalid order status"}

    def test_stats(self, admin_client, store):
        store.add_order(amount_total=1000)
        store.add_order(amount_total=3000, status="completed")

        res = admin_client.get("/admin/api/orders/stats")
        assert res.json()["averageOrderValue"] == 2000
        assert res.json()["totalRevenue"] == 4000

    def test_get_order(self, admin_client, store):
        order = store.add_order()
        assert admin_client.get(f"/admin/api/orders/{order['id']}").json()["id"] == order["id"]
        assert admin_client.get("/admin/api/orders/missing").status_code == 404

    def test_update_status(self, admin_client, store):
        order = store.add_order(status="processing")

        res = admin_client.patch(f"/admin/api/orders/{order['id']}/status", json={"status": "completed"})
        assert res.status_code == 200
        assert res.json()["status"] == "completed"

        same = admin_client.patch(f"/admin/api/orders/{order['id']}/status", json={"status": "completed"})
        assert same.status_code == 400
        assert same.json()["error"] == "Order is already completed"

    def test_full_refund(self, admin_client, store, fake_stripe):
        order = store.add_order(amount_total=5000)

        res = admin_client.post(f"/admin/api/orders/{order['id']}/refund")
        assert res.status_code == 200
        assert res.json()["message"] == "Full refund processed successfully"
        assert store.orders[order["id"]]["status"] == "refunded"

    def test_partial_refund(self, admin_client, store, fake_stripe):
        order = store.add_order(amount_total=5000)

        res = admin_client.post(f"/admin/api/orders/{order['id']}/refund", json={"amount": 1000})
        assert res.json()["message"] == "Partial refund processed successfully"
        assert store.orders[order["id"]]["payment_status"] == "partial_refund"

    @pytest.mark.parametrize("payload", [{"amount": 6000}, {"amount": 0}, {"amount": -1}])
    def test_refund_bounds(self, admin_client, store, fake_stripe, payload):
        order = store.add_order(amount_total=5000)

        res = admin_client.post(f"/admin/api/orders/{order['id']}/refund", json=payload)
        assert res.status_code == 400
        assert res.json()["success"] is False
        assert fake_stripe.refunds == []

    def test_refund_amount_must_be_integer(self, admin_client, store, fake_stripe):
        order = store.add_order(amount_total=5000)
        res = admin_client.post(f"/admin/api/orders/{order['id']}/refund", json={"amount": "10"})
        assert res.status_code == 422
        assert fake_stripe.refunds == []

    def test_refund_stripe_refusal(self, admin_client, store, fake_stripe):
        fake_stripe.refund_error = stripe.InvalidRequestError("Charge ch_1 has already been refunded.", "charge")
        order = store.add_order()

        res = admin_client.post(f"/admin/api/orders/{order['id']}/refund")
        assert res.status_code == 502
        assert "already been refunded" in res.json()["error"]


class TestPromotionCodesAdmin:
    def test_create_and_list(self, admin_client, fake_stripe, monkeypatch):
        monkeypatch.setattr("storefront.discounts.service.STRIPE_CURRENCY", "usd")

        created = admin_client.post("/admin/api/promotion-codes", json={"code": "spring15", "percent_off": 15})
        assert created.status_code == 201
        assert created.json()["code"] == "SPRING15"

        listed = admin_client.get("/admin/api/promotion-codes")
        assert [p["code"] for p in listed.json()["items"]] == ["SPRING15"]

    def test_create_rejects_ambiguous_discount(self, admin_client, fake_stripe):
        res = admin_client.post("/admin/api/promotion-codes", json={"code": "X", "percent_off": 10, "amount_off": 100})
        assert res.status_code == 400
        assert fake_stripe.coupons == {}


class TestHealth:
    def test_root(self, client):
        assert client.get("/health").json() == {"ok": True}

    def test_supabase(self, client, monkeypatch):
        monkeypatch.setattr("storefront.health.router.health_supabase_info", lambda: {"connect_ok": False, "tables": {}})
        assert client.get("/health/supabase").status_code == 503

        monkeypatch.setattr("storefront.health.router.health_supabase_info", lambda: {"connect_ok": True, "tables": {}})
        assert client.get("/health/supabase").status_code == 200

    def test_rate_limit(self, client):
        body = client.get("/health/rate-limit").json()
        assert set(body) >= {"enabled", "ready", "backend"}
