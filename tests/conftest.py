import itertools
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Optional, Tuple

# Avant l'import de l'app: pas de Redis en tests
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

import pytest
import stripe
from fastapi.testclient import TestClient

from storefront.app_setup.factory import create_app
from storefront.payments import stripe_client
from storefront.utils.feature_flags import DEFAULT_FLAGS, FeatureFlagCache, get_feature_flags
from storefront.utils.security import optional_user, require_admin

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)
        elif "tests/functional/" in nodeid:
            item.add_marker(pytest.mark.functional)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class FakeStore:
    """Tables Supabase en mémoire, branchées à la place des fonctions des repositories."""

    def __init__(self):
        self.products: Dict[str, Dict[str, Any]] = {}
        self.variants: Dict[str, Dict[str, Any]] = {}
        self.reservations: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.email_queue: List[Dict[str, Any]] = []
        self.webhook_failures: List[Dict[str, Any]] = []
        self.discounts: Dict[str, Dict[str, Any]] = {}
        self.redemptions = set()
        self.flags: Dict[str, Any] = dict(DEFAULT_FLAGS)
        self._seq = itertools.count(1)

    # --- seed ---

    def add_product(self, name: str = "Longevity Blend", **fields) -> Dict[str, Any]:
        product = {
            "id": str(uuid.uuid4()),
            "name": name,
            "slug": name.lower().replace(" ", "-"),
            "is_active": True,
            "published_at": _now_iso(),
            "stripe_product_id": None,
        }
        product.update(fields)
        self.products[product["id"]] = product
        return product

    def add_variant(self, product_id: str, **fields) -> Dict[str, Any]:
        variant = {
            "id": str(uuid.uuid4()),
            "product_id": product_id,
            "size_key": "30ct",
            "label": "30 capsules",
            "price_usd": "25.00",
            "billing_type": "one_time",
            "recurring_interval": None,
            "recurring_interval_count": 1,
            "stripe_price_id": f"price_test{next(self._seq):012d}",
            "stock_quantity": None,
            "track_inventory": False,
            "is_active": True,
            "is_default": False,
            "display_order": 0,
        }
        variant.update(fields)
        self.variants[variant["id"]] = variant
        return variant

    def add_order(self, **fields) -> Dict[str, Any]:
        order = {
            "id": str(uuid.uuid4()),
            "user_id": None,
            "stripe_session_id": f"cs_test_seed{next(self._seq)}",
            "stripe_customer_id": "cus_test_seed",
            "stripe_payment_intent_id": f"pi_test_seed{next(self._seq)}",
            "stripe_subscription_id": None,
            "customer_email": "buyer@example.com",
            "amount_total": 5000,
            "amount_subtotal": 5000,
            "currency": "usd",
            "status": "processing",
            "payment_status": "succeeded",
            "metadata": {},
            "created_at": _now_iso(),
        }
        order.update(fields)
        self.orders[order["id"]] = order
        return order

    def add_discount(self, code: str, **fields) -> Dict[str, Any]:
        discount = {
            "id": str(uuid.uuid4()),
            "code": code,
            "name": None,
            "is_active": True,
            "discount_type": "percent",
            "discount_percent": 10,
            "discount_amount_cents": None,
            "stripe_coupon_id": f"coupon_{code.lower()}",
            "starts_at": None,
            "expires_at": None,
            "max_redemptions": None,
            "times_redeemed": 0,
            "min_amount_cents": None,
            "first_time_only": False,
        }
        discount.update(fields)
        self.discounts[discount["id"]] = discount
        return discount

    def add_email(self, **fields) -> Dict[str, Any]:
        entry = {
            "id": str(uuid.uuid4()),
            "user_id": None,
            "to_email": "buyer@example.com",
            "email_type": "order_confirmation",
            "template_data": {"order_number": "ABCD1234", "total": 5000, "currency": "usd", "items": []},
            "dedupe_key": f"seed:{next(self._seq)}",
            "sent": False,
            "retry_count": 0,
            "error_message": None,
            "created_at": _now_iso(),
            "sent_at": None,
        }
        entry.update(fields)
        self.email_queue.append(entry)
        return entry

    # --- catalog.repository ---

    def _product_summary(self, product_id: str) -> Dict[str, Any]:
        product = self.products.get(product_id) or {}
        return {k: product.get(k) for k in ("id", "name", "slug", "is_active", "published_at", "stripe_product_id")}

    def get_variants_by_price_ids(self, price_ids) -> Dict[str, Dict[str, Any]]:
        wanted = {str(p) for p in price_ids if p}
        return {
            v["stripe_price_id"]: {**v, "products": self._product_summary(v["product_id"])}
            for v in self.variants.values()
            if v.get("stripe_price_id") in wanted
        }

    def _with_variants(self, product: Dict[str, Any]) -> Dict[str, Any]:
        variants = [dict(v) for v in self.variants.values() if v["product_id"] == product["id"]]
        return {**product, "product_variants": variants}

    def list_products_with_variants(self, active_only: bool = True) -> List[Dict[str, Any]]:
        return [
            self._with_variants(p)
            for p in self.products.values()
            if p.get("is_active") or not active_only
        ]

    def get_product_with_variants(self, product_id: str) -> Optional[Dict[str, Any]]:
        product = self.products.get(product_id)
        return self._with_variants(product) if product else None

    def set_product_stripe_id(self, product_id: str, stripe_product_id: str) -> None:
        self.products[product_id]["stripe_product_id"] = stripe_product_id

    def set_variant_stripe_price(self, variant_id: str, stripe_price_id: str) -> None:
        self.variants[variant_id]["stripe_price_id"] = stripe_price_id

    def reserve_inventory(self, session_id: str, variant_id: str, quantity: int) -> bool:
        # même sémantique que la RPC reserve_inventory
        if quantity <= 0:
            return False
        if (session_id, variant_id) in self.reservations:
            return True
        variant = self.variants.get(variant_id) or {}
        stock = variant.get("stock_quantity")
        if not variant.get("track_inventory") or stock is None or stock < quantity:
            return False
        variant["stock_quantity"] = stock - quantity
        self.reservations[(session_id, variant_id)] = {"quantity": quantity, "status": "reserved"}
        return True

    def release_inventory_reservations(self, session_id: str) -> int:
        count = 0
        for (sid, variant_id), res in self.reservations.items():
            if sid == session_id and res["status"] == "reserved":
                res["status"] = "released"
                variant = self.variants.get(variant_id)
                if variant and variant.get("stock_quantity") is not None:
                    variant["stock_quantity"] += res["quantity"]
                count += 1
        return count

    def commit_inventory_reservations(self, session_id: str) -> int:
        count = 0
        for (sid, _), res in self.reservations.items():
            if sid == session_id and res["status"] == "reserved":
                res["status"] = "committed"
                count += 1
        return count

    # --- customers.repository ---

    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.profiles.get(user_id)

    def get_stripe_customer_id(self, user_id: Optional[str]) -> Optional[str]:
        return (self.profiles.get(user_id) or {}).get("stripe_customer_id") if user_id else None

    def bind_stripe_customer(self, user_id: str, stripe_customer_id: str) -> None:
        profile = self.profiles.get(user_id)
        if profile is not None and not profile.get("stripe_customer_id"):
            profile["stripe_customer_id"] = stripe_customer_id

    def count_paid_orders(self, user_id: Optional[str] = None, email: Optional[str] = None) -> int:
        if not user_id and not email:
            return 0
        return sum(
            1 for o in self.orders.values()
            if o.get("payment_status") == "succeeded"
            and ((user_id and o.get("user_id") == user_id) or (not user_id and o.get("customer_email") == email))
        )

    # --- discounts.repository ---

    def get_discount_by_code(self, code: str) -> Optional[Dict[str, Any]]:
        for discount in self.discounts.values():
            if discount["code"].upper() == str(code).upper():
                return dict(discount)
        return None

    def redeem_discount(self, discount_id: str, session_id: str) -> bool:
        if (discount_id, session_id) in self.redemptions:
            return True
        discount = self.discounts[discount_id]
        limit = discount.get("max_redemptions")
        if limit is not None and discount["times_redeemed"] >= limit:
            return False
        self.redemptions.add((discount_id, session_id))
        discount["times_redeemed"] += 1
        return True

    # --- orders.repository ---

    def insert_order_if_absent(self, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if self.get_order_by_session(row["stripe_session_id"]):
            return None
        order = {"id": str(uuid.uuid4()), "created_at": _now_iso(), **row}
        self.orders[order["id"]] = order
        return dict(order)

    def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        order = self.orders.get(order_id)
        return dict(order) if order else None

    def get_order_by_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        for order in self.orders.values():
            if order.get("stripe_session_id") == session_id:
                return dict(order)
        return None

    def get_order_by_payment_intent(self, payment_intent_id: str) -> Optional[Dict[str, Any]]:
        for order in self.orders.values():
            if order.get("stripe_payment_intent_id") == payment_intent_id:
                return dict(order)
        return None

    def update_order(self, order_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        order = self.orders.get(order_id)
        if order is None:
            return None
        order.update(fields)
        return dict(order)

    def list_orders(self, *, status=None, payment_status=None, search=None,
                    start_date=None, end_date=None, limit=50, offset=0) -> List[Dict[str, Any]]:
        rows = list(self.orders.values())
        if status:
            rows = [o for o in rows if o.get("status") == status]
        if payment_status:
            rows = [o for o in rows if o.get("payment_status") == payment_status]
        if search:
            needle = search.lower()
            rows = [
                o for o in rows
                if needle in (o.get("customer_email") or "").lower() or needle in (o.get("stripe_session_id") or "").lower()
            ]
        rows.sort(key=lambda o: o.get("created_at") or "", reverse=True)
        return [dict(o) for o in rows[offset:offset + limit]]

    def fetch_order_totals(self) -> List[Dict[str, Any]]:
        return [{"amount_total": o.get("amount_total"), "status": o.get("status")} for o in self.orders.values()]

    # --- emails.repository ---

    def enqueue(self, *, to_email, email_type, template_data, dedupe_key, user_id=None) -> bool:
        if any(e["dedupe_key"] == dedupe_key for e in self.email_queue):
            return False
        self.add_email(
            to_email=to_email,
            email_type=email_type,
            template_data=template_data,
            dedupe_key=dedupe_key,
            user_id=user_id,
        )
        return True

    def fetch_pending(self, limit: int, max_retries: int) -> List[Dict[str, Any]]:
        pending = [e for e in self.email_queue if not e["sent"] and e["retry_count"] < max_retries]
        pending.sort(key=lambda e: e["created_at"])
        return [dict(e) for e in pending[:limit]]

    def _email(self, entry_id) -> Dict[str, Any]:
        return next(e for e in self.email_queue if e["id"] == entry_id)

    def mark_sent(self, entry_id) -> None:
        self._email(entry_id).update({"sent": True, "sent_at": _now_iso(), "error_message": None})

    def mark_failed(self, entry_id, retry_count: int, error_message: str) -> None:
        self._email(entry_id).update({"retry_count": retry_count, "error_message": error_message[:1000]})

    def emails_of_type(self, email_type: str) -> List[Dict[str, Any]]:
        return [e for e in self.email_queue if e["email_type"] == email_type]

    # --- webhooks.repository ---

    def record_failure(self, event_id, event_type, error, payload=None) -> None:
        self.webhook_failures.append({"event_id": event_id, "event_type": event_type, "error_message": error})

    def upsert_subscription(self, row: Dict[str, Any]) -> None:
        current = self.subscriptions.get(row["stripe_subscription_id"], {})
        self.subscriptions[row["stripe_subscription_id"]] = {**current, **row}

    def update_subscription(self, stripe_subscription_id: str, fields: Dict[str, Any]) -> None:
        if stripe_subscription_id in self.subscriptions:
            self.subscriptions[stripe_subscription_id].update(fields)

    def get_subscription(self, stripe_subscription_id: str) -> Optional[Dict[str, Any]]:
        return self.subscriptions.get(stripe_subscription_id)

    def get_profile_by_customer(self, stripe_customer_id: str) -> Optional[Dict[str, Any]]:
        for profile in self.profiles.values():
            if profile.get("stripe_customer_id") == stripe_customer_id:
                return {k: profile.get(k) for k in ("id", "email", "full_name")}
        return None


_REPOSITORY_FUNCTIONS = {
    "storefront.catalog.repository": (
        "get_variants_by_price_ids", "list_products_with_variants", "get_product_with_variants",
        "set_product_stripe_id", "set_variant_stripe_price", "reserve_inventory",
        "release_inventory_reservations", "commit_inventory_reservations",
    ),
    "storefront.customers.repository": (
        "get_profile", "get_stripe_customer_id", "bind_stripe_customer", "count_paid_orders",
    ),
    "storefront.discounts.repository": ("get_discount_by_code", "redeem_discount"),
    "storefront.orders.repository": (
        "insert_order_if_absent", "get_order", "get_order_by_session", "get_order_by_payment_intent",
        "update_order", "list_orders", "fetch_order_totals",
    ),
    "storefront.emails.repository": ("enqueue", "fetch_pending", "mark_sent", "mark_failed"),
    "storefront.webhooks.repository": (
        "record_failure", "upsert_subscription", "update_subscription", "get_subscription",
        "get_profile_by_customer",
    ),
}


class FakeStripe:
    """Compte Stripe en mémoire: sessions idempotentes, prix immuables, remboursements."""

    def __init__(self):
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.sessions_by_key: Dict[str, str] = {}
        self.session_calls: List[Dict[str, Any]] = []
        self.expired: List[str] = []
        self.prices: Dict[str, Dict[str, Any]] = {}
        self.products: Dict[str, Dict[str, Any]] = {}
        self.promotion_codes: Dict[str, Dict[str, Any]] = {}
        self.coupons: Dict[str, Dict[str, Any]] = {}
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.refunds: List[Dict[str, Any]] = []
        self.portal_sessions: List[Dict[str, Any]] = []
        self.refund_status = "succeeded"
        self.refund_error: Optional[Exception] = None
        self.session_error: Optional[Exception] = None
        self._seq = itertools.count(1)

    def add_price(self, price_id: str, unit_amount: int, *, product: str = "prod_test_default",
                  active: bool = True, currency: str = "usd", recurring=None, metadata=None) -> Dict[str, Any]:
        price = {
            "id": price_id,
            "unit_amount": unit_amount,
            "currency": currency,
            "active": active,
            "product": product,
            "recurring": recurring,
            "metadata": metadata or {},
        }
        self.prices[price_id] = price
        return price

    def price_variant(self, variant: Dict[str, Any], **overrides) -> Dict[str, Any]:
        """Prix Stripe conforme à une variante du store."""
        recurring = None
        if variant.get("billing_type") == "recurring":
            recurring = {"interval": variant.get("recurring_interval"), "interval_count": variant.get("recurring_interval_count") or 1}
        params = {"unit_amount": int(round(float(variant["price_usd"]) * 100)), "recurring": recurring}
        params.update(overrides)
        unit_amount = params.pop("unit_amount")
        return self.add_price(variant["stripe_price_id"], unit_amount, **params)

    # --- sessions ---

    def create_session(self, *, line_items, mode, success_url, cancel_url, metadata, idempotency_key,
                       customer=None, customer_email=None, discounts=None) -> Dict[str, Any]:
        call = {
            "line_items": line_items, "mode": mode, "metadata": metadata, "idempotency_key": idempotency_key,
            "customer": customer, "customer_email": customer_email, "discounts": discounts,
            "success_url": success_url, "cancel_url": cancel_url,
        }
        self.session_calls.append(call)
        if self.session_error is not None:
            raise self.session_error
        if idempotency_key in self.sessions_by_key:
            return dict(self.sessions[self.sessions_by_key[idempotency_key]])
        session_id = f"cs_test_{next(self._seq):06d}"
        amount = sum(
            int((self.prices.get(li["price"]) or {}).get("unit_amount") or 0) * int(li["quantity"])
            for li in line_items
        )
        session = {
            "id": session_id,
            "object": "checkout.session",
            "url": f"https://checkout.stripe.test/c/pay/{session_id}",
            "mode": mode,
            "status": "open",
            "payment_status": "unpaid",
            "metadata": dict(metadata),
            "customer": customer,
            "customer_email": customer_email,
            "customer_details": {"email": customer_email, "name": None},
            "amount_total": amount,
            "amount_subtotal": amount,
            "currency": "usd",
            "payment_intent": None,
            "subscription": None,
            "line_items": line_items,
        }
        self.sessions[session_id] = session
        self.sessions_by_key[idempotency_key] = session_id
        return dict(session)

    def get_session(self, session_id: str, expand=None) -> Dict[str, Any]:
        if session_id not in self.sessions:
            raise stripe.InvalidRequestError(f"No such checkout.session: '{session_id}'", "session")
        return dict(self.sessions[session_id])

    def expire_session(self, session_id: str) -> Dict[str, Any]:
        self.expired.append(session_id)
        if session_id in self.sessions:
            self.sessions[session_id]["status"] = "expired"
        return {"id": session_id, "status": "expired"}

    def list_session_line_items(self, session_id: str) -> List[Dict[str, Any]]:
        session = self.get_session(session_id)
        out = []
        for li in session.get("line_items") or []:
            unit = int((self.prices.get(li["price"]) or {}).get("unit_amount") or 0)
            out.append({"description": "Longevity Blend", "quantity": li["quantity"], "amount_total": unit * li["quantity"]})
        return out

    # --- catalogue ---

    def retrieve_price(self, price_id: str) -> Dict[str, Any]:
        if price_id not in self.prices:
            raise stripe.InvalidRequestError(f"No such price: '{price_id}'", "price")
        return dict(self.prices[price_id])

    def list_prices(self, active=None, product=None) -> List[Dict[str, Any]]:
        return [
            dict(p) for p in self.prices.values()
            if (active is None or p["active"] == active) and (product is None or p["product"] == product)
        ]

    def create_price(self, *, product, unit_amount, currency, nickname=None, recurring=None, metadata=None):
        price_id = f"price_new{next(self._seq):013d}"
        return dict(self.add_price(price_id, unit_amount, product=product, currency=currency,
                                   recurring=recurring, metadata=metadata))

    def retrieve_product(self, product_id: str) -> Dict[str, Any]:
        if product_id not in self.products:
            raise stripe.InvalidRequestError(f"No such product: '{product_id}'", "id")
        return dict(self.products[product_id])

    def create_product(self, *, name, active=True, metadata=None) -> Dict[str, Any]:
        product_id = f"prod_test{next(self._seq):06d}"
        self.products[product_id] = {"id": product_id, "name": name, "active": active, "metadata": metadata or {}}
        return dict(self.products[product_id])

    def update_product(self, product_id: str, **fields) -> Dict[str, Any]:
        self.products[product_id].update(fields)
        return dict(self.products[product_id])

    def list_products(self, active=None) -> List[Dict[str, Any]]:
        return [dict(p) for p in self.products.values() if active is None or p["active"] == active]

    # --- codes promo ---

    def add_promotion_code(self, code: str, **coupon) -> Dict[str, Any]:
        promo = {
            "id": f"promo_test{next(self._seq):04d}",
            "code": code,
            "active": True,
            "times_redeemed": 0,
            "max_redemptions": None,
            "expires_at": None,
            "coupon": {"id": f"coupon_{code.lower()}", "duration": "once", **coupon},
        }
        self.promotion_codes[promo["id"]] = promo
        return promo

    def find_promotion_code(self, code: str) -> Optional[Dict[str, Any]]:
        for promo in self.promotion_codes.values():
            if promo["code"] == code and promo["active"]:
                return dict(promo)
        return None

    def list_promotion_codes(self, active=None, limit: int = 100) -> List[Dict[str, Any]]:
        return [dict(p) for p in self.promotion_codes.values() if active is None or p["active"] == active]

    def create_coupon(self, **params) -> Dict[str, Any]:
        coupon = {"id": f"coupon_test{next(self._seq):04d}", **params}
        self.coupons[coupon["id"]] = coupon
        return dict(coupon)

    def create_promotion_code(self, *, coupon, code, **params) -> Dict[str, Any]:
        promo = {"id": f"promo_test{next(self._seq):04d}", "code": code, "active": True,
                 "coupon": self.coupons.get(coupon, {"id": coupon}), **params}
        self.promotion_codes[promo["id"]] = promo
        return dict(promo)

    # --- abonnements / remboursements ---

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        if subscription_id not in self.subscriptions:
            raise stripe.InvalidRequestError(f"No such subscription: '{subscription_id}'", "id")
        return dict(self.subscriptions[subscription_id])

    def create_billing_portal_session(self, *, customer, return_url) -> Dict[str, Any]:
        portal = {"id": f"bps_test{next(self._seq):06d}", "customer": customer, "return_url": return_url,
                  "url": f"https://billing.stripe.test/p/session/{customer}"}
        self.portal_sessions.append(portal)
        return dict(portal)

    def create_refund(self, *, payment_intent, amount=None, metadata=None) -> Dict[str, Any]:
        if self.refund_error is not None:
            raise self.refund_error
        refund = {
            "id": f"re_test{next(self._seq):06d}",
            "payment_intent": payment_intent,
            "amount": amount,
            "status": self.refund_status,
            "metadata": metadata or {},
        }
        self.refunds.append(refund)
        return dict(refund)


_STRIPE_FUNCTIONS = (
    "create_session", "get_session", "expire_session", "list_session_line_items",
    "retrieve_price", "list_prices", "create_price", "retrieve_product", "create_product",
    "update_product", "list_products", "find_promotion_code", "list_promotion_codes",
    "create_coupon", "create_promotion_code", "retrieve_subscription", "create_refund",
    "create_billing_portal_session",
)


@pytest.fixture()
def store(monkeypatch) -> FakeStore:
    fake = FakeStore()
    for module, names in _REPOSITORY_FUNCTIONS.items():
        for name in names:
            monkeypatch.setattr(f"{module}.{name}", getattr(fake, name))
    return fake


@pytest.fixture()
def fake_stripe(monkeypatch) -> FakeStripe:
    fake = FakeStripe()
    for name in _STRIPE_FUNCTIONS:
        monkeypatch.setattr(stripe_client, name, getattr(fake, name))
    return fake


@pytest.fixture()
def flags(store) -> FeatureFlagCache:
    # TTL nul: chaque lecture reflète store.flags
    return FeatureFlagCache(loader=lambda: dict(store.flags), ttl_seconds=0)


@pytest.fixture()
def app(flags):
    application = create_app()
    application.state.feature_flags = flags
    application.dependency_overrides[get_feature_flags] = lambda: flags
    return application


@pytest.fixture()
def client(app, store, fake_stripe) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def admin_client(app, client):
    app.dependency_overrides[require_admin] = lambda: {"id": "admin-user-id", "role": "admin", "email": "admin@example.com"}
    yield client
    app.dependency_overrides.pop(require_admin, None)


@pytest.fixture()
def logged_in_user(app, store):
    """Utilisateur authentifié (profil existant, sans client Stripe)."""
    user = {"id": str(uuid.uuid4()), "email": "member@example.com", "role": "user", "metadata": {}}
    store.profiles[user["id"]] = {"id": user["id"], "email": user["email"], "full_name": "Member One", "stripe_customer_id": None}
    app.dependency_overrides[optional_user] = lambda: user
    yield user
    app.dependency_overrides.pop(optional_user, None)


@pytest.fixture()
def webhook_secret(monkeypatch) -> str:
    secret = "whsec_test_secret"
    monkeypatch.setattr("storefront.webhooks.views.STRIPE_WEBHOOK_SECRET", secret)
    monkeypatch.setattr("storefront.payments.stripe_client.STRIPE_WEBHOOK_SECRET", secret)
    return secret


@pytest.fixture()
def sign_payload(webhook_secret):
    """Construit l'en-tête Stripe-Signature (t=..., v1=HMAC-SHA256) d'un corps brut."""
    import hashlib
    import hmac
    import time

    def _sign(payload: str, secret: Optional[str] = None) -> str:
        timestamp = int(time.time())
        signed = f"{timestamp}.{payload}".encode("utf-8")
        digest = hmac.new((secret or webhook_secret).encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    return _sign
