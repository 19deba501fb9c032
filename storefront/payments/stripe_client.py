"""
Adaptateur Stripe: centralise les appels et la configuration Stripe.

Les erreurs du SDK sont traduites dans la taxonomie du checkout
(storefront.checkout.errors) uniquement sur les chemins clients
(création de session, recherche de code promo). Les chemins admin (synchro, remboursement)
laissent remonter stripe.StripeError: le détail brut y est acceptable.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

import stripe

from storefront.config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from storefront.checkout.errors import CheckoutError, ErrorCode

logger = logging.getLogger(__name__)

# module storefront.payments.stripe_client
def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l'emploi.
    - Configure stripe.api_key via STRIPE_SECRET_KEY (clé test ou production selon STRIPE_MODE).
    - En absence de clé, les appels Stripe échoueront côté SDK (ex: No API key provided).
    """
    if STRIPE_SECRET_KEY:
        stripe.api_key = STRIPE_SECRET_KEY
    return stripe


def as_dict(obj: Any) -> Dict[str, Any]:
    """Objet Stripe -> dict (récursif quand le SDK le permet)."""
    if obj is None:
        return {}
    if isinstance(obj, dict) and type(obj) is dict:
        return obj
    for attr in ("to_dict", "to_dict_recursive"):
        fn = getattr(obj, attr, None)
        if callable(fn):
            return fn()
    return dict(obj)


def translate_stripe_error(exc: Exception) -> CheckoutError:
    """
    Traduit une exception du SDK Stripe en CheckoutError typée.
    - RateLimitError -> RATE_LIMIT
    - IdempotencyError -> IDEMPOTENCY_CONFLICT (doublon probable, pas un échec)
    - APIConnectionError -> UPSTREAM réessayable (réseau)
    - InvalidRequestError sur un prix/produit -> AVAILABILITY (prix non configuré)
    - tout autre StripeError -> UPSTREAM
    """
    detail = str(exc)
    if isinstance(exc, stripe.RateLimitError):
        return CheckoutError(ErrorCode.RATE_LIMITED, detail)
    if isinstance(exc, stripe.IdempotencyError):
        return CheckoutError(ErrorCode.DUPLICATE_REQUEST, detail)
    if isinstance(exc, stripe.APIConnectionError):
        return CheckoutError(ErrorCode.PROVIDER_UNAVAILABLE, detail)
    if isinstance(exc, stripe.InvalidRequestError):
        param = str(getattr(exc, "param", "") or "")
        if param.startswith("line_items") or "price" in param:
            return CheckoutError(ErrorCode.PRICE_NOT_CONFIGURED, detail)
        if param.startswith("discounts") or "coupon" in param or "promotion_code" in param:
            return CheckoutError(ErrorCode.INVALID_DISCOUNT, detail)
        return CheckoutError(ErrorCode.PROVIDER_ERROR, detail)
    return CheckoutError(ErrorCode.PROVIDER_ERROR, detail)


# --- Checkout sessions ---

def create_session(
    *,
    line_items: List[Dict[str, Any]],
    mode: str,
    success_url: str,
    cancel_url: str,
    metadata: Dict[str, Any],
    idempotency_key: str,
    customer: Optional[str] = None,
    customer_email: Optional[str] = None,
    discounts: Optional[List[Dict[str, str]]] = None,
) -> Dict[str, Any]:
    """
    Crée une session Stripe Checkout idempotente.
    - line_items: [{"price": "price_...", "quantity": n}] (jamais de prix fourni par le client)
    - mode: "payment" ou "subscription"
    - customer / customer_email: client Stripe connu, sinon email (client créé par Stripe)
    - discounts: [{"coupon": ...}] ou [{"promotion_code": ...}] au niveau de la session
    - metadata: recopiée sur payment_intent_data / subscription_data pour le webhook
    - idempotency_key: deux appels identiques dans la fenêtre renvoient la même session
    Retour: dict session (ex: {"id": "cs_test_...", "url": "https://..."})
    Erreurs: CheckoutError (taxonomie client) à la place des exceptions Stripe.
    """
    require_stripe()
    params: Dict[str, Any] = {
        "line_items": line_items,
        "mode": mode,
        "success_url": success_url,
        "cancel_url": cancel_url,
        "metadata": metadata,
    }
    if customer:
        params["customer"] = customer
        params["customer_update"] = {"address": "auto"}
    elif customer_email:
        params["customer_email"] = customer_email
        if mode == "payment":
            params["customer_creation"] = "always"
    if discounts:
        params["discounts"] = discounts
    else:
        params["allow_promotion_codes"] = True
    if mode == "subscription":
        params["subscription_data"] = {"metadata": metadata}
    else:
        params["payment_intent_data"] = {"metadata": metadata}

    try:
        session = stripe.checkout.Session.create(idempotency_key=idempotency_key, **params)
    except stripe.StripeError as e:
        logger.warning("stripe_client.create_session failed mode=%s err=%s", mode, type(e).__name__)
        raise translate_stripe_error(e)
    return as_dict(session)


def get_session(session_id: str, expand: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Récupère une session Stripe Checkout par son identifiant.
    Retour: dict session incluant "id", "payment_status", "metadata", etc.
    """
    require_stripe()
    if expand:
        return as_dict(stripe.checkout.Session.retrieve(session_id, expand=expand))
    return as_dict(stripe.checkout.Session.retrieve(session_id))


def expire_session(session_id: str) -> Dict[str, Any]:
    """Expire une session ouverte (ex: stock insuffisant après création)."""
    require_stripe()
    return as_dict(stripe.checkout.Session.expire(session_id))


def list_session_line_items(session_id: str) -> List[Dict[str, Any]]:
    require_stripe()
    res = stripe.checkout.Session.list_line_items(session_id, limit=100)
    return [as_dict(li) for li in (as_dict(res).get("data") or [])]


# --- Catalogue: produits et prix ---

def retrieve_price(price_id: str) -> Dict[str, Any]:
    require_stripe()
    return as_dict(stripe.Price.retrieve(price_id))


def _iterate(listing: Any) -> Iterable[Any]:
    auto = getattr(listing, "auto_paging_iter", None)
    if callable(auto):
        return auto()
    return as_dict(listing).get("data") or []


def list_prices(active: Optional[bool] = None, product: Optional[str] = None) -> List[Dict[str, Any]]:
    """Prix du compte, ou d'un produit Stripe (pagination automatique)."""
    require_stripe()
    params: Dict[str, Any] = {"limit": 100}
    if active is not None:
        params["active"] = active
    if product:
        params["product"] = product
    return [as_dict(p) for p in _iterate(stripe.Price.list(**params))]


def create_price(
    *,
    product: str,
    unit_amount: int,
    currency: str,
    nickname: Optional[str] = None,
    recurring: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """
    Crée un nouveau prix. Les prix Stripe sont immuables: un changement de montant
    ou d'intervalle passe toujours par un nouveau prix, jamais par une modification.
    """
    require_stripe()
    params: Dict[str, Any] = {
        "product": product,
        "unit_amount": int(unit_amount),
        "currency": currency,
        "metadata": metadata or {},
    }
    if nickname:
        params["nickname"] = nickname
    if recurring:
        params["recurring"] = recurring
    return as_dict(stripe.Price.create(**params))


def retrieve_product(product_id: str) -> Dict[str, Any]:
    require_stripe()
    return as_dict(stripe.Product.retrieve(product_id))


def create_product(*, name: str, active: bool = True, metadata: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    require_stripe()
    return as_dict(stripe.Product.create(name=name, active=active, metadata=metadata or {}))


def update_product(product_id: str, **fields: Any) -> Dict[str, Any]:
    require_stripe()
    return as_dict(stripe.Product.modify(product_id, **fields))


def list_products(active: Optional[bool] = None) -> List[Dict[str, Any]]:
    require_stripe()
    params: Dict[str, Any] = {"limit": 100}
    if active is not None:
        params["active"] = active
    return [as_dict(p) for p in _iterate(stripe.Product.list(**params))]


# --- Codes promo ---

def list_promotion_codes(active: Optional[bool] = None, limit: int = 100) -> List[Dict[str, Any]]:
    require_stripe()
    params: Dict[str, Any] = {"limit": limit, "expand": ["data.coupon"]}
    if active is not None:
        params["active"] = active
    res = stripe.PromotionCode.list(**params)
    return [as_dict(p) for p in (as_dict(res).get("data") or [])]


def find_promotion_code(code: str) -> Optional[Dict[str, Any]]:
    """
    Code promo Stripe actif correspondant exactement à `code` (ou None).
    Chemin client (panier, checkout): erreurs traduites en CheckoutError.
    """
    require_stripe()
    try:
        res = stripe.PromotionCode.list(code=code, active=True, limit=1, expand=["data.coupon"])
    except stripe.StripeError as e:
        logger.warning("stripe_client.find_promotion_code failed err=%s", type(e).__name__)
        raise translate_stripe_error(e)
    data = as_dict(res).get("data") or []
    return as_dict(data[0]) if data else None


def create_coupon(**params: Any) -> Dict[str, Any]:
    require_stripe()
    return as_dict(stripe.Coupon.create(**params))


def create_promotion_code(*, coupon: str, code: str, **params: Any) -> Dict[str, Any]:
    require_stripe()
    return as_dict(stripe.PromotionCode.create(coupon=coupon, code=code, **params))


# --- Abonnements, paiements, remboursements ---

def retrieve_subscription(subscription_id: str) -> Dict[str, Any]:
    require_stripe()
    return as_dict(stripe.Subscription.retrieve(subscription_id))


def create_billing_portal_session(*, customer: str, return_url: str) -> Dict[str, Any]:
    """Session du portail client Stripe (gestion des abonnements et moyens de paiement)."""
    require_stripe()
    return as_dict(stripe.billing_portal.Session.create(customer=customer, return_url=return_url))


def create_refund(*, payment_intent: str, amount: Optional[int] = None, metadata: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Remboursement total (amount=None) ou partiel (centimes)."""
    require_stripe()
    params: Dict[str, Any] = {"payment_intent": payment_intent, "metadata": metadata or {}}
    if amount is not None:
        params["amount"] = int(amount)
    return as_dict(stripe.Refund.create(**params))


# --- Webhook ---

def construct_event(payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
    """
    Valide la signature puis parse l'événement (jamais l'inverse).
    Lève stripe.SignatureVerificationError (signature) ou ValueError (payload illisible).
    """
    require_stripe()
    event = stripe.Webhook.construct_event(payload, sig_header or "", STRIPE_WEBHOOK_SECRET or "")
    return as_dict(event)
