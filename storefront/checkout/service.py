"""
Cas d'usage 'checkout': panier validé -> session Stripe Checkout idempotente.

Étapes:
1) revalidation complète du panier (la validation du navigateur n'est que consultative)
2) mode: tout one_time -> payment, tout recurring -> subscription, mélange refusé
3) client Stripe connu (profiles.stripe_customer_id) sinon email
4) code promo -> remise de session (Stripe calcule le total)
5) clé d'idempotence + métadonnées pour reconstruire la commande au webhook
6) création de session puis réservation atomique du stock par variante
"""
import logging
from typing import Any, Dict, List, Optional

import stripe

from storefront.config import SITE_URL, CHECKOUT_SUCCESS_PATH, CHECKOUT_CANCEL_PATH
from storefront.cart import service as cart_service
from storefront.cart.models import BILLING_ONE_TIME, BILLING_RECURRING, ItemError, ResolvedItem
from storefront.catalog import repository as catalog_repo
from storefront.customers import repository as customers_repo
from storefront.discounts import service as discounts_service
from storefront.payments import stripe_client
from storefront.payments.metadata import make_metadata
from storefront.payments.money import to_minor_units
from storefront.utils.feature_flags import FeatureFlagCache
from .errors import CheckoutError, ErrorCode
from .idempotency import checkout_idempotency_key

logger = logging.getLogger(__name__)

MODE_PAYMENT = "payment"
MODE_SUBSCRIPTION = "subscription"

# module storefront.checkout.service
def select_mode(items: List[ResolvedItem]) -> str:
    """payment si tout est one_time, subscription si tout est recurring; sinon MIXED_MODES."""
    billing_types = {item.billing_type for item in items}
    if billing_types == {BILLING_ONE_TIME}:
        return MODE_PAYMENT
    if billing_types == {BILLING_RECURRING}:
        return MODE_SUBSCRIPTION
    raise CheckoutError(ErrorCode.MIXED_MODES, f"billing types {sorted(billing_types)}")


def _raise_for_item_errors(errors: List[ItemError]) -> None:
    if not errors:
        return
    first = errors[0]
    raise CheckoutError(first.code, f"{len(errors)} invalid item(s)", items=[e.to_dict() for e in errors])


def _aggregate(items: List[ResolvedItem]) -> List[Dict[str, Any]]:
    """Fusionne les lignes d'une même référence: [{priceRef, quantity, variantId, ...}]."""
    merged: Dict[str, Dict[str, Any]] = {}
    for item in items:
        line = merged.get(item.price_ref)
        if line is None:
            merged[item.price_ref] = {
                "priceRef": item.price_ref,
                "quantity": item.quantity,
                "variantId": item.variant_id,
                "tracksInventory": item.tracks_inventory,
                "unitAmount": to_minor_units(item.variant.get("price_usd") or 0),
            }
        else:
            line["quantity"] += item.quantity
    return list(merged.values())


def _release_after_failure(session_id: str) -> None:
    try:
        stripe_client.expire_session(session_id)
    except stripe.StripeError:
        logger.exception("checkout.service expire_session failed session=%s", session_id)
    try:
        catalog_repo.release_inventory_reservations(session_id)
    except Exception:
        logger.exception("checkout.service release_inventory_reservations failed session=%s", session_id)


def reserve_stock(session_id: str, lines: List[Dict[str, Any]]) -> None:
    """
    Réserve le stock des variantes suivies (décrément atomique en base, par session).
    En cas de manque: session expirée, réservations relâchées, CheckoutError(OUT_OF_STOCK).
    """
    short: List[Dict[str, Any]] = []
    for line in lines:
        if not line["tracksInventory"]:
            continue
        try:
            ok = catalog_repo.reserve_inventory(session_id, line["variantId"], line["quantity"])
        except Exception:
            logger.exception("checkout.service reserve_inventory failed session=%s", session_id)
            _release_after_failure(session_id)
            raise CheckoutError(ErrorCode.ITEM_CHECK_FAILED, "inventory reservation failed")
        if not ok:
            short.append({"priceRef": line["priceRef"], "error": "Out of stock"})
    if short:
        logger.info("checkout.service stock shortage session=%s count=%s", session_id, len(short))
        _release_after_failure(session_id)
        raise CheckoutError(ErrorCode.OUT_OF_STOCK, "reservation shortage", items=short)


def create_checkout(
    items: Any,
    *,
    user: Optional[Dict[str, Any]] = None,
    email: Optional[str] = None,
    discount_code: Optional[str] = None,
    flags: Optional[FeatureFlagCache] = None,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Crée la session Checkout. Retour: {"sessionId": "cs_...", "url": "https://..."}.
    Erreurs: CheckoutError (taxonomie client), détail par article si pertinent.
    """
    if flags is not None and not flags.is_enabled("checkout_enabled"):
        raise CheckoutError(ErrorCode.CHECKOUT_DISABLED)

    lines = cart_service.parse_lines(items)
    result = cart_service.validate_lines(lines, flags)
    _raise_for_item_errors(result.errors)
    mode = select_mode(result.items)

    user_id = (user or {}).get("id")
    customer_email = ((user or {}).get("email") or email or "").strip().lower() or None
    if not user_id and not customer_email:
        raise CheckoutError(ErrorCode.MISSING_EMAIL)

    aggregated = _aggregate(result.items)
    subtotal_cents = sum(line["unitAmount"] * line["quantity"] for line in aggregated)
    applied = discounts_service.resolve_for_checkout(
        discount_code,
        subtotal_cents=subtotal_cents,
        user_id=user_id,
        email=customer_email,
    )

    idempotency_key = checkout_idempotency_key(
        caller=user_id or customer_email or "",
        lines=[(line["priceRef"], line["quantity"]) for line in aggregated],
        discount_code=(applied or {}).get("code"),
        now=now,
    )
    metadata = make_metadata(
        user_id=user_id,
        customer_email=customer_email,
        lines=aggregated,
        mode=mode,
        idempotency_key=idempotency_key,
        discount_code=(applied or {}).get("code"),
        discount_id=(applied or {}).get("discount_id"),
    )

    session = stripe_client.create_session(
        line_items=[{"price": line["priceRef"], "quantity": line["quantity"]} for line in aggregated],
        mode=mode,
        success_url=success_url or f"{SITE_URL}{CHECKOUT_SUCCESS_PATH}",
        cancel_url=cancel_url or f"{SITE_URL}{CHECKOUT_CANCEL_PATH}",
        metadata=metadata,
        idempotency_key=idempotency_key,
        customer=customers_repo.get_stripe_customer_id(user_id),
        customer_email=customer_email,
        discounts=(applied or {}).get("discounts"),
    )
    session_id = session.get("id")
    if not session_id or not session.get("url"):
        logger.error("checkout.service session created without id/url mode=%s", mode)
        raise CheckoutError(ErrorCode.PROVIDER_ERROR, "session without url")
    # Rejeu idempotent d'une session déjà expirée (manque de stock) ou payée:
    # ni réservation, ni URL morte renvoyée au client
    status = session.get("status")
    if status and status != "open":
        logger.info("checkout.service replayed session not open session=%s status=%s", session_id, status)
        raise CheckoutError(ErrorCode.DUPLICATE_REQUEST, f"replayed session status={status}")

    reserve_stock(session_id, aggregated)
    logger.info("checkout.service session created mode=%s items=%s", mode, len(aggregated))
    return {"sessionId": session_id, "url": session.get("url")}


def _mask_email(email: Optional[str]) -> Optional[str]:
    if not email or "@" not in email:
        return None
    local, domain = email.split("@", 1)
    return f"{local[:1]}***@{domain}"


def get_session_summary(session_id: str) -> Optional[Dict[str, Any]]:
    """
    Résumé minimal d'une session pour la page de succès (sans identifiant client).
    Retour: None si la session est introuvable ou si l'identifiant est mal formé.
    """
    if not session_id or not session_id.startswith("cs_"):
        return None
    try:
        session = stripe_client.get_session(session_id)
    except stripe.InvalidRequestError:
        return None
    except stripe.StripeError as e:
        raise stripe_client.translate_stripe_error(e)
    details = session.get("customer_details") or {}
    return {
        "status": session.get("status"),
        "paymentStatus": session.get("payment_status"),
        "mode": session.get("mode"),
        "amountTotal": session.get("amount_total"),
        "currency": session.get("currency"),
        "customerEmail": _mask_email(details.get("email") or session.get("customer_email")),
    }
