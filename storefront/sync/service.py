"""
Synchronisation catalogue Supabase <-> Stripe.

- sync_status(): rapport en lecture seule (erreurs / avertissements, stats)
- sync_product(product_id): réparation idempotente d'un produit et de ses variantes
- sync_all(): réparation de tous les produits actifs

Règles de réparation:
- on résout toujours l'existant avant de créer quoi que ce soit (relancer converge)
- un prix Stripe n'est jamais modifié ni supprimé: un nouveau montant ou un nouvel
  intervalle donne un nouveau prix, et la variante est repointée dessus
- to_minor_units est le seul point de conversion montant -> centimes
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

import stripe
from postgrest.exceptions import APIError

from storefront.config import STRIPE_CURRENCY
from storefront.catalog import repository as catalog_repo
from storefront.payments import stripe_client
from storefront.payments.money import to_minor_units
from .models import (
    INACTIVE_MISMATCH,
    MISSING_IN_PROVIDER,
    MISSING_IN_STORE,
    PRICE_MISMATCH,
    SEVERITY_ERROR,
    SEVERITY_WARNING,
    SyncIssue,
    SyncReport,
    SyncResult,
    VariantSyncResult,
)

logger = logging.getLogger(__name__)

# module storefront.sync.service
def _variants(product: Dict[str, Any]) -> List[Dict[str, Any]]:
    return list(product.get("product_variants") or [])


def _amount_cents(variant: Dict[str, Any]) -> Optional[int]:
    try:
        return to_minor_units(variant.get("price_usd"))
    except ValueError:
        return None


def expected_recurring(variant: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if variant.get("billing_type") != "recurring":
        return None
    return {
        "interval": variant.get("recurring_interval") or "month",
        "interval_count": int(variant.get("recurring_interval_count") or 1),
    }


def _recurring_matches(variant: Dict[str, Any], price: Dict[str, Any]) -> bool:
    expected = expected_recurring(variant)
    actual = price.get("recurring") or None
    if expected is None:
        return actual is None
    if not actual:
        return False
    return (
        actual.get("interval") == expected["interval"]
        and int(actual.get("interval_count") or 1) == expected["interval_count"]
    )


def price_matches(variant: Dict[str, Any], price: Dict[str, Any]) -> bool:
    """Le prix Stripe correspond-il exactement à la variante (montant, devise, intervalle)?"""
    return (
        _amount_cents(variant) == int(price.get("unit_amount") or 0)
        and str(price.get("currency") or "").lower() == STRIPE_CURRENCY
        and _recurring_matches(variant, price)
    )


def _price_product_id(price: Dict[str, Any]) -> str:
    product = price.get("product")
    if isinstance(product, dict):
        return str(product.get("id"))
    return str(product or "")


def _resolve_price(price_id: str, known: Dict[str, Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if price_id in known:
        return known[price_id]
    try:
        return stripe_client.retrieve_price(price_id)
    except stripe.InvalidRequestError:
        return None


# --- Statut (lecture seule) ---

def sync_status() -> SyncReport:
    """
    Contrôle de cohérence pour chaque produit/variante actif:
    - référence absente ou introuvable -> missing_in_provider (erreur)
    - écart >= 1 centime ou intervalle différent -> price_mismatch (avertissement)
    - variante active, prix Stripe inactif -> inactive_mismatch (avertissement)
    - prix Stripe actif sans variante -> missing_in_store (avertissement)
    """
    report = SyncReport()
    products = catalog_repo.list_products_with_variants(active_only=False)
    stripe_prices = stripe_client.list_prices()
    stripe_products = stripe_client.list_products(active=True)
    price_map = {str(p.get("id")): p for p in stripe_prices}
    product_names = {str(p.get("id")): p.get("name") for p in stripe_products}

    known_price_ids = {
        str(v.get("stripe_price_id"))
        for product in products
        for v in _variants(product)
        if v.get("stripe_price_id")
    }

    active_products = [p for p in products if p.get("is_active")]
    total_variants = synced = unsynced = 0
    for product in active_products:
        for variant in _variants(product):
            if not variant.get("is_active"):
                continue
            total_variants += 1
            base = {
                "product_id": product.get("id"),
                "product_name": product.get("name"),
                "variant_id": variant.get("id"),
                "variant_label": variant.get("label"),
            }
            price_id = variant.get("stripe_price_id")
            if not price_id:
                unsynced += 1
                report.issues.append(SyncIssue(
                    MISSING_IN_PROVIDER, SEVERITY_ERROR,
                    f'Variant "{variant.get("label")}" has no Stripe price ID', **base,
                ))
                continue

            price = _resolve_price(str(price_id), price_map)
            if price is None:
                unsynced += 1
                report.issues.append(SyncIssue(
                    MISSING_IN_PROVIDER, SEVERITY_ERROR,
                    f'Stripe price "{price_id}" not found in Stripe', stripe_price_id=price_id, **base,
                ))
                continue

            synced += 1
            local_cents = _amount_cents(variant)
            remote_cents = int(price.get("unit_amount") or 0)
            if local_cents is None or abs(local_cents - remote_cents) >= 1:
                report.issues.append(SyncIssue(
                    PRICE_MISMATCH, SEVERITY_WARNING,
                    f"Price mismatch: Supabase={local_cents} cents, Stripe={remote_cents} cents",
                    stripe_price_id=price_id, **base,
                ))
            elif not _recurring_matches(variant, price):
                report.issues.append(SyncIssue(
                    PRICE_MISMATCH, SEVERITY_WARNING,
                    "Billing interval mismatch between Supabase and Stripe",
                    stripe_price_id=price_id, **base,
                ))
            if not price.get("active"):
                report.issues.append(SyncIssue(
                    INACTIVE_MISMATCH, SEVERITY_WARNING,
                    "Variant active in Supabase but Stripe price is inactive",
                    stripe_price_id=price_id, **base,
                ))

    for price in stripe_prices:
        price_id = str(price.get("id"))
        if not price.get("active") or price_id in known_price_ids:
            continue
        stripe_product = price.get("product")
        if isinstance(stripe_product, dict):
            name = stripe_product.get("name")
        else:
            name = product_names.get(str(stripe_product))
        report.issues.append(SyncIssue(
            MISSING_IN_STORE, SEVERITY_WARNING,
            f"Stripe price exists but not found in Supabase: {price_id}",
            product_name=name or "Unknown Product", stripe_price_id=price_id,
        ))

    report.stats = {
        "supabaseProducts": len(active_products),
        "supabaseVariants": total_variants,
        "stripeProducts": len(stripe_products),
        "stripePrices": len(stripe_prices),
        "syncedVariants": synced,
        "unsyncedVariants": unsynced,
    }
    if not report.healthy:
        logger.warning("sync.status unhealthy errors=%s", len(report.errors))
    return report


# --- Réparation ---

def _find_stripe_product_by_metadata(product_id: str) -> Optional[Dict[str, Any]]:
    for candidate in stripe_client.list_products():
        if str((candidate.get("metadata") or {}).get("supabase_id") or "") == str(product_id):
            return candidate
    return None


def ensure_stripe_product(product: Dict[str, Any]) -> Tuple[str, str]:
    """
    Garantit un produit Stripe valide pour le produit Supabase.
    Retour: (stripe_product_id, action) avec action in {"unchanged", "updated", "relinked", "created"}.
    """
    product_id = str(product.get("id"))
    name = product.get("name") or product.get("slug") or product_id
    active = bool(product.get("is_active"))

    existing: Optional[Dict[str, Any]] = None
    action = "unchanged"
    ref = product.get("stripe_product_id")
    if ref:
        try:
            existing = stripe_client.retrieve_product(ref)
        except stripe.InvalidRequestError:
            logger.warning("sync.ensure_stripe_product unresolvable ref product_id=%s", product_id)
            existing = None
    if existing is None:
        existing = _find_stripe_product_by_metadata(product_id)
        if existing is not None:
            action = "relinked"

    if existing is None:
        created = stripe_client.create_product(
            name=name,
            active=active,
            metadata={"supabase_id": product_id, "slug": str(product.get("slug") or "")},
        )
        catalog_repo.set_product_stripe_id(product_id, created["id"])
        logger.info("sync.ensure_stripe_product created product_id=%s", product_id)
        return created["id"], "created"

    if existing.get("name") != name or bool(existing.get("active")) != active:
        stripe_client.update_product(existing["id"], name=name, active=active)
        if action == "unchanged":
            action = "updated"
    if existing["id"] != ref:
        catalog_repo.set_product_stripe_id(product_id, existing["id"])
    return existing["id"], action


def ensure_variant_price(variant: Dict[str, Any], stripe_product_id: str) -> VariantSyncResult:
    """
    Garantit un prix Stripe actif, conforme à la variante, sous le bon produit.
    Ordre: référence actuelle, puis prix existant étiqueté pour la variante, puis création.
    """
    variant_id = str(variant.get("id"))
    current_ref = variant.get("stripe_price_id")
    amount = _amount_cents(variant)
    if amount is None or amount <= 0:
        raise ValueError(f"Variant {variant_id} has no valid price")

    if current_ref:
        try:
            current = stripe_client.retrieve_price(current_ref)
        except stripe.InvalidRequestError:
            current = None
        if (
            current is not None
            and current.get("active")
            and _price_product_id(current) == stripe_product_id
            and price_matches(variant, current)
        ):
            return VariantSyncResult(variant_id, "unchanged", current_ref)

    # Prix déjà créé lors d'un passage précédent (ex: persistance interrompue)
    for candidate in stripe_client.list_prices(active=True, product=stripe_product_id):
        if str((candidate.get("metadata") or {}).get("supabase_variant_id") or "") != variant_id:
            continue
        if price_matches(variant, candidate):
            catalog_repo.set_variant_stripe_price(variant_id, candidate["id"])
            return VariantSyncResult(variant_id, "repointed", candidate["id"], previous_price_id=current_ref)

    created = stripe_client.create_price(
        product=stripe_product_id,
        unit_amount=amount,
        currency=STRIPE_CURRENCY,
        nickname=variant.get("label"),
        recurring=expected_recurring(variant),
        metadata={"supabase_variant_id": variant_id, "size_key": str(variant.get("size_key") or "")},
    )
    catalog_repo.set_variant_stripe_price(variant_id, created["id"])
    logger.info("sync.ensure_variant_price created variant_id=%s", variant_id)
    return VariantSyncResult(variant_id, "created", created["id"], previous_price_id=current_ref)


def sync_product(product_id: str) -> SyncResult:
    """Répare un produit et ses variantes actives. LookupError si le produit n'existe pas."""
    product = catalog_repo.get_product_with_variants(product_id)
    if not product:
        raise LookupError(f"Product {product_id} not found")
    stripe_product_id, product_action = ensure_stripe_product(product)
    result = SyncResult(str(product.get("id")), stripe_product_id, product_action)
    for variant in _variants(product):
        if not variant.get("is_active"):
            continue
        result.variants.append(ensure_variant_price(variant, stripe_product_id))
    return result


def sync_all() -> Dict[str, Any]:
    """
    Répare tous les produits actifs; un échec n'interrompt pas les autres.
    Retour: {"results": [...], "failures": [{"productId", "error"}]}
    """
    results: List[Dict[str, Any]] = []
    failures: List[Dict[str, Any]] = []
    for product in catalog_repo.list_products_with_variants(active_only=True):
        product_id = str(product.get("id"))
        try:
            results.append(sync_product(product_id).to_dict())
        except (stripe.StripeError, APIError, ValueError, LookupError) as e:
            logger.exception("sync.sync_all failed product_id=%s", product_id)
            failures.append({"productId": product_id, "error": str(e)})
    return {"results": results, "failures": failures}
