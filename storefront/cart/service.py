"""
Validation de panier (consultative, sans effet de bord).

Règles par article, dans l'ordre du panier:
1) quantité entière dans [1, CART_MAX_QUANTITY]
2) format de référence de prix Stripe (sans appel base)
3) variante trouvée, active, produit actif
4) one_time: prix local > 0 (contrôle Stripe seulement si le flag
   cart_verify_one_time_prices est actif); recurring: prix Stripe actif, quantité 1
5) stock suffisant si la variante suit l'inventaire (stock NULL = erreur)

Le checkout rejoue cette validation: elle seule fait foi au moment du paiement.
"""
import logging
from typing import Any, Dict, List, Optional

import stripe

from storefront.config import CART_MAX_ITEMS, CART_MAX_QUANTITY
from storefront.catalog import repository as catalog_repo
from storefront.checkout.errors import CheckoutError, ErrorCode
from storefront.payments import stripe_client
from storefront.payments.money import to_minor_units
from storefront.utils.feature_flags import FeatureFlagCache
from .models import (
    BILLING_RECURRING,
    CartLine,
    ItemError,
    ResolvedItem,
    ValidationResult,
)

logger = logging.getLogger(__name__)

PRICE_REF_PREFIX = "price_"
PRICE_REF_MIN_LENGTH = 20

# module storefront.cart.service
def parse_lines(items: Any) -> List[CartLine]:
    """
    Contrôles globaux du panier (avant tout contrôle par article).
    - liste absente / vide -> CheckoutError(EMPTY_CART)
    - plus de CART_MAX_ITEMS lignes -> CheckoutError(TOO_MANY_ITEMS)
    """
    if not isinstance(items, list) or not items:
        raise CheckoutError(ErrorCode.EMPTY_CART, public_message="Invalid request: items array required")
    if len(items) > CART_MAX_ITEMS:
        raise CheckoutError(
            ErrorCode.TOO_MANY_ITEMS,
            public_message=f"Too many items in cart (max {CART_MAX_ITEMS})",
        )
    return [CartLine.from_payload(it) for it in items]


def _normalize_quantity(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        qty = value
    elif isinstance(value, float) and value.is_integer():
        qty = int(value)
    else:
        return None
    if qty < 1 or qty > CART_MAX_QUANTITY:
        return None
    return qty


def is_valid_price_ref(price_ref: str) -> bool:
    return bool(price_ref) and price_ref.startswith(PRICE_REF_PREFIX) and len(price_ref) >= PRICE_REF_MIN_LENGTH


def _check_recurring_price(line: CartLine, qty: int) -> Optional[ItemError]:
    try:
        price = stripe_client.retrieve_price(line.price_ref)
    except stripe.InvalidRequestError:
        return ItemError(line.price_ref, "Invalid subscription. Please contact support.", ErrorCode.PRICE_NOT_CONFIGURED)
    except stripe.StripeError:
        logger.warning("cart.validate recurring price lookup failed", exc_info=True)
        return ItemError(line.price_ref, "Unable to validate this item. Please try again.", ErrorCode.ITEM_CHECK_FAILED)
    if not price.get("active"):
        return ItemError(line.price_ref, "Subscription price is no longer available", ErrorCode.UNAVAILABLE)
    if qty > 1:
        return ItemError(line.price_ref, "Subscriptions must have quantity of 1", ErrorCode.SUBSCRIPTION_QUANTITY)
    return None


def _check_one_time_price(line: CartLine, variant: Dict[str, Any], verify_with_provider: bool) -> Optional[ItemError]:
    try:
        local_amount = to_minor_units(variant.get("price_usd"))
    except ValueError:
        local_amount = 0
    if local_amount <= 0:
        return ItemError(line.price_ref, "Product price not configured", ErrorCode.PRICE_NOT_CONFIGURED)
    if not verify_with_provider:
        return None
    try:
        price = stripe_client.retrieve_price(line.price_ref)
    except stripe.InvalidRequestError:
        return ItemError(line.price_ref, "Product price not configured", ErrorCode.PRICE_NOT_CONFIGURED)
    except stripe.StripeError:
        logger.warning("cart.validate one-time price lookup failed", exc_info=True)
        return ItemError(line.price_ref, "Unable to validate this item. Please try again.", ErrorCode.ITEM_CHECK_FAILED)
    if not price.get("active") or int(price.get("unit_amount") or 0) != local_amount:
        logger.warning(
            "cart.validate price drift variant_id=%s local=%s provider=%s active=%s",
            variant.get("id"), local_amount, price.get("unit_amount"), price.get("active"),
        )
        return ItemError(line.price_ref, "Price has changed. Please refresh your cart.", ErrorCode.PRICE_NOT_CONFIGURED)
    return None


def _check_stock(line: CartLine, variant: Dict[str, Any], requested: int) -> Optional[ItemError]:
    if not variant.get("track_inventory"):
        return None
    stock = variant.get("stock_quantity")
    if stock is None:
        return ItemError(line.price_ref, "Stock information unavailable", ErrorCode.STOCK_UNKNOWN)
    stock = int(stock)
    if stock < requested:
        message = "Out of stock" if stock <= 0 else f"Only {stock} available"
        return ItemError(line.price_ref, message, ErrorCode.OUT_OF_STOCK, available=max(stock, 0))
    return None


def validate_lines(lines: List[CartLine], flags: Optional[FeatureFlagCache] = None) -> ValidationResult:
    """Valide des lignes déjà parsées. Les erreurs suivent l'ordre du panier."""
    result = ValidationResult()
    verify_one_time = bool(flags and flags.is_enabled("cart_verify_one_time_prices"))

    quantities: List[Optional[int]] = []
    for line in lines:
        quantities.append(_normalize_quantity(line.quantity))

    lookup_refs = [
        line.price_ref
        for line, qty in zip(lines, quantities)
        if qty is not None and is_valid_price_ref(line.price_ref)
    ]
    lookup_failed = False
    variants: Dict[str, Dict[str, Any]] = {}
    try:
        variants = catalog_repo.get_variants_by_price_ids(lookup_refs)
    except Exception:
        logger.exception("cart.validate variant lookup failed count=%s", len(lookup_refs))
        lookup_failed = True

    # Quantité totale demandée par référence (une même variante peut apparaître deux fois)
    requested: Dict[str, int] = {}
    for line, qty in zip(lines, quantities):
        if qty is not None:
            requested[line.price_ref] = requested.get(line.price_ref, 0) + qty

    for line, qty in zip(lines, quantities):
        if qty is None:
            result.errors.append(ItemError(
                line.price_ref,
                f"Invalid quantity: {line.quantity}. Must be between 1-{CART_MAX_QUANTITY}.",
                ErrorCode.INVALID_QUANTITY,
            ))
            continue
        if not is_valid_price_ref(line.price_ref):
            result.errors.append(ItemError(line.price_ref, "Invalid price ID format", ErrorCode.INVALID_PRICE_REF))
            continue
        if lookup_failed:
            result.errors.append(ItemError(
                line.price_ref, "Unable to validate this item. Please try again.", ErrorCode.ITEM_CHECK_FAILED,
            ))
            continue

        variant = variants.get(line.price_ref)
        if not variant:
            result.errors.append(ItemError(line.price_ref, "Product variant not found", ErrorCode.VARIANT_NOT_FOUND))
            continue
        product = variant.get("products") or {}
        if not variant.get("is_active") or not product.get("is_active"):
            result.errors.append(ItemError(line.price_ref, "This product is no longer available", ErrorCode.UNAVAILABLE))
            continue

        if variant.get("billing_type") == BILLING_RECURRING:
            error = _check_recurring_price(line, qty)
        else:
            error = _check_one_time_price(line, variant, verify_one_time)
        if error is None:
            error = _check_stock(line, variant, requested.get(line.price_ref, qty))
        if error is not None:
            result.errors.append(error)
            continue

        result.items.append(ResolvedItem(price_ref=line.price_ref, quantity=qty, variant=variant))

    if result.errors:
        logger.info("cart.validate invalid cart errors=%s", [e.code.value for e in result.errors])
    return result


def validate_cart(items: Any, flags: Optional[FeatureFlagCache] = None) -> ValidationResult:
    """
    Point d'entrée: payload brut [{priceRef, quantity}] -> ValidationResult.
    Lève CheckoutError seulement pour les erreurs globales (panier vide / trop grand).
    """
    return validate_lines(parse_lines(items), flags)
