"""
Codes de réduction: validation (client), résolution pour le checkout, gestion admin.

Sources possibles d'un code:
- table interne `discounts` (miroir d'un coupon Stripe via stripe_coupon_id),
  restrictions vérifiées ici et compteur incrémenté au webhook (RPC redeem_discount)
- promotion codes Stripe (restrictions appliquées par Stripe lui-même)

Le montant remisé n'est jamais calculé localement: Stripe fait foi.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from storefront.checkout.errors import CheckoutError, ErrorCode
from storefront.customers import repository as customers_repo
from storefront.payments import stripe_client
from storefront.config import STRIPE_CURRENCY
from . import repository as discounts_repo

logger = logging.getLogger(__name__)


class DiscountNotFound(CheckoutError):
    """Code inconnu (ni interne, ni promotion code Stripe actif)."""

    def __init__(self, detail: Optional[str] = None):
        super().__init__(ErrorCode.INVALID_DISCOUNT, detail, public_message="Invalid discount code")

    @property
    def status_code(self) -> int:
        return 404


def normalize_code(code: Any) -> str:
    return str(code or "").strip().upper()


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _lookup_discount(clean: str) -> Optional[Dict[str, Any]]:
    try:
        return discounts_repo.get_discount_by_code(clean)
    except Exception:
        logger.exception("discounts.lookup failed code=%s", clean)
        raise CheckoutError(ErrorCode.ITEM_CHECK_FAILED, "discount lookup failed")


def _has_paid_orders(user_id: Optional[str], email: Optional[str]) -> bool:
    try:
        return customers_repo.count_paid_orders(user_id=user_id, email=email) > 0
    except Exception:
        logger.exception("discounts.first_time check failed user_id=%s", user_id)
        raise CheckoutError(ErrorCode.ITEM_CHECK_FAILED, "paid orders count failed")


# module storefront.discounts.service
def check_discount_restrictions(
    discount: Dict[str, Any],
    *,
    subtotal_cents: Optional[int] = None,
    user_id: Optional[str] = None,
    email: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    """
    Vérifie les restrictions d'un code interne; lève CheckoutError au premier échec.
    Ordre: actif, date de début, expiration, utilisations max, minimum de commande, première commande.
    """
    now = now or datetime.now(timezone.utc)
    if not discount.get("is_active"):
        raise CheckoutError(ErrorCode.INVALID_DISCOUNT, public_message="This code is no longer active")

    starts_at = _parse_ts(discount.get("starts_at"))
    if starts_at and starts_at > now:
        raise CheckoutError(ErrorCode.INVALID_DISCOUNT, public_message="This code is not yet active")

    expires_at = _parse_ts(discount.get("expires_at"))
    if expires_at and expires_at < now:
        raise CheckoutError(ErrorCode.DISCOUNT_EXPIRED, public_message="This code has expired")

    max_redemptions = discount.get("max_redemptions")
    if max_redemptions is not None and int(discount.get("times_redeemed") or 0) >= int(max_redemptions):
        raise CheckoutError(ErrorCode.DISCOUNT_EXHAUSTED, public_message="This code has reached its maximum uses")

    min_amount = int(discount.get("min_amount_cents") or 0)
    if min_amount > 0 and subtotal_cents is not None and subtotal_cents < min_amount:
        raise CheckoutError(
            ErrorCode.DISCOUNT_MINIMUM,
            public_message=f"Minimum order of ${min_amount / 100:.2f} required for this code",
        )

    if discount.get("first_time_only") and (user_id or email):
        if _has_paid_orders(user_id, email):
            raise CheckoutError(
                ErrorCode.DISCOUNT_FIRST_TIME,
                public_message="This code is only valid for first-time customers",
            )


def validate_code(
    code: Any,
    *,
    subtotal_cents: Optional[int] = None,
    user_id: Optional[str] = None,
    email: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Validation pour l'affichage panier (POST /api/v1/coupons/validate).
    Retour: {valid: True, code, discountId?, discountType, discountPercent?, discountAmount?, name?, restrictions?}
    """
    clean = normalize_code(code)
    if not clean:
        raise CheckoutError(ErrorCode.INVALID_DISCOUNT, public_message="Discount code is required")

    discount = _lookup_discount(clean)
    if discount:
        check_discount_restrictions(discount, subtotal_cents=subtotal_cents, user_id=user_id, email=email)
        response: Dict[str, Any] = {
            "valid": True,
            "code": discount.get("code") or clean,
            "discountId": discount.get("id"),
            "discountType": discount.get("discount_type"),
        }
        if discount.get("discount_percent") is not None:
            response["discountPercent"] = float(discount["discount_percent"])
        if discount.get("discount_amount_cents") is not None:
            response["discountAmount"] = int(discount["discount_amount_cents"])
        if discount.get("name"):
            response["name"] = discount["name"]
        restrictions: Dict[str, Any] = {}
        if int(discount.get("min_amount_cents") or 0) > 0:
            restrictions["minimumAmount"] = int(discount["min_amount_cents"])
        if discount.get("expires_at"):
            restrictions["expiresAt"] = discount["expires_at"]
        if restrictions:
            response["restrictions"] = restrictions
        return response

    promo = stripe_client.find_promotion_code(clean)
    if not promo:
        raise DiscountNotFound(f"unknown code {clean}")
    coupon = promo.get("coupon") or {}
    response = {
        "valid": True,
        "code": promo.get("code") or clean,
        "discountType": "percent" if coupon.get("percent_off") else "amount",
    }
    if coupon.get("percent_off"):
        response["discountPercent"] = float(coupon["percent_off"])
    if coupon.get("amount_off"):
        response["discountAmount"] = int(coupon["amount_off"])
    if coupon.get("name"):
        response["name"] = coupon["name"]
    return response


def resolve_for_checkout(
    code: Any,
    *,
    subtotal_cents: Optional[int],
    user_id: Optional[str],
    email: Optional[str],
) -> Optional[Dict[str, Any]]:
    """
    Code saisi -> remise Stripe de niveau session.
    Retour: None si aucun code, sinon {"discounts": [{"coupon"|"promotion_code": id}], "code", "discount_id"}.
    """
    clean = normalize_code(code)
    if not clean:
        return None

    discount = _lookup_discount(clean)
    if discount:
        check_discount_restrictions(discount, subtotal_cents=subtotal_cents, user_id=user_id, email=email)
        coupon_id = discount.get("stripe_coupon_id")
        if not coupon_id:
            logger.error("discounts.resolve_for_checkout discount without coupon id=%s", discount.get("id"))
            raise CheckoutError(ErrorCode.INVALID_DISCOUNT, f"discount {discount.get('id')} has no coupon")
        return {"discounts": [{"coupon": coupon_id}], "code": clean, "discount_id": str(discount.get("id"))}

    promo = stripe_client.find_promotion_code(clean)
    if not promo:
        raise DiscountNotFound(f"unknown code {clean}")
    return {"discounts": [{"promotion_code": promo.get("id")}], "code": clean, "discount_id": None}


# --- Admin: promotion codes Stripe ---

def list_promotion_codes(active: Optional[bool] = None) -> List[Dict[str, Any]]:
    """Résumé des promotion codes Stripe (détail brut acceptable côté admin)."""
    out: List[Dict[str, Any]] = []
    for promo in stripe_client.list_promotion_codes(active=active):
        coupon = promo.get("coupon") or {}
        out.append({
            "id": promo.get("id"),
            "code": promo.get("code"),
            "active": promo.get("active"),
            "times_redeemed": promo.get("times_redeemed"),
            "max_redemptions": promo.get("max_redemptions"),
            "expires_at": promo.get("expires_at"),
            "coupon": {
                "id": coupon.get("id"),
                "percent_off": coupon.get("percent_off"),
                "amount_off": coupon.get("amount_off"),
                "duration": coupon.get("duration"),
            },
        })
    return out


def create_promotion_code(
    *,
    code: str,
    percent_off: Optional[float] = None,
    amount_off: Optional[int] = None,
    duration: str = "once",
    max_redemptions: Optional[int] = None,
    expires_at: Optional[int] = None,
    first_time_transaction: bool = False,
    minimum_amount: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Crée un coupon Stripe puis un promotion code qui l'enveloppe.
    Exactement un de percent_off / amount_off (centimes) doit être fourni.
    """
    clean = normalize_code(code)
    if not clean:
        raise ValueError("code is required")
    if (percent_off is None) == (amount_off is None):
        raise ValueError("Provide exactly one of percent_off or amount_off")

    coupon_params: Dict[str, Any] = {"duration": duration, "name": clean}
    if percent_off is not None:
        if not 0 < float(percent_off) <= 100:
            raise ValueError("percent_off must be between 0 and 100")
        coupon_params["percent_off"] = float(percent_off)
    else:
        if int(amount_off) <= 0:
            raise ValueError("amount_off must be positive")
        coupon_params["amount_off"] = int(amount_off)
        coupon_params["currency"] = STRIPE_CURRENCY
    coupon = stripe_client.create_coupon(**coupon_params)

    promo_params: Dict[str, Any] = {}
    if max_redemptions:
        promo_params["max_redemptions"] = int(max_redemptions)
    if expires_at:
        promo_params["expires_at"] = int(expires_at)
    restrictions: Dict[str, Any] = {}
    if first_time_transaction:
        restrictions["first_time_transaction"] = True
    if minimum_amount:
        restrictions["minimum_amount"] = int(minimum_amount)
        restrictions["minimum_amount_currency"] = STRIPE_CURRENCY
    if restrictions:
        promo_params["restrictions"] = restrictions

    promo = stripe_client.create_promotion_code(coupon=coupon["id"], code=clean, **promo_params)
    logger.info("discounts.create_promotion_code created code=%s", clean)
    return {"id": promo.get("id"), "code": promo.get("code") or clean, "coupon_id": coupon.get("id")}


def redeem_for_session(discount_id: Optional[str], session_id: str) -> bool:
    """Compte une utilisation d'un code interne pour une session payée (idempotent)."""
    if not discount_id:
        return False
    redeemed = discounts_repo.redeem_discount(discount_id, session_id)
    if not redeemed:
        logger.warning("discounts.redeem_for_session not redeemed discount_id=%s session=%s", discount_id, session_id)
    return redeemed
