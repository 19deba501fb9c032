"""
Taxonomie des erreurs du checkout (côté client).

Chaque erreur est typée au point d'échec (ErrorCode -> ErrorKind -> ErrorInfo):
aucune classification a posteriori par recherche de mots-clés dans un message.

Familles:
- VALIDATION: saisie à corriger (quantité, format, panier mixte, code promo)
- AVAILABILITY: produit inactif, rupture de stock (modifier le panier)
- RATE_LIMIT: trop de tentatives (réessayer après un délai)
- IDEMPOTENCY_CONFLICT: doublon dans la fenêtre de dédoublonnage (succès probable)
- UPSTREAM: prestataire de paiement / réseau (réessayable)
- INTEGRITY: dérive prix/stock détectée par la synchro (jamais exposée au client)
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AVAILABILITY = "availability"
    RATE_LIMIT = "rate_limit"
    IDEMPOTENCY_CONFLICT = "idempotency_conflict"
    UPSTREAM = "upstream"
    INTEGRITY = "integrity"


@dataclass(frozen=True)
class ErrorInfo:
    title: str
    message: str
    suggestion: str
    can_retry: bool
    contact_support: bool = False
    should_clear_cart: bool = False


class ErrorCode(str, Enum):
    EMPTY_CART = "empty_cart"
    TOO_MANY_ITEMS = "too_many_items"
    INVALID_QUANTITY = "invalid_quantity"
    INVALID_PRICE_REF = "invalid_price_ref"
    MIXED_MODES = "mixed_modes"
    SUBSCRIPTION_QUANTITY = "subscription_quantity"
    MISSING_EMAIL = "missing_email"
    INVALID_DISCOUNT = "invalid_discount"
    DISCOUNT_EXPIRED = "discount_expired"
    DISCOUNT_MINIMUM = "discount_minimum"
    DISCOUNT_FIRST_TIME = "discount_first_time"
    DISCOUNT_EXHAUSTED = "discount_exhausted"
    VARIANT_NOT_FOUND = "variant_not_found"
    UNAVAILABLE = "unavailable"
    PRICE_NOT_CONFIGURED = "price_not_configured"
    OUT_OF_STOCK = "out_of_stock"
    STOCK_UNKNOWN = "stock_unknown"
    CHECKOUT_DISABLED = "checkout_disabled"
    RATE_LIMITED = "rate_limited"
    DUPLICATE_REQUEST = "duplicate_request"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    PROVIDER_ERROR = "provider_error"
    ITEM_CHECK_FAILED = "item_check_failed"
    PRICE_DRIFT = "price_drift"


_KINDS: Dict[ErrorCode, ErrorKind] = {
    ErrorCode.EMPTY_CART: ErrorKind.VALIDATION,
    ErrorCode.TOO_MANY_ITEMS: ErrorKind.VALIDATION,
    ErrorCode.INVALID_QUANTITY: ErrorKind.VALIDATION,
    ErrorCode.INVALID_PRICE_REF: ErrorKind.VALIDATION,
    ErrorCode.MIXED_MODES: ErrorKind.VALIDATION,
    ErrorCode.SUBSCRIPTION_QUANTITY: ErrorKind.VALIDATION,
    ErrorCode.MISSING_EMAIL: ErrorKind.VALIDATION,
    ErrorCode.INVALID_DISCOUNT: ErrorKind.VALIDATION,
    ErrorCode.DISCOUNT_EXPIRED: ErrorKind.VALIDATION,
    ErrorCode.DISCOUNT_MINIMUM: ErrorKind.VALIDATION,
    ErrorCode.DISCOUNT_FIRST_TIME: ErrorKind.VALIDATION,
    ErrorCode.DISCOUNT_EXHAUSTED: ErrorKind.VALIDATION,
    ErrorCode.VARIANT_NOT_FOUND: ErrorKind.AVAILABILITY,
    ErrorCode.UNAVAILABLE: ErrorKind.AVAILABILITY,
    ErrorCode.PRICE_NOT_CONFIGURED: ErrorKind.AVAILABILITY,
    ErrorCode.OUT_OF_STOCK: ErrorKind.AVAILABILITY,
    ErrorCode.STOCK_UNKNOWN: ErrorKind.AVAILABILITY,
    ErrorCode.CHECKOUT_DISABLED: ErrorKind.AVAILABILITY,
    ErrorCode.RATE_LIMITED: ErrorKind.RATE_LIMIT,
    ErrorCode.DUPLICATE_REQUEST: ErrorKind.IDEMPOTENCY_CONFLICT,
    ErrorCode.PROVIDER_UNAVAILABLE: ErrorKind.UPSTREAM,
    ErrorCode.PROVIDER_ERROR: ErrorKind.UPSTREAM,
    ErrorCode.ITEM_CHECK_FAILED: ErrorKind.UPSTREAM,
    ErrorCode.PRICE_DRIFT: ErrorKind.INTEGRITY,
}

_INFOS: Dict[ErrorCode, ErrorInfo] = {
    ErrorCode.EMPTY_CART: ErrorInfo(
        "Cart issue",
        "Your cart is empty or could not be read.",
        "Refresh the page and add your items again.",
        can_retry=True,
    ),
    ErrorCode.TOO_MANY_ITEMS: ErrorInfo(
        "Cart issue",
        "Your cart has more items than we can process in one order.",
        "Remove some items and check out the rest in a second order.",
        can_retry=False,
    ),
    ErrorCode.INVALID_QUANTITY: ErrorInfo(
        "Invalid quantity",
        "The quantity you selected is not valid.",
        "Please select a quantity between 1 and 999.",
        can_retry=False,
    ),
    ErrorCode.INVALID_PRICE_REF: ErrorInfo(
        "Pricing error",
        "There was an issue with the pricing for one of your items.",
        "Please remove the item and add it again. If the problem persists, contact us.",
        can_retry=False,
        contact_support=True,
    ),
    ErrorCode.MIXED_MODES: ErrorInfo(
        "Can't mix order types",
        "Subscriptions and one-time purchases must be checked out separately.",
        "Please checkout your subscriptions first, then come back for one-time purchases (or vice versa).",
        can_retry=False,
    ),
    ErrorCode.SUBSCRIPTION_QUANTITY: ErrorInfo(
        "Subscription limit",
        "Subscription items can only have a quantity of 1.",
        "Set the subscription quantity to 1, or choose a one-time purchase instead.",
        can_retry=False,
    ),
    ErrorCode.MISSING_EMAIL: ErrorInfo(
        "Email required",
        "We need an email address to send your order confirmation.",
        "Enter your email address or log in, then try again.",
        can_retry=True,
    ),
    ErrorCode.INVALID_DISCOUNT: ErrorInfo(
        "Invalid discount",
        "This discount code is not valid.",
        "Check the code and try again, or remove it to proceed.",
        can_retry=True,
    ),
    ErrorCode.DISCOUNT_EXPIRED: ErrorInfo(
        "Discount expired",
        "This discount code has expired.",
        "Remove the discount code and try again, or use a different code.",
        can_retry=True,
    ),
    ErrorCode.DISCOUNT_MINIMUM: ErrorInfo(
        "Minimum not met",
        "Your order doesn't meet the minimum for this discount.",
        "Add more items to your cart or remove the discount code.",
        can_retry=True,
    ),
    ErrorCode.DISCOUNT_FIRST_TIME: ErrorInfo(
        "First-time customers only",
        "This discount is for first-time customers only.",
        "Remove this code if you've ordered before.",
        can_retry=True,
    ),
    ErrorCode.DISCOUNT_EXHAUSTED: ErrorInfo(
        "Discount unavailable",
        "This discount code has reached its maximum number of uses.",
        "Remove the discount code to proceed, or use a different code.",
        can_retry=True,
    ),
    ErrorCode.VARIANT_NOT_FOUND: ErrorInfo(
        "Product unavailable",
        "One or more items in your cart are no longer available.",
        "Remove the unavailable items and try again, or browse our other products.",
        can_retry=False,
        should_clear_cart=True,
    ),
    ErrorCode.UNAVAILABLE: ErrorInfo(
        "Product unavailable",
        "This product is temporarily unavailable.",
        "Please remove it from your cart and try a different product.",
        can_retry=False,
    ),
    ErrorCode.PRICE_NOT_CONFIGURED: ErrorInfo(
        "Pricing error",
        "There was an issue with the pricing for one of your items.",
        "Please remove the item and add it again. If the problem persists, contact us.",
        can_retry=False,
        contact_support=True,
    ),
    ErrorCode.OUT_OF_STOCK: ErrorInfo(
        "Out of stock",
        "Some items in your cart are out of stock.",
        "Reduce the quantity or remove the out-of-stock items.",
        can_retry=False,
    ),
    ErrorCode.STOCK_UNKNOWN: ErrorInfo(
        "Product unavailable",
        "We couldn't confirm stock for one of your items.",
        "Please remove it from your cart or contact us to complete your order.",
        can_retry=False,
        contact_support=True,
    ),
    ErrorCode.CHECKOUT_DISABLED: ErrorInfo(
        "Checkout paused",
        "Checkout is temporarily unavailable.",
        "Please try again a little later.",
        can_retry=True,
    ),
    ErrorCode.RATE_LIMITED: ErrorInfo(
        "Please slow down",
        "You've made too many checkout attempts. This is for your security.",
        "Wait a moment, then try again.",
        can_retry=True,
    ),
    ErrorCode.DUPLICATE_REQUEST: ErrorInfo(
        "Request already processed",
        "Your checkout request is being processed or was already completed.",
        "Check your email for an order confirmation. If you didn't complete checkout, wait a moment and try again.",
        can_retry=True,
    ),
    ErrorCode.PROVIDER_UNAVAILABLE: ErrorInfo(
        "Connection issue",
        "We couldn't connect to the payment system.",
        "Check your internet connection and try again.",
        can_retry=True,
    ),
    ErrorCode.PROVIDER_ERROR: ErrorInfo(
        "Payment system error",
        "Our payment system is experiencing issues.",
        "Please try again in a few minutes.",
        can_retry=True,
        contact_support=True,
    ),
    ErrorCode.ITEM_CHECK_FAILED: ErrorInfo(
        "Something went wrong",
        "We couldn't check one of your items.",
        "Please try again. If the problem continues, contact us for help.",
        can_retry=True,
        contact_support=True,
    ),
    ErrorCode.PRICE_DRIFT: ErrorInfo(
        "Pricing error",
        "There was an issue with the pricing for one of your items.",
        "Please try again later. If the problem persists, contact us.",
        can_retry=False,
        contact_support=True,
    ),
}

_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AVAILABILITY: 400,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.IDEMPOTENCY_CONFLICT: 409,
    ErrorKind.UPSTREAM: 502,
    ErrorKind.INTEGRITY: 409,
}

# Chaque code doit être rattaché à une famille et à un message client
_UNMAPPED = (set(ErrorCode) - set(_KINDS)) | (set(ErrorCode) - set(_INFOS))
if _UNMAPPED:
    raise RuntimeError(f"ErrorCode without kind or message: {sorted(c.value for c in _UNMAPPED)}")


def kind_of(code: ErrorCode) -> ErrorKind:
    return _KINDS[code]


def info_for(code: ErrorCode) -> ErrorInfo:
    return _INFOS[code]


class CheckoutError(Exception):
    """
    Erreur typée du checkout.
    - code: raison précise (ErrorCode), d'où découlent la famille et le message client
    - detail: texte interne (logs uniquement, jamais renvoyé tel quel au client)
    - items: erreurs par article [{priceRef, error, available?}] pour affichage détaillé
    - public_message: remplace le titre dans le champ "error" (message sans identifiant)
    """

    def __init__(
        self,
        code: ErrorCode,
        detail: Optional[str] = None,
        items: Optional[List[Dict[str, Any]]] = None,
        public_message: Optional[str] = None,
    ):
        super().__init__(detail or public_message or code.value)
        self.code = code
        self.detail = detail
        self.items = items or []
        self.public_message = public_message

    @property
    def kind(self) -> ErrorKind:
        return kind_of(self.code)

    @property
    def info(self) -> ErrorInfo:
        return info_for(self.code)

    @property
    def status_code(self) -> int:
        return _STATUS[self.kind]

    def to_payload(self) -> Dict[str, Any]:
        info = self.info
        payload: Dict[str, Any] = {
            "error": sanitize_error_message(self.public_message) if self.public_message else info.title,
            "code": self.code.value,
            "kind": self.kind.value,
            "title": info.title,
            "message": info.message,
            "suggestion": info.suggestion,
            "canRetry": info.can_retry,
        }
        if info.contact_support:
            payload["contactSupport"] = True
        if info.should_clear_cart:
            payload["shouldClearCart"] = True
        if self.items:
            payload["details"] = [
                {**item, "error": sanitize_error_message(str(item.get("error") or ""))}
                for item in self.items
            ]
        return payload


_SANITIZERS = [
    (re.compile(r"\bprice_[a-zA-Z0-9]+"), "[item]"),
    (re.compile(r"\bprod_[a-zA-Z0-9]+"), "[item]"),
    (re.compile(r"\bcus_[a-zA-Z0-9]+"), "[account]"),
    (re.compile(r"\bcs_[a-zA-Z0-9_]+"), "[session]"),
    (re.compile(r"\b(pi|ch|re|sub|in)_[a-zA-Z0-9]+"), "[reference]"),
    (re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE), "[id]"),
    (re.compile(r"stripe", re.IGNORECASE), "payment system"),
]


def sanitize_error_message(message: str) -> str:
    """
    Retire d'un message tout identifiant prix/client/session/UUID
    et le nom du prestataire de paiement avant exposition au client.
    """
    sanitized = message or ""
    for pattern, replacement in _SANITIZERS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized
