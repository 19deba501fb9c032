from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from storefront.checkout.errors import ErrorCode

# module storefront.cart.models
BILLING_ONE_TIME = "one_time"
BILLING_RECURRING = "recurring"


@dataclass
class CartLine:
    """Ligne brute reçue du client: seule la référence de prix est de confiance."""
    price_ref: str
    quantity: Any
    product_name: Optional[str] = None

    @classmethod
    def from_payload(cls, raw: Any) -> "CartLine":
        raw = raw if isinstance(raw, dict) else {}
        price_ref = raw.get("priceRef") or raw.get("priceId") or raw.get("price") or ""
        return cls(
            price_ref=str(price_ref),
            quantity=raw.get("quantity"),
            product_name=raw.get("productName"),
        )


@dataclass
class ItemError:
    price_ref: str
    error: str
    code: ErrorCode
    available: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"priceRef": self.price_ref, "error": self.error}
        if self.available is not None:
            out["available"] = self.available
        return out


@dataclass
class ResolvedItem:
    """Ligne validée, rattachée à sa variante en base."""
    price_ref: str
    quantity: int
    variant: Dict[str, Any]

    @property
    def variant_id(self) -> str:
        return str(self.variant.get("id"))

    @property
    def billing_type(self) -> str:
        return str(self.variant.get("billing_type") or BILLING_ONE_TIME)

    @property
    def tracks_inventory(self) -> bool:
        return bool(self.variant.get("track_inventory"))

    @property
    def product(self) -> Dict[str, Any]:
        return self.variant.get("products") or {}


@dataclass
class ValidationResult:
    errors: List[ItemError] = field(default_factory=list)
    items: List[ResolvedItem] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        if self.valid:
            return {"valid": True}
        return {"valid": False, "errors": [e.to_dict() for e in self.errors]}
