from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# module storefront.sync.models
MISSING_IN_PROVIDER = "missing_in_provider"
MISSING_IN_STORE = "missing_in_store"
PRICE_MISMATCH = "price_mismatch"
INACTIVE_MISMATCH = "inactive_mismatch"

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"


@dataclass
class SyncIssue:
    """Constat de réconciliation, recalculé à chaque contrôle (jamais stocké)."""
    type: str
    severity: str
    details: str
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    variant_id: Optional[str] = None
    variant_label: Optional[str] = None
    stripe_price_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type, "severity": self.severity, "details": self.details}
        for key, value in (
            ("productId", self.product_id),
            ("productName", self.product_name),
            ("variantId", self.variant_id),
            ("variantLabel", self.variant_label),
            ("stripePriceId", self.stripe_price_id),
        ):
            if value is not None:
                out[key] = value
        return out


@dataclass
class SyncReport:
    issues: List[SyncIssue] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)

    @property
    def errors(self) -> List[SyncIssue]:
        return [i for i in self.issues if i.severity == SEVERITY_ERROR]

    @property
    def healthy(self) -> bool:
        return not self.errors

    def sorted_issues(self) -> List[SyncIssue]:
        # tri stable: erreurs d'abord, ordre d'origine conservé ensuite
        return sorted(self.issues, key=lambda i: 0 if i.severity == SEVERITY_ERROR else 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "healthy": self.healthy,
            "issues": [i.to_dict() for i in self.sorted_issues()],
            "stats": dict(self.stats),
        }


@dataclass
class VariantSyncResult:
    variant_id: str
    action: str  # "unchanged" | "created" | "repointed"
    stripe_price_id: Optional[str]
    previous_price_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variantId": self.variant_id,
            "action": self.action,
            "stripePriceId": self.stripe_price_id,
            "previousPriceId": self.previous_price_id,
        }


@dataclass
class SyncResult:
    product_id: str
    stripe_product_id: Optional[str]
    product_action: str  # "unchanged" | "created" | "updated" | "relinked"
    variants: List[VariantSyncResult] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.product_action != "unchanged" or any(v.action != "unchanged" for v in self.variants)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "stripeProductId": self.stripe_product_id,
            "productAction": self.product_action,
            "changed": self.changed,
            "variants": [v.to_dict() for v in self.variants],
        }
