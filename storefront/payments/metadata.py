"""
Sérialisation/désérialisation des métadonnées Stripe de la session checkout.

La session porte de quoi reconstruire la commande au webhook sans relire le panier
(éphémère, côté navigateur): user_id, email, composition du panier, mode, remise.
Stripe limite chaque valeur à 500 caractères: le panier est tronqué proprement.
"""
import json
from typing import Any, Dict, List, Optional

# module storefront.payments.metadata
_MAX_VALUE = 500


def _compact_cart(lines: List[Dict[str, Any]]) -> str:
    """
    JSON compact [{"p": priceRef, "q": qty, "v": variant_id}] tenant dans 500 caractères.
    Au-delà, on ne garde que les premières lignes (cart_item_count reste exact).
    """
    kept: List[Dict[str, Any]] = []
    for line in lines:
        candidate = kept + [{"p": line.get("priceRef"), "q": line.get("quantity"), "v": line.get("variantId")}]
        encoded = json.dumps(candidate, separators=(",", ":"))
        if len(encoded) > _MAX_VALUE:
            break
        kept = candidate
    return json.dumps(kept, separators=(",", ":"))


def make_metadata(
    *,
    user_id: Optional[str],
    customer_email: Optional[str],
    lines: List[Dict[str, Any]],
    mode: str,
    idempotency_key: str,
    discount_code: Optional[str] = None,
    discount_id: Optional[str] = None,
) -> Dict[str, str]:
    """Métadonnées de session (toutes les valeurs en str, exigence Stripe)."""
    meta = {
        "user_id": user_id or "guest",
        "customer_email": customer_email or "",
        "cart": _compact_cart(lines),
        "cart_item_count": str(sum(int(li.get("quantity") or 0) for li in lines)),
        "checkout_mode": mode,
        "idempotency_key": idempotency_key,
    }
    if discount_code:
        meta["discount_code"] = discount_code[:_MAX_VALUE]
    if discount_id:
        meta["discount_id"] = str(discount_id)
    return meta


def extract_metadata(session: Dict[str, Any]) -> Dict[str, Any]:
    """
    Extrait les métadonnées d'une session (webhook ou lecture directe).
    - user_id "guest" -> None
    - cart: [{"priceRef", "quantity", "variantId"}], [] si JSON illisible
    """
    meta = (session or {}).get("metadata") or {}
    user_id = meta.get("user_id")
    if not user_id or user_id == "guest":
        user_id = None
    try:
        raw_cart = json.loads(meta.get("cart") or "[]")
    except ValueError:
        raw_cart = []
    cart = [
        {"priceRef": c.get("p"), "quantity": int(c.get("q") or 0), "variantId": c.get("v")}
        for c in raw_cart
        if isinstance(c, dict)
    ]
    return {
        "user_id": user_id,
        "customer_email": meta.get("customer_email") or None,
        "cart": cart,
        "checkout_mode": meta.get("checkout_mode"),
        "discount_code": meta.get("discount_code") or None,
        "discount_id": meta.get("discount_id") or None,
        "idempotency_key": meta.get("idempotency_key"),
    }
