"""
Accès aux données catalogue (products, product_variants, inventory_reservations).

Les lectures du checkout lèvent en cas d'erreur Supabase: un échec de lecture
ne doit jamais être confondu avec « produit introuvable ».
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

import storefront.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

VARIANT_COLUMNS = (
    "id, product_id, size_key, label, price_usd, billing_type, recurring_interval, "
    "recurring_interval_count, stripe_price_id, stock_quantity, track_inventory, "
    "is_active, is_default, display_order"
)
PRODUCT_COLUMNS = "id, name, slug, is_active, published_at, stripe_product_id"

# module storefront.catalog.repository
def get_variants_by_price_ids(price_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """
    {stripe_price_id: variant} avec le produit parent embarqué sous "products".
    Une seule requête pour tout le panier (nombre d'appels borné par la taille du panier).
    """
    ids = sorted({str(p) for p in price_ids if p})
    if not ids:
        return {}
    res = (
        supabase_client.get_service_supabase()
        .table("product_variants")
        .select(f"{VARIANT_COLUMNS}, products({PRODUCT_COLUMNS})")
        .in_("stripe_price_id", ids)
        .execute()
    )
    return {str(v.get("stripe_price_id")): v for v in (res.data or [])}


def list_products_with_variants(active_only: bool = True) -> List[Dict[str, Any]]:
    """Produits avec leurs variantes (clé "product_variants")."""
    query = (
        supabase_client.get_service_supabase()
        .table("products")
        .select(f"{PRODUCT_COLUMNS}, product_variants({VARIANT_COLUMNS})")
    )
    if active_only:
        query = query.eq("is_active", True)
    res = query.order("name").execute()
    return res.data or []


def get_product_with_variants(product_id: str) -> Optional[Dict[str, Any]]:
    res = (
        supabase_client.get_service_supabase()
        .table("products")
        .select(f"{PRODUCT_COLUMNS}, product_variants({VARIANT_COLUMNS})")
        .eq("id", product_id)
        .limit(1)
        .execute()
    )
    rows = res.data or []
    return rows[0] if rows else None


def set_product_stripe_id(product_id: str, stripe_product_id: str) -> None:
    (
        supabase_client.get_service_supabase()
        .table("products")
        .update({"stripe_product_id": stripe_product_id})
        .eq("id", product_id)
        .execute()
    )


def set_variant_stripe_price(variant_id: str, stripe_price_id: str) -> None:
    (
        supabase_client.get_service_supabase()
        .table("product_variants")
        .update({"stripe_price_id": stripe_price_id})
        .eq("id", variant_id)
        .execute()
    )


# --- Réservations de stock (RPC atomiques côté Postgres) ---

def reserve_inventory(session_id: str, variant_id: str, quantity: int) -> bool:
    """
    Décrément atomique « si disponible » (UPDATE ... WHERE stock_quantity >= qty).
    Idempotent par (session_id, variant_id): une session dupliquée ne réserve qu'une fois.
    Retour: True si réservé (ou déjà réservé), False si stock insuffisant.
    """
    res = (
        supabase_client.get_service_supabase()
        .rpc(
            "reserve_inventory",
            {"p_session_id": session_id, "p_variant_id": variant_id, "p_quantity": int(quantity)},
        )
        .execute()
    )
    return bool(res.data)


def release_inventory_reservations(session_id: str) -> int:
    """Restitue le stock des réservations encore actives d'une session. Retour: nb de lignes."""
    res = (
        supabase_client.get_service_supabase()
        .rpc("release_inventory_reservations", {"p_session_id": session_id})
        .execute()
    )
    return int(res.data or 0)


def commit_inventory_reservations(session_id: str) -> int:
    """Rend définitives les réservations d'une session payée. Retour: nb de lignes."""
    res = (
        supabase_client.get_service_supabase()
        .rpc("commit_inventory_reservations", {"p_session_id": session_id})
        .execute()
    )
    return int(res.data or 0)
