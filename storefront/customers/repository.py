"""
Profils clients (table profiles): rattachement au client Stripe.
"""
import logging
from typing import Any, Dict, Optional

import storefront.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module storefront.customers.repository
def get_profile(user_id: str) -> Optional[Dict[str, Any]]:
    if not user_id:
        return None
    res = (
        supabase_client.get_service_supabase()
        .table("profiles")
        .select("id, email, full_name, stripe_customer_id")
        .eq("id", user_id)
        .limit(1)
        .execute()
    )
    rows = res.data or []
    return rows[0] if rows else None


def get_stripe_customer_id(user_id: Optional[str]) -> Optional[str]:
    """
    Client Stripe connu du profil, sinon None.
    Best-effort: une erreur de lecture retombe sur l'email (Stripe crée le client).
    """
    if not user_id:
        return None
    try:
        profile = get_profile(user_id)
    except Exception:
        logger.exception("customers.repository.get_stripe_customer_id failed user_id=%s", user_id)
        return None
    return (profile or {}).get("stripe_customer_id") or None


def bind_stripe_customer(user_id: str, stripe_customer_id: str) -> None:
    """Renseigne profiles.stripe_customer_id s'il est encore vide (jamais écrasé)."""
    (
        supabase_client.get_service_supabase()
        .table("profiles")
        .update({"stripe_customer_id": stripe_customer_id})
        .eq("id", user_id)
        .is_("stripe_customer_id", "null")
        .execute()
    )


def count_paid_orders(user_id: Optional[str] = None, email: Optional[str] = None) -> int:
    """Nombre de commandes payées (sert aux codes « première commande »)."""
    if not user_id and not email:
        return 0
    query = (
        supabase_client.get_service_supabase()
        .table("orders")
        .select("id", count="exact")
        .eq("payment_status", "succeeded")
    )
    query = query.eq("user_id", user_id) if user_id else query.eq("customer_email", email)
    res = query.execute()
    if getattr(res, "count", None) is not None:
        return int(res.count)
    return len(res.data or [])
