"""
Écritures du webhook hors commandes: abonnements, profils, journal des échecs.
"""
import logging
from typing import Any, Dict, Optional

import storefront.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module storefront.webhooks.repository
def record_failure(event_id: Optional[str], event_type: Optional[str], error: str, payload: Optional[Dict[str, Any]] = None) -> None:
    """
    Journalise un événement non appliqué (webhook_failures) avant de répondre 500.
    Best-effort: si la base est indisponible, on garde au moins la trace dans les logs.
    """
    try:
        (
            supabase_client.get_service_supabase()
            .table("webhook_failures")
            .insert({
                "event_id": event_id,
                "event_type": event_type,
                "error_message": (error or "")[:2000],
                "payload": payload or {},
            })
            .execute()
        )
    except Exception:
        logger.exception("webhooks.repository.record_failure failed event_id=%s type=%s", event_id, event_type)


def upsert_subscription(row: Dict[str, Any]) -> None:
    """Upsert sur stripe_subscription_id: l'ordre d'arrivée des événements est indifférent."""
    (
        supabase_client.get_service_supabase()
        .table("subscriptions")
        .upsert(row, on_conflict="stripe_subscription_id")
        .execute()
    )


def update_subscription(stripe_subscription_id: str, fields: Dict[str, Any]) -> None:
    (
        supabase_client.get_service_supabase()
        .table("subscriptions")
        .update(fields)
        .eq("stripe_subscription_id", stripe_subscription_id)
        .execute()
    )


def get_subscription(stripe_subscription_id: str) -> Optional[Dict[str, Any]]:
    res = (
        supabase_client.get_service_supabase()
        .table("subscriptions")
        .select("*")
        .eq("stripe_subscription_id", stripe_subscription_id)
        .limit(1)
        .execute()
    )
    rows = res.data or []
    return rows[0] if rows else None


def get_profile_by_customer(stripe_customer_id: str) -> Optional[Dict[str, Any]]:
    res = (
        supabase_client.get_service_supabase()
        .table("profiles")
        .select("id, email, full_name")
        .eq("stripe_customer_id", stripe_customer_id)
        .limit(1)
        .execute()
    )
    rows = res.data or []
    return rows[0] if rows else None
