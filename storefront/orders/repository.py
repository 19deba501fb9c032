"""
Accès aux commandes (table orders).

Une commande est créée par le webhook checkout.session.completed et n'est jamais supprimée.
stripe_session_id est unique: l'insertion « si absente » rend le rejeu du webhook sans effet.
"""
import logging
import re
from typing import Any, Dict, List, Optional

import storefront.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module storefront.orders.repository
def insert_order_if_absent(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    INSERT ... ON CONFLICT (stripe_session_id) DO NOTHING.
    Retour: la ligne créée, ou None si la session avait déjà sa commande (rejeu).
    """
    res = (
        supabase_client.get_service_supabase()
        .table("orders")
        .upsert(row, on_conflict="stripe_session_id", ignore_duplicates=True)
        .execute()
    )
    rows = res.data or []
    return rows[0] if rows else None


def get_order(order_id: str) -> Optional[Dict[str, Any]]:
    res = (
        supabase_client.get_service_supabase()
        .table("orders")
        .select("*")
        .eq("id", order_id)
        .limit(1)
        .execute()
    )
    rows = res.data or []
    return rows[0] if rows else None


def get_order_by_session(session_id: str) -> Optional[Dict[str, Any]]:
    res = (
        supabase_client.get_service_supabase()
        .table("orders")
        .select("*")
        .eq("stripe_session_id", session_id)
        .limit(1)
        .execute()
    )
    rows = res.data or []
    return rows[0] if rows else None


def get_order_by_payment_intent(payment_intent_id: str) -> Optional[Dict[str, Any]]:
    res = (
        supabase_client.get_service_supabase()
        .table("orders")
        .select("*")
        .eq("stripe_payment_intent_id", payment_intent_id)
        .limit(1)
        .execute()
    )
    rows = res.data or []
    return rows[0] if rows else None


def update_order(order_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Met à jour la commande (updated_at posé par trigger). Retour: ligne à jour ou None."""
    res = (
        supabase_client.get_service_supabase()
        .table("orders")
        .update(fields)
        .eq("id", order_id)
        .execute()
    )
    rows = res.data or []
    return rows[0] if rows else None


def list_orders(
    *,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    search: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    """Commandes les plus récentes d'abord, filtres optionnels (recherche email/session)."""
    query = (
        supabase_client.get_service_supabase()
        .table("orders")
        .select("*")
        .order("created_at", desc=True)
        .range(offset, offset + limit - 1)
    )
    if status:
        query = query.eq("status", status)
    if payment_status:
        query = query.eq("payment_status", payment_status)
    if search:
        # , ( ) structurent le filtre or_; % et * seraient des jokers
        term = re.sub(r"[,()%*\\\"]", "", search)
        if term:
            query = query.or_(f"customer_email.ilike.%{term}%,stripe_session_id.ilike.%{term}%")
    if start_date:
        query = query.gte("created_at", start_date)
    if end_date:
        query = query.lte("created_at", end_date)
    res = query.execute()
    return res.data or []


def fetch_order_totals() -> List[Dict[str, Any]]:
    """Colonnes minimales pour les statistiques admin."""
    res = (
        supabase_client.get_service_supabase()
        .table("orders")
        .select("amount_total, status, payment_status")
        .execute()
    )
    return res.data or []
