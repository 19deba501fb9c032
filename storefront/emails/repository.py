"""
File d'emails durable (table email_queue), alimentée par le webhook et vidée par le cron.

dedupe_key est unique: un même événement rejoué n'ajoute jamais un second email.
Les entrées épuisées (retry_count >= max) restent en place pour inspection.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import storefront.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module storefront.emails.repository
def enqueue(
    *,
    to_email: str,
    email_type: str,
    template_data: Dict[str, Any],
    dedupe_key: str,
    user_id: Optional[str] = None,
) -> bool:
    """Ajoute un email à la file. Retour: False si la clé de dédoublonnage existait déjà."""
    row = {
        "to_email": to_email,
        "email_type": email_type,
        "template_data": template_data,
        "dedupe_key": dedupe_key,
        "user_id": user_id,
        "sent": False,
        "retry_count": 0,
    }
    res = (
        supabase_client.get_service_supabase()
        .table("email_queue")
        .upsert(row, on_conflict="dedupe_key", ignore_duplicates=True)
        .execute()
    )
    return bool(res.data)


def fetch_pending(limit: int, max_retries: int) -> List[Dict[str, Any]]:
    """sent = false AND retry_count < max_retries, plus anciennes d'abord."""
    res = (
        supabase_client.get_service_supabase()
        .table("email_queue")
        .select("*")
        .eq("sent", False)
        .lt("retry_count", max_retries)
        .order("created_at")
        .limit(limit)
        .execute()
    )
    return res.data or []


def mark_sent(entry_id: Any) -> None:
    (
        supabase_client.get_service_supabase()
        .table("email_queue")
        .update({
            "sent": True,
            "sent_at": datetime.now(timezone.utc).isoformat(),
            "error_message": None,
        })
        .eq("id", entry_id)
        .execute()
    )


def mark_failed(entry_id: Any, retry_count: int, error_message: str) -> None:
    (
        supabase_client.get_service_supabase()
        .table("email_queue")
        .update({"retry_count": retry_count, "error_message": error_message[:1000]})
        .eq("id", entry_id)
        .execute()
    )
