"""
Accès aux codes de réduction internes (table discounts).
"""
import logging
from typing import Any, Dict, Optional

import storefront.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module storefront.discounts.repository
def get_discount_by_code(code: str) -> Optional[Dict[str, Any]]:
    """Recherche insensible à la casse; None si aucun code ne correspond."""
    # % et _ saisis par le client ne doivent pas servir de jokers ILIKE
    pattern = code.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    res = (
        supabase_client.get_service_supabase()
        .table("discounts")
        .select("*")
        .ilike("code", pattern)
        .limit(1)
        .execute()
    )
    rows = res.data or []
    return rows[0] if rows else None


def redeem_discount(discount_id: str, session_id: str) -> bool:
    """
    Incrément transactionnel de times_redeemed (RPC redeem_discount):
    - une seule fois par session (rejeu du webhook sans effet)
    - jamais au-delà de max_redemptions
    Retour: True si la session compte désormais comme une utilisation.
    """
    res = (
        supabase_client.get_service_supabase()
        .rpc("redeem_discount", {"p_discount_id": discount_id, "p_session_id": session_id})
        .execute()
    )
    return bool(res.data)
