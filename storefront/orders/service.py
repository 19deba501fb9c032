"""
Administration des commandes: consultation, changement de statut, remboursement.

Outil interne: les erreurs Stripe sont renvoyées telles quelles à l'admin
(pas de taxonomie client ici).
"""
import logging
import re
from typing import Any, Dict, List, Optional

import stripe

from storefront.payments import stripe_client
from . import repository as orders_repo

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("pending", "processing", "completed", "failed", "refunded")
PAYMENT_STATUSES = ("pending", "succeeded", "failed", "refunded", "partial_refund")

# Caractères réservés de la syntaxe or=(...) de PostgREST
_SEARCH_RESERVED = re.compile(r"[,()*%]")


class OrderNotFound(LookupError):
    pass


class OrderActionError(Exception):
    """Refus métier d'une action admin (message affiché tel quel)."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


# module storefront.orders.service
def get_order(order_id: str) -> Dict[str, Any]:
    order = orders_repo.get_order(order_id)
    if not order:
        raise OrderNotFound(order_id)
    return order


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
    if status and status not in ORDER_STATUSES:
        raise OrderActionError("Invalid order status")
    if payment_status and payment_status not in PAYMENT_STATUSES:
        raise OrderActionError("Invalid payment status")
    clean_search = _SEARCH_RESERVED.sub("", search or "").strip() or None
    return orders_repo.list_orders(
        status=status,
        payment_status=payment_status,
        search=clean_search,
        start_date=start_date,
        end_date=end_date,
        limit=max(1, min(int(limit), 200)),
        offset=max(0, int(offset)),
    )


def order_stats() -> Dict[str, Any]:
    """Totaux en centimes: chiffre d'affaires, panier moyen, décompte par statut."""
    rows = orders_repo.fetch_order_totals()
    total = len(rows)
    revenue = sum(int(r.get("amount_total") or 0) for r in rows)

    def _count(status: str) -> int:
        return sum(1 for r in rows if r.get("status") == status)

    return {
        "totalOrders": total,
        "totalRevenue": revenue,
        "pendingOrders": _count("pending"),
        "processingOrders": _count("processing"),
        "completedOrders": _count("completed"),
        "failedOrders": _count("failed"),
        "refundedOrders": _count("refunded"),
        "averageOrderValue": (revenue // total) if total else 0,
    }


def update_order_status(order_id: str, status: str) -> Dict[str, Any]:
    """
    Correction manuelle du statut: n'importe quelle valeur définie vers une autre.
    Seule contrainte: le nouveau statut doit différer de l'actuel.
    """
    if status not in ORDER_STATUSES:
        raise OrderActionError("Invalid order status")
    order = get_order(order_id)
    if order.get("status") == status:
        raise OrderActionError(f"Order is already {status}")
    updated = orders_repo.update_order(order_id, {"status": status})
    logger.info("orders.update_order_status order_id=%s %s -> %s", order_id, order.get("status"), status)
    return updated or {**order, "status": status}


def _payment_intent_for(order: Dict[str, Any]) -> Optional[str]:
    ref = order.get("stripe_payment_intent_id")
    if ref:
        return str(ref)
    session_id = order.get("stripe_session_id")
    if not session_id:
        return None
    session = stripe_client.get_session(session_id)
    intent = session.get("payment_intent")
    if isinstance(intent, dict):
        intent = intent.get("id")
    return str(intent) if intent else None


def refund_order(order_id: str, amount: Optional[int] = None) -> Dict[str, Any]:
    """
    Remboursement total (amount=None) ou partiel (centimes).
    - montant contrôlé localement (0 < amount <= amount_total) avant tout appel Stripe
    - succès total: status=refunded, payment_status=refunded
    - succès partiel: payment_status=partial_refund
    Erreurs: OrderNotFound, OrderActionError (message Stripe brut si refus)
    """
    order = get_order(order_id)
    total = int(order.get("amount_total") or 0)
    if amount is not None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise OrderActionError("Invalid refund amount")
        if amount > total:
            raise OrderActionError(f"Refund amount ({amount}) exceeds order total ({total})")
    if order.get("payment_status") == "refunded":
        raise OrderActionError("Order is already refunded")

    try:
        payment_intent = _payment_intent_for(order)
        if not payment_intent:
            raise OrderActionError("Payment intent not found")
        refund = stripe_client.create_refund(
            payment_intent=payment_intent,
            amount=amount,
            metadata={"order_id": str(order_id)},
        )
    except stripe.StripeError as e:
        logger.warning("orders.refund_order stripe refused order_id=%s", order_id)
        raise OrderActionError(getattr(e, "user_message", None) or str(e), status_code=502)

    refund_status = refund.get("status")
    if refund_status not in ("succeeded", "pending"):
        raise OrderActionError(f"Refund failed (status={refund_status})", status_code=502)

    full = amount is None or amount == total
    fields = {"status": "refunded", "payment_status": "refunded"} if full else {"payment_status": "partial_refund"}
    if refund_status == "succeeded":
        orders_repo.update_order(order_id, fields)
    logger.info("orders.refund_order order_id=%s full=%s status=%s", order_id, full, refund_status)
    return {
        "refundId": refund.get("id"),
        "status": refund_status,
        "amount": refund.get("amount") if refund.get("amount") is not None else (amount or total),
        "full": full,
    }
