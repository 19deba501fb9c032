"""
Traitement des événements Stripe (après vérification de signature).

Chaque type d'événement connu a son handler dans _HANDLERS (table exhaustive,
contrôlée à l'import); les autres types sont acquittés sans effet.

Rejeu et désordre: Stripe peut renvoyer ou réordonner les événements.
Toutes les écritures sont donc idempotentes:
- commande insérée « si absente » (stripe_session_id unique)
- abonnement upserté sur stripe_subscription_id
- emails mis en file avec une dedupe_key unique (un seul email par événement métier)
- réservations de stock et utilisation de code promo: RPC idempotentes par session
- remboursement reçu avant sa commande: échec, donc nouvel essai de Stripe
- facture en échec reçue avant son abonnement: ligne reconstruite depuis Stripe

Une écriture en échec lève WebhookProcessingError après journalisation dans
webhook_failures: la vue répond 500 et Stripe réessaiera plus tard.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import stripe

from storefront.catalog import repository as catalog_repo
from storefront.customers import repository as customers_repo
from storefront.discounts import service as discounts_service
from storefront.emails import service as email_service
from storefront.orders import repository as orders_repo
from storefront.payments import stripe_client
from storefront.payments.metadata import extract_metadata
from . import repository as webhook_repo
from .events import EventKind

logger = logging.getLogger(__name__)


class WebhookProcessingError(Exception):
    def __init__(self, event_id: Optional[str], event_type: Optional[str], cause: Exception):
        super().__init__(f"{event_type} ({event_id}): {cause}")
        self.event_id = event_id
        self.event_type = event_type
        self.cause = cause


# module storefront.webhooks.service
def _ref(value: Any) -> Optional[str]:
    """Identifiant Stripe, que le champ soit développé (objet) ou non (chaîne)."""
    if isinstance(value, dict):
        value = value.get("id")
    return str(value) if value else None


def _iso(epoch: Any) -> Optional[str]:
    if not epoch:
        return None
    return datetime.fromtimestamp(int(epoch), tz=timezone.utc).isoformat()


def _order_number(order: Optional[Dict[str, Any]]) -> str:
    return str((order or {}).get("id") or "")[:8].upper()


def _session_email(session: Dict[str, Any], meta: Dict[str, Any]) -> Optional[str]:
    details = session.get("customer_details") or {}
    return details.get("email") or session.get("customer_email") or meta.get("customer_email")


def _email_items(session_id: str, meta: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Lignes pour l'email de confirmation; à défaut de Stripe, la composition des métadonnées."""
    try:
        line_items = stripe_client.list_session_line_items(session_id)
    except stripe.StripeError:
        logger.warning("webhooks.service line items unavailable session=%s", session_id)
        return [{"name": "Item", "quantity": c["quantity"]} for c in meta.get("cart") or []]
    return [
        {
            "name": li.get("description") or "Item",
            "quantity": int(li.get("quantity") or 1),
            "amount": int(li.get("amount_total") or 0),
        }
        for li in line_items
    ]


# --- checkout.session.* ---

def handle_checkout_completed(session: Dict[str, Any]) -> str:
    """
    Paiement validé côté Stripe:
    - commande créée une seule fois (rejeu: aucune nouvelle ligne)
    - réservations de stock rendues définitives
    - code promo interne compté une fois pour la session
    - client Stripe rattaché au profil s'il ne l'était pas
    - email de confirmation mis en file (order_confirmation / subscription_confirmation)
    """
    session_id = str(session.get("id") or "")
    meta = extract_metadata(session)
    email = _session_email(session, meta)
    paid = session.get("payment_status") in ("paid", "no_payment_required")
    customer_id = _ref(session.get("customer"))
    mode = session.get("mode") or meta.get("checkout_mode") or "payment"

    row = {
        "stripe_session_id": session_id,
        "stripe_customer_id": customer_id,
        "stripe_payment_intent_id": _ref(session.get("payment_intent")),
        "stripe_subscription_id": _ref(session.get("subscription")),
        "user_id": meta.get("user_id"),
        "customer_email": email,
        "amount_total": int(session.get("amount_total") or 0),
        "amount_subtotal": int(session.get("amount_subtotal") or 0),
        "currency": session.get("currency") or "usd",
        "status": "processing" if paid else "pending",
        "payment_status": "succeeded" if paid else "pending",
        "metadata": session.get("metadata") or {},
    }
    created = orders_repo.insert_order_if_absent(row)
    order = created or orders_repo.get_order_by_session(session_id)

    catalog_repo.commit_inventory_reservations(session_id)
    if paid:
        discounts_service.redeem_for_session(meta.get("discount_id"), session_id)
    if meta.get("user_id") and customer_id:
        customers_repo.bind_stripe_customer(meta["user_id"], customer_id)

    email_type = "subscription_confirmation" if mode == "subscription" else "order_confirmation"
    email_service.enqueue_email(
        email_type,
        email,
        {
            "order_number": _order_number(order),
            "customer_name": (session.get("customer_details") or {}).get("name"),
            "items": _email_items(session_id, meta),
            "subtotal": row["amount_subtotal"],
            "total": row["amount_total"],
            "currency": row["currency"],
        },
        dedupe_key=f"{email_type}:{session_id}",
        user_id=meta.get("user_id"),
    )
    logger.info("webhooks.checkout_completed session=%s created=%s paid=%s", session_id, bool(created), paid)
    return "created" if created else "duplicate"


def handle_checkout_expired(session: Dict[str, Any]) -> str:
    """Session abandonnée: le stock réservé redevient disponible."""
    released = catalog_repo.release_inventory_reservations(str(session.get("id") or ""))
    return f"released:{released}"


# --- customer.subscription.* / invoice.* ---

def _first_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or [{}]
    return items[0] or {}


def _profile_for(customer_id: Optional[str]) -> Optional[Dict[str, Any]]:
    return webhook_repo.get_profile_by_customer(customer_id) if customer_id else None


def _subscription_row(subscription: Dict[str, Any], profile: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    item = _first_item(subscription)
    price = item.get("price") or {}
    customer_id = _ref(subscription.get("customer"))
    user_id = (profile or {}).get("id") or extract_metadata(subscription).get("user_id")
    # Selon la version d'API, la période est portée par l'abonnement ou par l'item
    period_start = subscription.get("current_period_start") or item.get("current_period_start")
    period_end = subscription.get("current_period_end") or item.get("current_period_end")
    return {
        "stripe_subscription_id": str(subscription.get("id")),
        "stripe_customer_id": customer_id,
        "user_id": user_id,
        "stripe_price_id": _ref(price),
        "stripe_product_id": _ref(price.get("product")),
        "status": subscription.get("status"),
        "current_period_start": _iso(period_start),
        "current_period_end": _iso(period_end),
        "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
        "canceled_at": _iso(subscription.get("canceled_at")),
    }


def handle_subscription_change(subscription: Dict[str, Any]) -> str:
    profile = _profile_for(_ref(subscription.get("customer")))
    row = _subscription_row(subscription, profile)
    webhook_repo.upsert_subscription(row)
    return f"subscription:{row['status']}"


def handle_subscription_deleted(subscription: Dict[str, Any]) -> str:
    subscription_id = str(subscription.get("id"))
    profile = _profile_for(_ref(subscription.get("customer")))
    row = _subscription_row(subscription, profile)
    row.update({
        "status": "canceled",
        "canceled_at": row.get("canceled_at") or datetime.now(timezone.utc).isoformat(),
    })
    webhook_repo.upsert_subscription(row)

    price = _first_item(subscription).get("price") or {}
    email_service.enqueue_email(
        "subscription_canceled",
        (profile or {}).get("email"),
        {
            "customer_name": (profile or {}).get("full_name"),
            "plan_name": price.get("nickname") or "Subscription",
            "access_until": (row.get("current_period_end") or "")[:10] or None,
        },
        dedupe_key=f"subscription_canceled:{subscription_id}",
        user_id=row.get("user_id"),
    )
    return "subscription:canceled"


def _invoice_subscription(invoice: Dict[str, Any]) -> Optional[str]:
    ref = _ref(invoice.get("subscription"))
    if ref:
        return ref
    details = ((invoice.get("parent") or {}).get("subscription_details") or {})
    return _ref(details.get("subscription"))


def handle_invoice_paid(invoice: Dict[str, Any]) -> str:
    """Facture d'abonnement payée: l'état de l'abonnement est relu chez Stripe puis upserté."""
    subscription_id = _invoice_subscription(invoice)
    if not subscription_id:
        return "ignored:no_subscription"
    subscription = stripe_client.retrieve_subscription(subscription_id)
    return handle_subscription_change(subscription)


def handle_invoice_payment_failed(invoice: Dict[str, Any]) -> str:
    subscription_id = _invoice_subscription(invoice)
    if not subscription_id:
        return "ignored:no_subscription"
    if webhook_repo.get_subscription(subscription_id):
        webhook_repo.update_subscription(subscription_id, {"status": "past_due"})
    else:
        # facture reçue avant customer.subscription.created: ligne reconstruite depuis Stripe
        subscription = stripe_client.retrieve_subscription(subscription_id)
        row = _subscription_row(subscription, _profile_for(_ref(subscription.get("customer"))))
        row["status"] = "past_due"
        webhook_repo.upsert_subscription(row)

    profile = _profile_for(_ref(invoice.get("customer")))
    email_service.enqueue_email(
        "payment_failed",
        invoice.get("customer_email") or (profile or {}).get("email"),
        {
            "customer_name": (profile or {}).get("full_name"),
            "amount": int(invoice.get("amount_due") or 0),
            "currency": invoice.get("currency") or "usd",
        },
        dedupe_key=f"payment_failed:{invoice.get('id')}",
        user_id=(profile or {}).get("id"),
    )
    return "subscription:past_due"


# --- charge.refunded ---

def handle_charge_refunded(charge: Dict[str, Any]) -> str:
    """
    Remboursement (depuis l'admin ou le dashboard Stripe):
    total -> refunded/refunded, partiel -> payment_status=partial_refund.
    """
    payment_intent = _ref(charge.get("payment_intent"))
    if not payment_intent:
        logger.warning("webhooks.charge_refunded charge without payment_intent charge=%s", charge.get("id"))
        return "ignored:no_payment_intent"
    order = orders_repo.get_order_by_payment_intent(payment_intent)
    if not order:
        # checkout.session.completed pas encore appliqué: échec enregistré, Stripe réessaiera
        raise LookupError(f"no order for payment_intent {payment_intent}")

    refunded = int(charge.get("amount_refunded") or 0)
    full = refunded >= int(charge.get("amount") or 0)
    fields = {"status": "refunded", "payment_status": "refunded"} if full else {"payment_status": "partial_refund"}
    if any(order.get(k) != v for k, v in fields.items()):
        orders_repo.update_order(order["id"], fields)

    email_service.enqueue_email(
        "refund_confirmation",
        order.get("customer_email"),
        {
            "order_number": _order_number(order),
            "refund_amount": refunded,
            "currency": charge.get("currency") or order.get("currency") or "usd",
            "full": full,
        },
        # un email par montant remboursé cumulé (plusieurs remboursements partiels possibles)
        dedupe_key=f"refund_confirmation:{charge.get('id')}:{refunded}",
        user_id=order.get("user_id"),
    )
    return "refunded" if full else "partial_refund"


def _ignore(obj: Dict[str, Any]) -> str:
    return "ignored"


_HANDLERS: Dict[EventKind, Callable[[Dict[str, Any]], str]] = {
    EventKind.CHECKOUT_COMPLETED: handle_checkout_completed,
    EventKind.CHECKOUT_EXPIRED: handle_checkout_expired,
    EventKind.SUBSCRIPTION_CREATED: handle_subscription_change,
    EventKind.SUBSCRIPTION_UPDATED: handle_subscription_change,
    EventKind.SUBSCRIPTION_DELETED: handle_subscription_deleted,
    EventKind.INVOICE_PAID: handle_invoice_paid,
    EventKind.INVOICE_PAYMENT_FAILED: handle_invoice_payment_failed,
    EventKind.CHARGE_REFUNDED: handle_charge_refunded,
    EventKind.UNKNOWN: _ignore,
}

# Ajouter un EventKind sans handler doit échouer dès l'import
if set(_HANDLERS) != set(EventKind):
    raise RuntimeError(f"EventKind without handler: {sorted(k.value for k in set(EventKind) - set(_HANDLERS))}")


def process_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Applique un événement déjà authentifié.
    Retour: {"received": True, "type", "outcome"}
    Erreurs: WebhookProcessingError (échec enregistré dans webhook_failures)
    """
    event_id = event.get("id")
    event_type = str(event.get("type") or "")
    kind = EventKind.from_type(event_type)
    obj = ((event.get("data") or {}).get("object")) or {}
    try:
        outcome = _HANDLERS[kind](obj)
    except Exception as e:
        logger.exception("webhooks.process_event failed id=%s type=%s", event_id, event_type)
        webhook_repo.record_failure(event_id, event_type, str(e), {"object_id": obj.get("id")})
        raise WebhookProcessingError(event_id, event_type, e) from e
    if kind is EventKind.UNKNOWN:
        logger.info("webhooks.process_event unhandled type=%s", event_type)
    return {"received": True, "type": event_type, "outcome": outcome}
