"""
Outbox des emails transactionnels.

- enqueue_email(): appelé par le webhook, jamais d'envoi synchrone
- drain_email_queue(): job cron, traite un lot borné puis s'arrête
  (sent=false AND retry_count < max, plus anciennes d'abord)

Les entrées qui ont épuisé leurs tentatives restent en base (sent=false)
pour inspection par un opérateur; aucune file « dead letter » séparée.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from storefront.config import EMAIL_QUEUE_BATCH_SIZE, EMAIL_QUEUE_MAX_RETRIES
from storefront.payments.money import format_amount
from storefront.utils.feature_flags import FeatureFlagCache
from . import repository as email_repo
from .sender import render_email, send_email_smtp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    template_name: str


TEMPLATES: Dict[str, EmailTemplate] = {
    "order_confirmation": EmailTemplate("Your order #{order_number} is confirmed", "order_confirmation.html"),
    "subscription_confirmation": EmailTemplate("Your subscription is active", "subscription_confirmation.html"),
    "subscription_canceled": EmailTemplate("Your subscription has been canceled", "subscription_canceled.html"),
    "payment_failed": EmailTemplate("Action needed: payment failed", "payment_failed.html"),
    "refund_confirmation": EmailTemplate("Your refund for order #{order_number}", "refund_confirmation.html"),
}


class UnknownEmailType(ValueError):
    pass


# module storefront.emails.service
def enqueue_email(
    email_type: str,
    to_email: Optional[str],
    data: Dict[str, Any],
    *,
    dedupe_key: str,
    user_id: Optional[str] = None,
) -> bool:
    """Met un email en file. False si pas de destinataire ou déjà en file (même dedupe_key)."""
    if email_type not in TEMPLATES:
        raise UnknownEmailType(email_type)
    if not to_email:
        logger.info("emails.enqueue_email skipped (no recipient) type=%s", email_type)
        return False
    created = email_repo.enqueue(
        to_email=to_email,
        email_type=email_type,
        template_data=data,
        dedupe_key=dedupe_key,
        user_id=user_id,
    )
    if not created:
        logger.info("emails.enqueue_email duplicate ignored key=%s", dedupe_key)
    return created


def render_entry(entry: Dict[str, Any]) -> Dict[str, str]:
    """Entrée de file -> {subject, html}. UnknownEmailType si le type n'a pas de gabarit."""
    email_type = str(entry.get("email_type") or "")
    template = TEMPLATES.get(email_type)
    if template is None:
        raise UnknownEmailType(f"Unknown email type: {email_type}")
    data = dict(entry.get("template_data") or {})
    currency = data.get("currency") or "usd"
    for key in ("total", "subtotal", "amount", "refund_amount"):
        if data.get(key) is not None:
            data[f"{key}_display"] = format_amount(data[key], currency)
    for item in data.get("items") or []:
        if isinstance(item, dict) and item.get("amount") is not None:
            item["amount_display"] = format_amount(item["amount"], currency)
    subject = template.subject.format(order_number=data.get("order_number") or "")
    return {"subject": subject, "html": render_email(template.template_name, **data)}


def drain_email_queue(
    batch_size: int = EMAIL_QUEUE_BATCH_SIZE,
    max_retries: int = EMAIL_QUEUE_MAX_RETRIES,
    *,
    flags: Optional[FeatureFlagCache] = None,
    send: Optional[Callable[[str, str, str], None]] = None,
) -> Dict[str, Any]:
    """
    Traite un lot de la file puis s'arrête.
    - succès: sent=true, sent_at, error_message=null
    - échec: retry_count+1, error_message (l'entrée sera reprise au prochain passage)
    Retour: {"processed", "successful", "failed"}
    """
    if flags is not None and not flags.is_enabled("email_queue_enabled"):
        logger.info("emails.drain_email_queue disabled by feature flag")
        return {"processed": 0, "successful": 0, "failed": 0, "message": "Email queue disabled"}

    send = send or send_email_smtp
    entries = email_repo.fetch_pending(batch_size, max_retries)
    successful = failed = 0
    for entry in entries:
        entry_id = entry.get("id")
        try:
            rendered = render_entry(entry)
            send(str(entry.get("to_email") or ""), rendered["subject"], rendered["html"])
        except Exception as e:
            failed += 1
            retry_count = int(entry.get("retry_count") or 0) + 1
            logger.warning(
                "emails.drain_email_queue failed id=%s type=%s retry=%s err=%s",
                entry_id, entry.get("email_type"), retry_count, e,
            )
            email_repo.mark_failed(entry_id, retry_count, str(e) or type(e).__name__)
            continue
        email_repo.mark_sent(entry_id)
        successful += 1

    if entries:
        logger.info("emails.drain_email_queue processed=%s ok=%s failed=%s", len(entries), successful, failed)
    return {"processed": len(entries), "successful": successful, "failed": failed}
