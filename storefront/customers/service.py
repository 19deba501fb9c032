"""
Portail de facturation Stripe pour un client connecté.
"""
import logging
from typing import Any, Dict, Optional

from storefront.config import BILLING_PORTAL_DEFAULT_PATH, SITE_URL, STRIPE_BILLING_PORTAL_RETURN_URL
from storefront.payments import stripe_client
from . import repository as customers_repo

logger = logging.getLogger(__name__)


class NoBillingAccount(LookupError):
    """Profil sans client Stripe: aucun achat ni abonnement à gérer."""


# module storefront.customers.service
def portal_return_url(return_path: Any = None) -> str:
    """
    URL de retour du portail.
    Seuls les chemins relatifs du site sont acceptés (pas de redirection vers un autre domaine).
    """
    if STRIPE_BILLING_PORTAL_RETURN_URL:
        return STRIPE_BILLING_PORTAL_RETURN_URL
    path = str(return_path or "").strip()
    if not path.startswith("/") or path.startswith("//") or "\\" in path:
        path = BILLING_PORTAL_DEFAULT_PATH
    return f"{SITE_URL}{path}"


def create_billing_portal(user_id: str, return_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Retour: {"url": "https://billing.stripe.com/..."}
    Erreurs: NoBillingAccount (404 côté vue), stripe.StripeError (502 côté vue)
    """
    profile = customers_repo.get_profile(user_id)
    customer_id = (profile or {}).get("stripe_customer_id")
    if not customer_id:
        raise NoBillingAccount(user_id)
    session = stripe_client.create_billing_portal_session(
        customer=customer_id,
        return_url=portal_return_url(return_path),
    )
    logger.info("customers.billing_portal session created user_id=%s", user_id)
    return {"url": session.get("url")}
