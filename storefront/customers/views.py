import logging
from typing import Any, Dict

import stripe
from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from storefront.utils.rate_limit import optional_rate_limit
from storefront.utils.security import require_user
from . import service as customers_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/billing-portal", tags=["Billing API"])

# module storefront.customers.views
@router.post("", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def create_billing_portal_session(request: Request, user: Dict[str, Any] = Depends(require_user)):
    """
    Ouvre le portail client Stripe (abonnements, moyens de paiement, factures).
    - Entrée JSON optionnelle: { "returnUrl": "/account" } (chemin relatif du site)
    - 200 {url}; 401 non connecté; 404 aucun client Stripe; 502 Stripe indisponible
    """
    try:
        body = await request.json()
    except ValueError:
        body = {}
    body = body if isinstance(body, dict) else {}

    try:
        result = await run_in_threadpool(customers_service.create_billing_portal, user["id"], body.get("returnUrl"))
    except customers_service.NoBillingAccount:
        return JSONResponse({"error": "No subscription found. Please subscribe first."}, status_code=404)
    except stripe.StripeError:
        logger.exception("customers.views billing portal failed user_id=%s", user.get("id"))
        return JSONResponse({"error": "Failed to create billing portal session"}, status_code=502)
    return JSONResponse(result)
