import logging

import stripe
from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from storefront.config import STRIPE_WEBHOOK_SECRET
from storefront.payments import stripe_client
from . import service as webhook_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])

# module storefront.webhooks.views
@router.post("/webhook", include_in_schema=False)
async def stripe_webhook(request: Request):
    """
    Webhook Stripe.
    - Signature vérifiée sur le corps brut avant toute lecture de l'événement
    - 400 {"error": "Invalid signature"}: aucun effet, aucune précision sur la cause
    - 200 {"received": true, ...}: événement appliqué ou volontairement ignoré
    - 500: écriture en échec (journalisée), Stripe réessaiera
    """
    if not STRIPE_WEBHOOK_SECRET:
        logger.error("webhooks.views STRIPE_WEBHOOK_SECRET is not configured")
        return JSONResponse({"error": "Webhook secret not configured"}, status_code=500)

    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    try:
        event = stripe_client.construct_event(payload, signature)
    except (stripe.SignatureVerificationError, ValueError):
        logger.warning("webhooks.views signature verification failed")
        return JSONResponse({"error": "Invalid signature"}, status_code=400)

    try:
        result = await run_in_threadpool(webhook_service.process_event, event)
    except webhook_service.WebhookProcessingError:
        return JSONResponse({"error": "Webhook handler failed"}, status_code=500)
    return JSONResponse(result)
