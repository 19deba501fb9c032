import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, ValidationError

from storefront.utils.feature_flags import FeatureFlagCache, get_feature_flags
from storefront.utils.rate_limit import optional_rate_limit
from storefront.utils.security import optional_user
from .errors import CheckoutError, ErrorCode
from . import service as checkout_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/checkout", tags=["Checkout API"])


class GuestEmail(BaseModel):
    email: EmailStr


# module storefront.checkout.views
@router.post("", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def create_checkout_session(
    request: Request,
    user: Optional[Dict[str, Any]] = Depends(optional_user),
    flags: FeatureFlagCache = Depends(get_feature_flags),
):
    """
    Crée une session Checkout Stripe pour le panier (utilisateur connecté ou invité).
    - Entrée JSON: { "items": [{"priceRef", "quantity"}], "discountCode"?: str, "email"?: str }
    - Invité: "email" obligatoire (reçu de commande)
    - 200 {sessionId, url}; erreurs au format {error, title, message, suggestion, canRetry, details?}
    - Rate limit: 10 req / 60s
    """
    try:
        body = await request.json()
    except ValueError:
        raise CheckoutError(ErrorCode.EMPTY_CART, public_message="Invalid request: items array required")
    body = body if isinstance(body, dict) else {}

    email: Optional[str] = None
    if not user and body.get("email"):
        try:
            email = GuestEmail(email=body.get("email")).email
        except ValidationError:
            raise CheckoutError(ErrorCode.MISSING_EMAIL, public_message="Please enter a valid email address")

    items: List[Any] = body.get("items")
    result = await run_in_threadpool(
        checkout_service.create_checkout,
        items,
        user=user,
        email=email,
        discount_code=body.get("discountCode") or body.get("couponCode"),
        flags=flags,
    )
    return JSONResponse(result)


@router.get("/session/{session_id}", dependencies=[Depends(optional_rate_limit(times=20, seconds=60, key_by="ip"))])
async def get_checkout_session(session_id: str):
    """Résumé d'une session (page de confirmation). 404 si introuvable."""
    summary = await run_in_threadpool(checkout_service.get_session_summary, session_id)
    if summary is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return JSONResponse(summary)
