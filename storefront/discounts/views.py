import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from storefront.checkout.errors import CheckoutError, ErrorKind
from storefront.utils.rate_limit import optional_rate_limit
from storefront.utils.security import optional_user, require_admin
from . import service as discounts_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/coupons", tags=["Coupons API"])
admin_router = APIRouter(prefix="/admin/api/promotion-codes", tags=["Admin"])

# module storefront.discounts.views
@router.post("/validate", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def validate_coupon(request: Request, user: Optional[Dict[str, Any]] = Depends(optional_user)):
    """
    Vérifie un code promo pour l'affichage panier.
    - Entrée JSON: { "code": "SUMMER20", "subtotal": 4500 } (subtotal en centimes, optionnel)
    - 200 {valid: true, ...} / 400|404 {valid: false, error}
    - 5xx si Stripe ou la base est indisponible: {valid: false, title, message, suggestion, canRetry, ...}
    """
    try:
        body = await request.json()
    except ValueError:
        body = {}
    body = body if isinstance(body, dict) else {}
    subtotal = body.get("subtotal")
    subtotal_cents = int(subtotal) if isinstance(subtotal, (int, float)) and not isinstance(subtotal, bool) else None

    try:
        result = await run_in_threadpool(
            discounts_service.validate_code,
            body.get("code"),
            subtotal_cents=subtotal_cents,
            user_id=(user or {}).get("id"),
            email=(user or {}).get("email"),
        )
    except CheckoutError as e:
        payload = e.to_payload()
        if e.kind is ErrorKind.VALIDATION:
            return JSONResponse({"valid": False, "error": payload["error"]}, status_code=e.status_code)
        return JSONResponse({"valid": False, **payload}, status_code=e.status_code)
    return JSONResponse(result)


class PromotionCodeIn(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    percent_off: Optional[float] = None
    amount_off: Optional[int] = None
    duration: str = "once"
    max_redemptions: Optional[int] = None
    expires_at: Optional[int] = None
    first_time_transaction: bool = False
    minimum_amount: Optional[int] = None


@admin_router.get("")
def admin_list_promotion_codes(active: Optional[bool] = None, user: dict = Depends(require_admin)):
    try:
        items = discounts_service.list_promotion_codes(active=active)
    except stripe.StripeError as e:
        logger.exception("discounts.views.admin_list_promotion_codes failed")
        raise HTTPException(status_code=502, detail=str(e))
    return JSONResponse({"items": items})


@admin_router.post("")
def admin_create_promotion_code(payload: PromotionCodeIn, user: dict = Depends(require_admin)):
    try:
        created = discounts_service.create_promotion_code(**payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except stripe.StripeError as e:
        logger.exception("discounts.views.admin_create_promotion_code failed code=%s", payload.code)
        raise HTTPException(status_code=502, detail=str(e))
    return JSONResponse(created, status_code=201)
