import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from storefront.checkout.errors import CheckoutError, ErrorCode
from storefront.utils.feature_flags import FeatureFlagCache, get_feature_flags
from storefront.utils.rate_limit import optional_rate_limit
from . import service as cart_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/cart", tags=["Cart API"])

# module storefront.cart.views
@router.post("/validate", dependencies=[Depends(optional_rate_limit(times=30, seconds=60, key_by="ip"))])
async def validate_cart(request: Request, flags: FeatureFlagCache = Depends(get_feature_flags)):
    """
    Valide un panier avant checkout (consultatif).
    - Entrée JSON: { "items": [ { "priceRef": "price_...", "quantity": 2 }, ... ] }
    - 200 {valid: true} / 400 {valid: false, errors: [{priceRef, error, available?}]}
    - 400 {error} si le panier est vide, illisible ou dépasse 100 lignes
    - Rate limit: 30 req / 60s par IP
    """
    try:
        body = await request.json()
    except ValueError:
        raise CheckoutError(ErrorCode.EMPTY_CART, public_message="Invalid request: items array required")
    items = body.get("items") if isinstance(body, dict) else None

    result = await run_in_threadpool(cart_service.validate_cart, items, flags)
    return JSONResponse(result.to_dict(), status_code=200 if result.valid else 400)
