import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from storefront.utils.security import require_admin
from . import service as sync_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/api", tags=["Admin"])

# module storefront.sync.views
# Handlers synchrones: FastAPI les exécute dans son threadpool (SDK Stripe/Supabase bloquants)
@router.get("/sync-status")
def admin_sync_status(user: dict = Depends(require_admin)):
    """Rapport de cohérence Supabase/Stripe: {healthy, issues, stats}."""
    try:
        report = sync_service.sync_status()
    except stripe.StripeError as e:
        logger.exception("sync.views.admin_sync_status stripe failure")
        return JSONResponse({"error": "Failed to check sync status", "details": str(e)}, status_code=502)
    return JSONResponse(report.to_dict())


@router.post("/products/{product_id}/sync")
def admin_sync_product(product_id: str, user: dict = Depends(require_admin)):
    try:
        result = sync_service.sync_product(product_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Product not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except stripe.StripeError as e:
        logger.exception("sync.views.admin_sync_product failed product_id=%s", product_id)
        return JSONResponse({"error": "Stripe sync failed", "details": str(e)}, status_code=502)
    return JSONResponse(result.to_dict())


@router.post("/sync")
def admin_sync_all(user: dict = Depends(require_admin)):
    outcome = sync_service.sync_all()
    status = 200 if not outcome["failures"] else 207
    return JSONResponse(outcome, status_code=status)
