import logging

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from storefront.utils.feature_flags import FeatureFlagCache, get_feature_flags
from storefront.utils.security import require_cron_secret
from . import service as email_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/cron", tags=["Cron"])

# module storefront.emails.views
@router.get("/process-email-queue", dependencies=[Depends(require_cron_secret)])
async def process_email_queue(flags: FeatureFlagCache = Depends(get_feature_flags)):
    """
    Vide un lot de la file d'emails (appel planifié).
    - Production: Authorization: Bearer <CRON_SECRET> obligatoire
    - 200 {processed, successful, failed}; 500 si la file est illisible
    """
    try:
        result = await run_in_threadpool(email_service.drain_email_queue, flags=flags)
    except Exception:
        logger.exception("emails.views.process_email_queue failed")
        return JSONResponse({"error": "Failed to process email queue"}, status_code=500)
    return JSONResponse(result)
