import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request

from storefront.config import CRON_SECRET, IS_PRODUCTION

logger = logging.getLogger(__name__)

COOKIE_NAME = "sb_access"


def _token_from_request(request: Request) -> Optional[str]:
    # Hybride: priorité au Bearer, fallback cookie
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(COOKIE_NAME)


def _resolve_user(token: str) -> Dict[str, Any]:
    from storefront.auth.service import get_user_from_token as _svc_get_user_from_token
    return _svc_get_user_from_token(token)


def get_current_user(request: Request) -> Dict[str, Any]:
    token = _token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        user = _resolve_user(token)
    except Exception:
        logger.info("security.get_current_user token rejected")
        raise HTTPException(status_code=401, detail="Session expired, please log in again")
    if not user.get("id"):
        raise HTTPException(status_code=401, detail="Session expired, please log in again")
    return user


def optional_user(request: Request) -> Optional[Dict[str, Any]]:
    """
    Utilisateur courant si un jeton valide est présent, sinon None (checkout invité).
    Un jeton invalide est traité comme une session invité, pas comme une erreur.
    """
    token = _token_from_request(request)
    if not token:
        return None
    try:
        user = _resolve_user(token)
    except Exception:
        logger.info("security.optional_user token rejected, continuing as guest")
        return None
    return user if user.get("id") else None


def require_user(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return user


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Forbidden")
    return user


def require_cron_secret(request: Request) -> None:
    """
    Protège les endpoints cron: Authorization: Bearer <CRON_SECRET>.
    - Obligatoire en production (APP_ENV=production)
    - Hors production, vérifié seulement si CRON_SECRET est défini
    """
    if not IS_PRODUCTION and not CRON_SECRET:
        return
    if not CRON_SECRET:
        logger.error("security.require_cron_secret CRON_SECRET missing in production")
        raise HTTPException(status_code=401, detail="Unauthorized")
    expected = f"Bearer {CRON_SECRET}"
    provided = request.headers.get("Authorization", "")
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Unauthorized")
