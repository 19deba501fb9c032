from typing import Dict, Any
from fastapi import Request, Response, HTTPException
import logging
import os
import time
import hashlib
from fastapi_limiter import FastAPILimiter

from storefront.utils.security import COOKIE_NAME

logger = logging.getLogger(__name__)

RATE_LIMIT_DETAIL = "Too Many Requests"


def client_ip(req: Request) -> str:
    """IP appelante: X-Forwarded-For (1er saut), puis X-Real-IP, puis socket."""
    forwarded = req.headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = (req.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    return req.client.host if req.client else "local"


def _user_key_from_request(req: Request) -> str:
    # Priorité: session cookie (hashé) puis IP
    token = req.cookies.get(COOKIE_NAME)
    path = req.url.path
    if token:
        h = hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]
        return f"user:{h}:{path}"
    return f"ip:{client_ip(req)}:{path}"


def _ip_key_from_request(req: Request) -> str:
    return f"ip:{client_ip(req)}:{req.url.path}"


def optional_rate_limit(times: int, seconds: int, key_by: str = "user"):
    """
    Dépendance FastAPI de limitation de débit.
    - key_by="user": cookie de session hashé puis IP (défaut)
    - key_by="ip": IP seule (validation panier, lecture de session, codes promo)
    - LOCAL_RATE_LIMIT_FALLBACK=1: fenêtre glissante en mémoire (dev/tests)
    - app.state.rate_limit_enabled=False: désactivé
    - sinon fastapi-limiter (Redis); une panne du backend Redis ne bloque pas la requête
    """
    key_func = _ip_key_from_request if key_by == "ip" else _user_key_from_request

    async def _dep(request: Request, response: Response):
        # Forcer le fallback mémoire en DEV si demandé
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            now = time.time()
            key = key_func(request)
            store = getattr(request.app.state, "_rl_store", {})
            hits = [t for t in store.get(key, []) if now - t < seconds]
            if len(hits) >= times:
                raise HTTPException(status_code=429, detail=RATE_LIMIT_DETAIL)
            hits.append(now)
            store[key] = hits
            request.app.state._rl_store = store
            return

        # Respecter le flag global
        if getattr(request.app.state, "rate_limit_enabled", None) is not True:
            return

        from fastapi_limiter.depends import RateLimiter

        async def _identifier(req: Request) -> str:
            return key_func(req)

        try:
            await RateLimiter(times=times, seconds=seconds, identifier=_identifier)(request, response)
        except HTTPException:
            raise
        except Exception:
            # Redis indisponible (ex: SCRIPT non supporté): pas de 429 en prod
            logger.exception("rate_limit backend failure path=%s", request.url.path)
    return _dep


def rate_limit_health_info(request: Request) -> Dict[str, Any]:
    enabled = getattr(request.app.state, "rate_limit_enabled", None)

    limiter_ready = getattr(FastAPILimiter, "redis", None) is not None
    backend = "redis" if limiter_ready else None

    if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
        backend = backend or "memory"

    info: Dict[str, Any] = {
        "enabled": (bool(enabled) if enabled is not None else None),
        "ready": limiter_ready,
        "backend": backend,
    }

    redis_url = os.getenv("RATE_LIMIT_REDIS_URL")
    if backend == "redis" and redis_url:
        from urllib.parse import urlparse
        p = urlparse(redis_url)
        info["redis"] = {"scheme": p.scheme, "host": p.hostname, "port": p.port}

    return info
